from setuptools import setup, find_packages


setup(
    name="blobtree",
    version="0.1",
    packages=find_packages(include=["blobtree", "blobtree.*"]),
    description="Header index builder for single-file archives: path tree, blob offsets and content checksums.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "zstd": ["zstandard>=0.22.0"],
    },
)
