# Node kinds
KIND_FILE = 0
KIND_DIR = 1
KIND_LINK = 2

# Per-file size field of the header is a u32
MAX_FILE_SIZE = 4_294_967_295

# Integrity
HASH_ALGORITHM = "SHA256"
DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024  # 4 MiB
READ_CHUNK_SIZE = 1_048_576  # 1 MiB

# Link resolution gives up after this many hops
MAX_LINK_DEPTH = 40

# Transform codec IDs (0=none, 1=deflate/zlib, 2=zstd)
CODEC_NONE = 0
CODEC_DEFLATE = 1
CODEC_ZSTD = 2

DEFAULT_CODEC_ID = CODEC_DEFLATE
