class BlobTreeError(Exception):
    """Base class for archive index errors."""


# Path addressing
class PathEscapesRootError(BlobTreeError):
    pass


class PathConflictError(BlobTreeError):
    """An intermediate path segment exists but is not a directory."""


class NodeNotFoundError(BlobTreeError):
    pass


# Content
class FileTooLargeError(BlobTreeError):
    pass


# Links
class LinkEscapesRootError(BlobTreeError):
    pass


class BrokenLinkError(BlobTreeError):
    pass


class LinkCycleError(BlobTreeError):
    pass
