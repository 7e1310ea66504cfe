from .content_store import ContentStore, GitHubContentStore
from .errors import AuthError, NetworkError, ParseError, StoreError
from .models import DirectoryListing, DirEntry, FailureReason, FileContent, WriteResult

__all__ = [
    "ContentStore",
    "GitHubContentStore",
    "StoreError",
    "AuthError",
    "NetworkError",
    "ParseError",
    "FileContent",
    "DirEntry",
    "DirectoryListing",
    "FailureReason",
    "WriteResult",
]
