# Services package
from .invalidation import normalize_invalidation_paths, path_escape_rfc1738
from .local_store import LocalTreeWalker, OSLocalStore
from .remote_store import NoUpdateStore, TrackingStore
from .upload_pool import UploadPool

__all__ = [
    'normalize_invalidation_paths',
    'path_escape_rfc1738',
    'LocalTreeWalker',
    'OSLocalStore',
    'NoUpdateStore',
    'TrackingStore',
    'UploadPool'
]
