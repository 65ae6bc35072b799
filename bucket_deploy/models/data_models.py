"""
Core data models for the bucket deploy service.
"""
import hashlib
import posixpath
import threading
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Route


# Upload reasons
REASON_NOT_FOUND = 'not found'
REASON_FORCE = 'force'
REASON_SIZE = 'size'
REASON_ETAG = 'ETag'


@dataclass
class FileEntry:
    """A file found by the tree walker, before its content is read."""
    rel_path: str
    abs_path: str


class LocalFile:
    """
    A local file ready to be compared with, and uploaded to, the bucket.

    The content is held in memory; if the matching route asks for gzip, it is
    the compressed content, and ``size`` is the compressed size. The ETag is
    an MD5 of that content, computed on first use only.
    """

    def __init__(self, rel_path: str, abs_path: str, content: bytes,
                 content_type: str, route: Optional['Route'] = None, target_root: str = ''):
        self.rel_path = rel_path
        self.abs_path = abs_path
        self.route = route
        # Set when a bucket path is configured; keys live under it.
        self.target_root = target_root
        self.content_type = content_type
        self.reason = ''

        self._content = content
        self._etag: Optional[str] = None
        self._etag_lock = threading.Lock()

    @property
    def key(self) -> str:
        if self.target_root:
            return posixpath.join(self.target_root, self.rel_path)
        return self.rel_path

    @property
    def size(self) -> int:
        return len(self._content)

    @property
    def etag(self) -> str:
        if self._etag is None:
            with self._etag_lock:
                if self._etag is None:
                    self._etag = hashlib.md5(self._content).hexdigest()
        return self._etag

    def content(self) -> BytesIO:
        """Return a fresh reader over the content to upload."""
        return BytesIO(self._content)

    def headers(self) -> Dict[str, str]:
        headers = {'Content-Type': self.content_type}

        if self.route is not None:
            if self.route.gzip:
                headers['Content-Encoding'] = 'gzip'
            headers.update(self.route.headers)

        return headers

    def should_this_replace(self, other) -> Tuple[bool, str]:
        """
        Decide whether this file must replace the remote ``other``.

        Sizes are compared first so the content is only hashed when they match.
        """
        if self.size != other.size:
            return True, REASON_SIZE

        if self.etag != other.etag:
            return True, REASON_ETAG

        return False, ''

    def __repr__(self) -> str:
        return f"LocalFile(key={self.key!r}, size={self.size})"


@dataclass
class DeployStats:
    """Counters for a deploy run, safe to update from worker threads."""
    # Files uploaded.
    uploaded: int = 0
    # Files unchanged and left alone.
    skipped: int = 0
    # Remote files deleted.
    deleted: int = 0
    # Remote files not present locally, left because max-delete was reached.
    stale: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_uploaded(self, count: int = 1) -> None:
        with self._lock:
            self.uploaded += count

    def add_skipped(self, count: int = 1) -> None:
        with self._lock:
            self.skipped += count

    def add_deleted(self, count: int) -> None:
        with self._lock:
            self.deleted += count

    def add_stale(self, count: int) -> None:
        with self._lock:
            self.stale += count

    def file_count_changed(self) -> int:
        """Total number of files changed on the server."""
        return self.deleted + self.uploaded

    def file_count(self) -> int:
        """Total number of files, local and remote."""
        return self.file_count_changed() + self.skipped

    def percentage_changed(self) -> float:
        if self.file_count() == 0:
            return 0.0
        return self.file_count_changed() / self.file_count() * 100

    def summary(self) -> str:
        return (f"Deleted {self.deleted} of {self.deleted + self.stale}, "
                f"uploaded {self.uploaded}, skipped {self.skipped} "
                f"({self.percentage_changed():.0f}% changed)")
