"""
Store wrappers used by the deployer.

TrackingStore sits in front of the real store, remembers which keys changed
and hands them to the CDN at the end of a run. NoUpdateStore backs the try
mode: it reads real remote state but never changes anything.
"""
import threading
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..clients.s3_manager import MAX_DELETE_BATCH
from ..models.data_models import DeployStats, LocalFile
from .invalidation import DEFAULT_INVALIDATION_THRESHOLD, normalize_invalidation_paths


def chunk_keys(keys: List[str], size: int) -> List[List[str]]:
    """Split ``keys`` into consecutive chunks of at most ``size`` keys."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [keys[i:i + size] for i in range(0, len(keys), size)]


class TrackingStore:
    """Wraps a store and records every key uploaded or deleted."""

    def __init__(self, delegate, cdn=None):
        """
        Args:
            delegate: Store doing the actual work (S3Manager or NoUpdateStore)
            cdn: Optional object with ``invalidate_cdn_cache(paths)``
        """
        self.delegate = delegate
        self.cdn = cdn
        self._changed: List[str] = []
        self._lock = threading.Lock()

    @property
    def changed_keys(self) -> List[str]:
        with self._lock:
            return list(self._changed)

    def _track(self, *keys: str) -> None:
        with self._lock:
            self._changed.extend(keys)

    def file_map(self, prefix: str = '') -> Dict:
        return self.delegate.file_map(prefix)

    def put(self, local_file: LocalFile) -> None:
        self.delegate.put(local_file)
        self._track(local_file.key)

    def delete_objects(self, keys: List[str], max_delete: int, stats: DeployStats) -> Tuple[int, int]:
        """
        Delete ``keys`` in sequential batches, never more than ``max_delete`` in total.

        Keys over the ceiling are left in place and counted as stale. A failed
        batch raises; earlier batches stay deleted and counted, and every key
        not deleted is counted as stale.

        Returns:
            Tuple of (deleted count, stale count)
        """
        allowed = keys[:max(max_delete, 0)]
        left_over = len(keys) - len(allowed)

        deleted = 0
        for batch in chunk_keys(allowed, MAX_DELETE_BATCH):
            for key in batch:
                logger.info(f"{key} deleting")
            try:
                self.delegate.delete_objects(batch)
            except Exception:
                stats.add_stale(len(keys) - deleted)
                raise
            self._track(*batch)
            stats.add_deleted(len(batch))
            deleted += len(batch)

        if left_over:
            logger.warning(f"Max delete of {max_delete} reached, {left_over} stale files left in bucket")
            stats.add_stale(left_over)

        return deleted, left_over

    def finalize(self) -> Optional[List[str]]:
        """Invalidate the changed keys on the CDN, if one is configured."""
        changed = self.changed_keys
        if self.cdn is None or not changed:
            return None
        return self.cdn.invalidate_cdn_cache(changed)


class NoUpdateStore:
    """
    Read-only store for try runs.

    Listing goes to the real store, so the plan reflects the bucket as it is;
    uploads, deletes and invalidations are only logged.
    """

    def __init__(self, read_ops, root: str = '/', force: bool = False,
                 threshold: int = DEFAULT_INVALIDATION_THRESHOLD):
        self.read_ops = read_ops
        self.root = root
        self.force = force
        self.threshold = threshold

    def file_map(self, prefix: str = '') -> Dict:
        return self.read_ops.file_map(prefix)

    def put(self, local_file: LocalFile) -> None:
        logger.debug(f"Try mode: not uploading {local_file.key}")

    def delete_objects(self, keys: List[str]) -> None:
        logger.debug(f"Try mode: not deleting {len(keys)} objects")

    def invalidate_cdn_cache(self, paths: List[str]) -> List[str]:
        reduced = normalize_invalidation_paths(self.root, self.threshold, self.force, sorted(paths))
        logger.info(f"Try mode: would invalidate CDN paths {reduced}")
        return reduced
