"""
Main deploy orchestrator: reconciles a local directory with the bucket.
"""
import os
import queue
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..clients.cloudfront_client import CloudFrontClient
from ..clients.s3_manager import S3Manager
from ..exceptions import ConfigError, DeployError
from ..models.config import DeployConfig
from ..models.data_models import (
    REASON_FORCE,
    REASON_NOT_FOUND,
    DeployStats,
    FileEntry,
    LocalFile
)
from .local_store import LocalTreeWalker
from .remote_store import NoUpdateStore, TrackingStore
from .upload_pool import POLL_INTERVAL, UploadPool

_DONE = object()


class Deployer:
    """
    Deploy service that walks the source directory, uploads what changed,
    deletes what is gone and invalidates the CDN.

    Within one upload group three roles run at the same time: a producer
    thread reading local files, the planner on the calling thread and the
    upload workers. They share one cancel event; any error sets it and every
    blocking queue call gives up soon after.
    """

    def __init__(self, config: DeployConfig, store=None, local_store=None, cdn=None):
        """
        Initialize deployer with configuration.

        Args:
            config: Deploy configuration, file config already loaded
            store: Object store to use instead of S3Manager
            local_store: Filesystem adapter to use instead of OSLocalStore
            cdn: CDN client to use instead of CloudFrontClient
        """
        self.config = config
        self.store = store
        self.local_store = local_store
        self.cdn = cdn

        self.stats = DeployStats()
        self.cancel = threading.Event()
        self._error: Optional[BaseException] = None
        self._error_lock = threading.Lock()

    def deploy(self) -> DeployStats:
        """
        Run one deploy.

        Returns:
            DeployStats for the run

        Raises:
            DeployError: If the run fails; ``stats`` on the error (and on the
                deployer) hold the progress made before the failure
        """
        self.stats = DeployStats()
        self.cancel = threading.Event()
        self._error = None

        start_time = datetime.now()
        try:
            self._run()
        except DeployError as e:
            e.stats = self.stats
            logger.error(f"Deploy failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Deploy failed: {e}")
            raise DeployError(f"deploy failed: {e}", self.stats) from e

        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"Deploy completed in {duration:.2f} seconds")
        return self.stats

    def _run(self) -> None:
        """
        Plan and apply the deploy.

        The local tree is walked and grouped in full before the first upload;
        within a group, reading files overlaps with uploading them.
        """
        config = self.config
        config.check()

        source = config.source_path
        if not os.path.isdir(source):
            raise ConfigError(f"source path {source} not found")

        target = config.s3.bucket + (f"/{config.bucket_path}" if config.bucket_path else '')
        logger.info(f"Deploying {os.path.abspath(source)} to s3://{target}")
        if config.try_run:
            logger.info("Try mode: nothing in the bucket will be changed")

        store = self._build_store()
        walker = LocalTreeWalker(config, self.local_store)

        remote = store.file_map(config.bucket_path)
        logger.info(f"Found {len(remote)} remote files")

        groups = walker.group(source)
        for index, entries in enumerate(groups):
            if not entries:
                continue
            logger.debug(f"Processing upload group {index} with {len(entries)} files")
            self._deploy_group(store, walker, entries, remote)

        candidates = self._delete_candidates(remote)
        if candidates:
            store.delete_objects(candidates, config.max_delete, self.stats)

        store.finalize()

    def _build_store(self) -> TrackingStore:
        config = self.config
        base = self.store or S3Manager(config.s3, acl=config.resolved_acl)
        cdn = self.cdn

        if config.try_run:
            base = NoUpdateStore(base, root='/' + config.bucket_path, force=config.force)
            # Report what would be invalidated instead of calling the CDN.
            if cdn is not None or config.distribution_ids:
                cdn = base
        elif cdn is None and config.distribution_ids:
            cdn = CloudFrontClient(config.distribution_ids, config.s3,
                                   bucket_path=config.bucket_path, force=config.force)

        return TrackingStore(base, cdn)

    def _fail(self, error: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = error
        self.cancel.set()

    def _deploy_group(self, store: TrackingStore, walker: LocalTreeWalker,
                      entries: List[FileEntry], remote: Dict) -> None:
        """Upload one group; returns once every upload of the group has finished."""
        workers = self.config.number_of_workers
        files: queue.Queue = queue.Queue(maxsize=workers)

        pool = UploadPool(store, workers, self.cancel, self.stats, on_error=self._fail)
        producer = threading.Thread(
            target=self._produce, args=(walker, entries, files), name='local-file-reader', daemon=True
        )

        pool.start()
        producer.start()
        try:
            self._plan(files, remote, pool)
        except BaseException:
            self.cancel.set()
            raise
        finally:
            pool.close()
            producer.join()
            pool.wait()

        if self._error is not None:
            raise self._error

    def _produce(self, walker: LocalTreeWalker, entries: List[FileEntry], files: queue.Queue) -> None:
        try:
            for entry in entries:
                if self.cancel.is_set():
                    return
                local_file = walker.open_local_file(entry)
                if not self._offer(files, local_file):
                    return
        except Exception as e:
            logger.error(f"Failed to read local file: {e}")
            self._fail(e)
        finally:
            self._offer(files, _DONE)

    def _offer(self, files: queue.Queue, item) -> bool:
        while not self.cancel.is_set():
            try:
                files.put(item, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _next(self, files: queue.Queue):
        while True:
            try:
                return files.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self.cancel.is_set():
                    return _DONE

    def _plan(self, files: queue.Queue, remote: Dict, pool: UploadPool) -> None:
        """
        Decide, file by file, whether to upload or skip.

        Matched keys are removed from ``remote``; what is left after every
        group has been planned are the delete candidates.
        """
        while True:
            local_file = self._next(files)
            if local_file is _DONE or self.cancel.is_set():
                return

            upload, reason = self._should_upload(local_file, remote)
            if not upload:
                logger.debug(f"{local_file.key} skipping (not changed)")
                self.stats.add_skipped()
                continue

            local_file.reason = reason
            logger.info(f"{local_file.key} ({reason}) uploading")
            if not pool.submit(local_file):
                return

    def _should_upload(self, local_file: LocalFile, remote: Dict) -> Tuple[bool, str]:
        remote_file = remote.pop(local_file.key, None)
        if remote_file is None:
            return True, REASON_NOT_FOUND

        if self.config.force:
            return True, REASON_FORCE

        return local_file.should_this_replace(remote_file)

    def _delete_candidates(self, remote: Dict) -> List[str]:
        candidates = []
        for key in sorted(remote):
            if self.config.is_foreign_key(key):
                continue
            if self.config.should_ignore_remote(key):
                logger.debug(f"{key} ignored")
                continue
            candidates.append(key)
        return candidates
