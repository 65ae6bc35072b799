"""
Pytest configuration and fixtures for the bucket deploy tests.
"""
import threading
import time
from typing import Dict, List, Optional

import pytest

from bucket_deploy.clients.s3_manager import S3Object
from bucket_deploy.exceptions import StoreError
from bucket_deploy.models.config import DeployConfig, S3Config


AB_ETAG = '7b0ded95031647702b8bed17dce7698a'


class FakeRemoteStore:
    """
    In-memory stand-in for S3Manager.

    Records when every put starts and ends so tests can check ordering, and
    can be told to fail at listing, put or delete.
    """

    def __init__(self, objects: Optional[Dict[str, S3Object]] = None, fail_at: Optional[str] = None,
                 put_delay: float = 0.0):
        self.objects = dict(objects or {})
        self.fail_at = fail_at
        self.put_delay = put_delay
        self.puts: List[str] = []
        self.put_times: Dict[str, tuple] = {}
        self.put_headers: Dict[str, dict] = {}
        self.delete_calls: List[List[str]] = []
        self.delete_started: Optional[float] = None
        self._lock = threading.Lock()

    def file_map(self, prefix: str = '') -> Dict[str, S3Object]:
        if self.fail_at == 'file_map':
            raise StoreError("failed to list bucket")
        return {k: v for k, v in self.objects.items() if k.startswith(prefix)}

    def put(self, local_file) -> None:
        started = time.monotonic()
        if self.put_delay:
            time.sleep(self.put_delay)
        if self.fail_at == 'put':
            raise StoreError(f"failed to upload {local_file.key}")
        with self._lock:
            self.puts.append(local_file.key)
            self.put_times[local_file.key] = (started, time.monotonic())
            self.put_headers[local_file.key] = local_file.headers()
            self.objects[local_file.key] = S3Object(local_file.key, local_file.size, local_file.etag)

    def delete_objects(self, keys: List[str]) -> None:
        if self.fail_at == 'delete':
            raise StoreError("failed to delete objects")
        with self._lock:
            if self.delete_started is None:
                self.delete_started = time.monotonic()
            self.delete_calls.append(list(keys))
            for key in keys:
                self.objects.pop(key, None)


class FakeCDN:
    """Records the paths it was asked to invalidate."""

    def __init__(self):
        self.calls: List[List[str]] = []

    def invalidate_cdn_cache(self, paths: List[str]):
        self.calls.append(sorted(paths))
        return sorted(paths)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep deploy and AWS settings of the developer machine out of the tests."""
    for name in ('DEPLOY_S3_BUCKET', 'DEPLOY_S3_REGION', 'DEPLOY_S3_ACCESS_KEY', 'DEPLOY_S3_SECRET_KEY',
                 'DEPLOY_S3_ENDPOINT', 'DEPLOY_SOURCE', 'DEPLOY_BUCKET_PATH', 'DEPLOY_CONFIG_FILE',
                 'DEPLOY_MAX_DELETE', 'DEPLOY_WORKERS', 'DEPLOY_DISTRIBUTION_ID', 'AWS_SESSION_TOKEN'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def source_tree(tmp_path):
    """A small site: three files at the root, one in a sub directory, plus files that are always skipped."""
    site = tmp_path / 'public'
    site.mkdir()
    (site / 'ab.txt').write_bytes(b'AB\n')
    (site / 'main.css').write_bytes(b'body { background: #fff; }\n')
    (site / 'index.html').write_bytes(b'<html><body>home</body></html>\n')
    (site / 'blog').mkdir()
    (site / 'blog' / 'post.txt').write_bytes(b'post\n')

    (site / '.DS_Store').write_bytes(b'\x00\x00\x00\x01Bud1')
    (site / '.git').mkdir()
    (site / '.git' / 'config').write_bytes(b'[core]\n')
    return site


@pytest.fixture
def remote_objects():
    """Remote state: ab.txt matches, main.css changed, deleteme.txt is gone locally."""
    return {
        'ab.txt': S3Object('ab.txt', 3, AB_ETAG),
        'main.css': S3Object('main.css', 27, 'changed'),
        'deleteme.txt': S3Object('deleteme.txt', 5, 'deadbeef')
    }


@pytest.fixture
def make_config(source_tree):
    """Build a DeployConfig that deploys the source tree."""
    def _make(**overrides) -> DeployConfig:
        config = DeployConfig(
            s3=S3Config(bucket='example.com', region='eu-north-1'),
            source_path=str(source_tree),
            config_file='',
            workers=2
        )
        for name, value in overrides.items():
            setattr(config, name, value)
        return config

    return _make


@pytest.fixture
def store_factory():
    """Factory for in-memory remote stores."""
    return FakeRemoteStore


@pytest.fixture
def fake_store(remote_objects):
    return FakeRemoteStore(remote_objects)


@pytest.fixture
def fake_cdn():
    return FakeCDN()
