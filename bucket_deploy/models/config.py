"""
Configuration classes for the bucket deploy service.

Settings come from three places, highest priority first: command line flags,
environment variables and the optional YAML file (``.s3deploy.yml``). The YAML
file also carries the route table and the upload order.
"""
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern

import yaml
from loguru import logger
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from ..exceptions import ConfigError


DEFAULT_CONFIG_FILE = '.s3deploy.yml'
DEFAULT_MAX_DELETE = 256
# Matched against slash separated paths relative to the source root.
DEFAULT_SKIP_LOCAL_FILES = r'^(.*/)?\.DS_Store$'
DEFAULT_SKIP_LOCAL_DIRS = r'^(.*/)?\.[^/]*$'


def _compile(pattern: str) -> Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValueError(f"invalid pattern {pattern!r}: {e}") from e


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


class Route(BaseModel):
    """A route from the YAML file: a path regex and the policy it applies."""
    route: str
    headers: Dict[str, str] = Field(default_factory=dict)
    gzip: bool = False
    # Ignored paths are neither uploaded nor deleted.
    ignore: bool = False

    _regex: Pattern = PrivateAttr()

    @field_validator('route')
    @classmethod
    def _check_route(cls, value: str) -> str:
        _compile(value)
        return value

    def model_post_init(self, __context: Any) -> None:
        self._regex = re.compile(self.route)

    def matches(self, path: str) -> bool:
        return self._regex.search(path) is not None


class FileConfig(BaseModel):
    """Contents of the optional YAML config file."""
    bucket: Optional[str] = None
    region: Optional[str] = None
    key: Optional[str] = None
    secret: Optional[str] = None
    source: Optional[str] = None
    path: Optional[str] = None
    routes: List[Route] = Field(default_factory=list)
    order: List[str] = Field(default_factory=list)

    _order_res: List[Pattern] = PrivateAttr(default_factory=list)

    @field_validator('order')
    @classmethod
    def _check_order(cls, value: List[str]) -> List[str]:
        for pattern in value:
            _compile(pattern)
        return value

    def model_post_init(self, __context: Any) -> None:
        self._order_res = [re.compile(pattern) for pattern in self.order]

    @classmethod
    def load(cls, path: str) -> 'FileConfig':
        """
        Load the YAML config file at ``path``.

        A missing file gives an empty config.

        Raises:
            ConfigError: If the file is not valid YAML or fails validation
        """
        config_path = Path(path)
        if not config_path.is_file():
            logger.debug(f"No config file found at {path}")
            return cls()

        try:
            data = yaml.safe_load(config_path.read_text(encoding='utf-8')) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a mapping")

        try:
            conf = cls(**data)
        except ValidationError as e:
            raise ConfigError(f"invalid config file {path}: {e}") from e

        logger.debug(f"Loaded {len(conf.routes)} routes and {len(conf.order)} order rules from {path}")
        return conf

    def route_for(self, path: str) -> Optional[Route]:
        """Return the first non-ignore route matching ``path``."""
        for route in self.routes:
            if not route.ignore and route.matches(path):
                return route
        return None

    def is_ignored(self, path: str) -> bool:
        return any(route.ignore and route.matches(path) for route in self.routes)

    @property
    def group_count(self) -> int:
        return len(self._order_res) + 1

    def group_index(self, path: str) -> int:
        """
        Return the upload group for ``path``.

        Files matching no order rule go in group 0; otherwise the last
        matching rule ``i`` puts the file in group ``i + 1``.
        """
        for i in range(len(self._order_res) - 1, -1, -1):
            if self._order_res[i].search(path):
                return i + 1
        return 0


@dataclass
class S3Config:
    """Configuration for the S3 service connection."""
    bucket: str = ''
    region: Optional[str] = None
    access_key: str = ''
    secret_key: str = ''
    # For S3 compatible services such as MinIO.
    endpoint: Optional[str] = None

    @classmethod
    def from_env(cls, prefix: str) -> 'S3Config':
        """Create S3Config from environment variables with given prefix."""
        return cls(
            bucket=os.getenv(f'{prefix}_S3_BUCKET', ''),
            region=os.getenv(f'{prefix}_S3_REGION'),
            access_key=os.getenv(f'{prefix}_S3_ACCESS_KEY', ''),
            secret_key=os.getenv(f'{prefix}_S3_SECRET_KEY', ''),
            endpoint=os.getenv(f'{prefix}_S3_ENDPOINT') or None
        )


@dataclass
class DeployConfig:
    """Main configuration for a deploy run."""
    s3: S3Config = field(default_factory=S3Config)
    source_path: str = ''
    # To have multiple sites in one bucket.
    bucket_path: str = ''
    config_file: str = DEFAULT_CONFIG_FILE
    max_delete: int = DEFAULT_MAX_DELETE
    force: bool = False
    try_run: bool = False
    ignore: str = ''
    workers: int = -1
    distribution_ids: List[str] = field(default_factory=list)
    acl: str = ''
    public_access: bool = False
    skip_local_files: str = DEFAULT_SKIP_LOCAL_FILES
    skip_local_dirs: str = DEFAULT_SKIP_LOCAL_DIRS
    file_config: FileConfig = field(default_factory=FileConfig)

    _patterns: Dict[str, Optional[Pattern]] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_env(cls, prefix: str = 'DEPLOY') -> 'DeployConfig':
        """Create DeployConfig from environment variables."""
        distribution_ids = os.getenv(f'{prefix}_DISTRIBUTION_ID', '')
        return cls(
            s3=S3Config.from_env(prefix),
            source_path=os.getenv(f'{prefix}_SOURCE', ''),
            bucket_path=os.getenv(f'{prefix}_BUCKET_PATH', ''),
            config_file=os.getenv(f'{prefix}_CONFIG_FILE', DEFAULT_CONFIG_FILE),
            max_delete=_env_int(f'{prefix}_MAX_DELETE', DEFAULT_MAX_DELETE),
            workers=_env_int(f'{prefix}_WORKERS', -1),
            distribution_ids=[d.strip() for d in distribution_ids.split(',') if d.strip()]
        )

    def apply_overrides(self, **overrides: Any) -> None:
        """Set every override that is not None; nested S3 settings use an ``s3_`` prefix."""
        for name, value in overrides.items():
            if value is None:
                continue
            if name.startswith('s3_'):
                setattr(self.s3, name[3:], value)
            elif hasattr(self, name):
                setattr(self, name, value)
            else:
                raise ConfigError(f"unknown setting: {name}")

    def load_file_config(self) -> None:
        """Read the YAML config file; its settings only fill values still unset."""
        if not self.config_file:
            return

        conf = FileConfig.load(self.config_file)
        self.file_config = conf

        if not self.s3.bucket and conf.bucket:
            self.s3.bucket = conf.bucket
        if not self.s3.region and conf.region:
            self.s3.region = conf.region
        if not self.s3.access_key and conf.key:
            self.s3.access_key = conf.key
        if not self.s3.secret_key and conf.secret:
            self.s3.secret_key = conf.secret
        if not self.source_path and conf.source:
            self.source_path = conf.source
        if not self.bucket_path and conf.path:
            self.bucket_path = conf.path

    def check(self) -> None:
        """
        Validate and normalise the configuration.

        Raises:
            ConfigError: If the configuration cannot be used for a deploy
        """
        if not self.s3.bucket:
            raise ConfigError("AWS bucket is required")

        if bool(self.s3.access_key) != bool(self.s3.secret_key):
            # provided one but not both
            raise ConfigError("AWS key and secret are required")

        self.source_path = os.path.normpath(self.source_path or '.')

        # Sanity check to prevent people from uploading their entire disk.
        abs_source = os.path.abspath(self.source_path)
        if os.path.dirname(abs_source) == abs_source:
            raise ConfigError("invalid source path: Cannot deploy from root")

        self.bucket_path = self.bucket_path.strip('/')

        if self.acl and self.public_access:
            raise ConfigError("you passed a value for the flags public-access and acl, "
                              "which is not supported. the public-access flag is deprecated. "
                              "please use the acl flag instead")

        for name in ('ignore', 'skip_local_files', 'skip_local_dirs'):
            self._pattern(name)

    def _pattern(self, name: str) -> Optional[Pattern]:
        if name not in self._patterns:
            value = getattr(self, name)
            try:
                self._patterns[name] = re.compile(value) if value else None
            except re.error as e:
                raise ConfigError(f"cannot compile '{name}' flag pattern {value!r}: {e}") from e
        return self._patterns[name]

    @property
    def number_of_workers(self) -> int:
        if self.workers > 0:
            return self.workers
        return os.cpu_count() or 1

    @property
    def resolved_acl(self) -> Optional[str]:
        """The canned ACL to send with uploads, or None to send none."""
        if self.public_access:
            return 'public-read'
        return self.acl or None

    def skip_local_dir(self, rel_path: str) -> bool:
        pattern = self._pattern('skip_local_dirs')
        return bool(pattern and pattern.search(rel_path))

    def skip_local_file(self, rel_path: str) -> bool:
        pattern = self._pattern('skip_local_files')
        return bool(pattern and pattern.search(rel_path))

    def should_ignore_local(self, rel_path: str) -> bool:
        """True if ``rel_path`` is not managed by this tool."""
        pattern = self._pattern('ignore')
        if pattern and pattern.search(rel_path):
            return True
        return self.file_config.is_ignored(rel_path)

    def should_ignore_remote(self, key: str) -> bool:
        rel_path = key
        if self.bucket_path:
            rel_path = key[len(self.bucket_path):].lstrip('/')
        return self.should_ignore_local(rel_path)

    def is_foreign_key(self, key: str) -> bool:
        """True if ``key`` lies outside the bucket path, i.e. belongs to another site."""
        if not self.bucket_path:
            return False
        return not key.startswith(self.bucket_path + '/')
