"""
Exception hierarchy for the bucket deploy service.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models.data_models import DeployStats


class DeployError(Exception):
    """Base error for a deploy run.

    When raised out of a run, ``stats`` holds whatever was accumulated before
    the failure so the summary line can still be rendered.
    """

    def __init__(self, message: str, stats: Optional['DeployStats'] = None):
        super().__init__(message)
        self.stats = stats


class ConfigError(DeployError):
    """Invalid or incomplete configuration, detected before any I/O."""
    pass


class LocalFileError(DeployError):
    """A local file or directory could not be walked or read."""
    pass


class StoreError(DeployError):
    """The object store rejected a list, put or delete operation."""
    pass


class CDNError(DeployError):
    """The CDN invalidation request failed."""
    pass
