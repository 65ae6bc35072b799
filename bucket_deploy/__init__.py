"""
Bucket Deploy - incremental deploys of a static site directory to an S3 bucket.
"""

__version__ = "1.0.0"

from .services.deployer import Deployer
from .models.config import DeployConfig, S3Config
from .models.data_models import DeployStats, LocalFile
from .exceptions import DeployError

__all__ = [
    "Deployer",
    "DeployConfig",
    "S3Config",
    "DeployStats",
    "LocalFile",
    "DeployError"
]
