"""
Models package for the bucket deploy service.
"""
from .data_models import FileEntry, LocalFile, DeployStats
from .config import S3Config, DeployConfig, FileConfig, Route

__all__ = [
    'FileEntry',
    'LocalFile',
    'DeployStats',
    'S3Config',
    'DeployConfig',
    'FileConfig',
    'Route'
]
