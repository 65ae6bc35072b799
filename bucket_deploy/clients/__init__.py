# Client packages
from .s3_manager import S3Manager, S3Object
from .cloudfront_client import CloudFrontClient

__all__ = ['S3Manager', 'S3Object', 'CloudFrontClient']
