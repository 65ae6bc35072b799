"""
CloudFront client for invalidating cached paths after a deploy.

Handles communication with the CloudFront API:
- get_origin_path: Find the bucket sub path a distribution serves from
- create_invalidation: Send an invalidation batch for a list of paths
- invalidate_cdn_cache: Reduce changed keys to a few patterns and invalidate them
"""
import uuid
from typing import List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..exceptions import CDNError
from ..models.config import S3Config
from ..services.invalidation import (
    DEFAULT_INVALIDATION_THRESHOLD,
    normalize_invalidation_paths,
    path_escape_rfc1738
)
from .s3_manager import aws_client_kwargs


class CloudFrontClient:
    """
    Client for one or more CloudFront distributions fronting the bucket.

    Every distribution gets its own invalidation request, with paths made
    relative to the origin path the distribution reads from.
    """

    def __init__(self, distribution_ids: List[str], config: S3Config, bucket_path: str = '',
                 force: bool = False, threshold: int = DEFAULT_INVALIDATION_THRESHOLD):
        """
        Initialize CloudFront client.

        Args:
            distribution_ids: IDs of the distributions to invalidate
            config: Connection settings, credentials are shared with S3
            bucket_path: Bucket sub path the site is deployed to
            force: Invalidate the entire cache, e.g. "/*"
            threshold: Maximum number of paths per invalidation request
        """
        if not distribution_ids:
            raise CDNError("must provide a distribution ID")

        self.distribution_ids = list(distribution_ids)
        self.bucket_path = bucket_path
        self.force = force
        self.threshold = threshold
        self.client = self._create_cloudfront_client(config)

    def _create_cloudfront_client(self, config: S3Config):
        """Create a CloudFront client from configuration."""
        try:
            return boto3.client('cloudfront', **aws_client_kwargs(config))
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Failed to create CloudFront client: {e}")
            raise CDNError(f"failed to create CloudFront client: {e}") from e

    def get_origin_path(self, distribution_id: str) -> str:
        """
        Get the origin path of the first origin of a distribution.

        Raises:
            CDNError: If the distribution cannot be read
        """
        try:
            response = self.client.get_distribution(Id=distribution_id)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get CloudFront distribution {distribution_id}: {e}")
            raise CDNError(f"failed to get distribution {distribution_id}: {e}") from e

        origins = response['Distribution']['DistributionConfig']['Origins'].get('Items', [])
        if not origins:
            return ''
        return origins[0].get('OriginPath', '') or ''

    def create_invalidation(self, distribution_id: str, caller_reference: str, paths: List[str]) -> None:
        """
        Send one invalidation batch.

        Raises:
            CDNError: If the invalidation request fails
        """
        try:
            self.client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch=self.paths_to_invalidation_batch(caller_reference, paths)
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to create CloudFront invalidation for {distribution_id}: {e}")
            raise CDNError(f"failed to create invalidation for {distribution_id}: {e}") from e

    @staticmethod
    def paths_to_invalidation_batch(caller_reference: str, paths: List[str]) -> dict:
        return {
            'CallerReference': caller_reference,
            'Paths': {
                'Quantity': len(paths),
                'Items': list(paths)
            }
        }

    @staticmethod
    def determine_root_and_sub_path(bucket_path: str, origin_path: str) -> Tuple[str, str]:
        """
        Split the bucket path into the web context root and the origin sub path.

        The origin sub path is a bucket prefix CloudFront adds itself, so it
        must be removed from keys; what remains of the bucket path is the
        root seen by visitors.

        Returns:
            Tuple of (web context root, origin sub path)
        """
        origin = origin_path.strip('/')
        root = bucket_path.strip('/')
        if origin and (root == origin or root.startswith(origin + '/')):
            root = root[len(origin):]
        if not root.startswith('/'):
            root = '/' + root
        return root, origin

    def invalidate_cdn_cache(self, paths: List[str]) -> Optional[List[str]]:
        """
        Invalidate the changed keys on every distribution.

        Args:
            paths: Bucket keys uploaded or deleted in this deploy

        Returns:
            The invalidation paths sent to the last distribution, None if
            there was nothing to invalidate

        Raises:
            CDNError: If any CloudFront call fails
        """
        if not paths:
            return None

        sent = None
        for distribution_id in self.distribution_ids:
            origin_path = self.get_origin_path(distribution_id)
            root, sub_path = self.determine_root_and_sub_path(self.bucket_path, origin_path)

            keys = list(paths)
            if sub_path:
                keys = [key[len(sub_path):] if key.startswith(sub_path + '/') else key for key in keys]

            reduced = normalize_invalidation_paths(root, self.threshold, self.force, keys)
            sent = [path_escape_rfc1738(p) for p in reduced]

            if len(sent) > 10:
                logger.info(f"Create CloudFront invalidation request for {len(sent)} paths")
            else:
                logger.info(f"Create CloudFront invalidation request for {sent}")

            self.create_invalidation(distribution_id, str(uuid.uuid4()), sent)

        return sent
