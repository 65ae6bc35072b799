"""
S3 client manager for listing, uploading and deleting objects in the target bucket.
"""
import os
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError
from loguru import logger

from ..exceptions import StoreError
from ..models.config import S3Config
from ..models.data_models import LocalFile


# This is the maximum number of keys supported by a single DeleteObjects request.
MAX_DELETE_BATCH = 1000

# Upload headers with a dedicated PutObject parameter. Anything else is stored
# as user metadata.
HEADER_PARAMS = {
    'content-type': 'ContentType',
    'cache-control': 'CacheControl',
    'content-encoding': 'ContentEncoding',
    'content-disposition': 'ContentDisposition',
    'content-language': 'ContentLanguage',
    'expires': 'Expires',
    'x-amz-storage-class': 'StorageClass',
    'x-amz-website-redirect-location': 'WebsiteRedirectLocation'
}
METADATA_PREFIX = 'x-amz-meta-'


def aws_client_kwargs(config: S3Config) -> Dict[str, Any]:
    """
    Build boto3 client arguments from configuration.

    Uses the access key and secret when both are given, otherwise leaves
    credentials to the default AWS chain (environment, shared files, roles).
    """
    kwargs: Dict[str, Any] = {'region_name': config.region or None}
    if config.access_key and config.secret_key:
        kwargs.update(
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            aws_session_token=os.getenv('AWS_SESSION_TOKEN') or None
        )
    return kwargs


class S3Object:
    """Represents an S3 object with metadata."""

    def __init__(self, key: str, size: int, etag: str):
        self.key = key
        self.size = size
        self.etag = etag

    def __repr__(self) -> str:
        return f"S3Object(key={self.key!r}, size={self.size}, etag={self.etag!r})"


class S3Manager:
    """Manages S3 operations for the deploy target bucket."""

    def __init__(self, config: S3Config, acl: Optional[str] = None):
        """
        Initialize S3Manager with bucket configuration.

        Args:
            config: S3 connection settings
            acl: Canned ACL sent with every upload, None to send none
        """
        self.config = config
        self.acl = acl
        self.client = self._create_s3_client(config)

        logger.info(f"S3Manager initialized for bucket: {config.bucket}")

    def _create_s3_client(self, config: S3Config):
        """Create an S3 client from configuration."""
        try:
            client = boto3.client(
                's3',
                endpoint_url=config.endpoint or None,
                **aws_client_kwargs(config)
            )
            logger.debug(f"Created S3 client for endpoint: {config.endpoint or 'AWS default'}")
            return client
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Failed to create S3 client for {config.endpoint or 'AWS default'}: {e}")
            raise StoreError(f"failed to create S3 client: {e}") from e

    def _retry_operation(self, operation, max_retries: int = 3, backoff_factor: float = 1.0):
        """Execute an operation with exponential backoff retry logic."""
        for attempt in range(max_retries):
            try:
                return operation()
            except (ClientError, EndpointConnectionError) as e:
                if attempt == max_retries - 1:
                    logger.error(f"Operation failed after {max_retries} attempts: {e}")
                    raise

                wait_time = backoff_factor * (2 ** attempt)
                logger.warning(f"Operation failed (attempt {attempt + 1}/{max_retries}), retrying in {wait_time}s: {e}")
                time.sleep(wait_time)

    def file_map(self, prefix: str = '') -> Dict[str, S3Object]:
        """
        List all objects in the bucket, optionally under a key prefix.

        Listing is read-only, so transient failures are retried.

        Args:
            prefix: Only list keys starting with this prefix

        Returns:
            Dict mapping object key to S3Object

        Raises:
            StoreError: If the bucket cannot be listed
        """
        bucket = self.config.bucket

        def _list_operation():
            objects = {}
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects[obj['Key']] = S3Object(
                        key=obj['Key'],
                        size=obj['Size'],
                        etag=obj['ETag'].strip('"')
                    )
            return objects

        try:
            objects = self._retry_operation(_list_operation)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list objects in bucket {bucket}: {e}")
            raise StoreError(f"failed to list bucket {bucket}: {e}") from e

        logger.debug(f"Listed {len(objects)} objects in bucket {bucket} under prefix {prefix!r}")
        return objects

    def put(self, local_file: LocalFile) -> None:
        """
        Upload a local file, with its headers, to its key.

        Raises:
            StoreError: If the upload fails
        """
        params = self._put_params(local_file)
        try:
            self.client.put_object(**params)
            logger.debug(f"Uploaded {local_file.key} ({local_file.size} bytes)")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {local_file.key}: {e}")
            raise StoreError(f"failed to upload {local_file.key}: {e}") from e

    def _put_params(self, local_file: LocalFile) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            'Bucket': self.config.bucket,
            'Key': local_file.key,
            'Body': local_file.content(),
            'ContentLength': local_file.size
        }
        if self.acl:
            params['ACL'] = self.acl

        metadata = {}
        for name, value in local_file.headers().items():
            lname = name.lower()
            if lname in HEADER_PARAMS:
                params[HEADER_PARAMS[lname]] = value
            elif lname.startswith(METADATA_PREFIX):
                metadata[lname[len(METADATA_PREFIX):]] = value
            else:
                metadata[lname] = value
        if metadata:
            params['Metadata'] = metadata

        return params

    def delete_objects(self, keys: List[str]) -> None:
        """
        Delete a batch of at most 1000 keys.

        Raises:
            StoreError: If the request fails or any key could not be deleted
        """
        if len(keys) > MAX_DELETE_BATCH:
            raise StoreError(f"cannot delete {len(keys)} keys in one request, maximum is {MAX_DELETE_BATCH}")

        try:
            response = self.client.delete_objects(
                Bucket=self.config.bucket,
                Delete={'Objects': [{'Key': key} for key in keys], 'Quiet': True}
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete {len(keys)} objects: {e}")
            raise StoreError(f"failed to delete objects: {e}") from e

        errors = response.get('Errors', [])
        if errors:
            first = errors[0]
            raise StoreError(f"failed to delete {len(errors)} objects, first {first.get('Key')}: "
                             f"{first.get('Code')} {first.get('Message')}")

        logger.debug(f"Deleted {len(keys)} objects from bucket {self.config.bucket}")
