"""
Tests for S3Manager class.
"""
import pytest
from unittest.mock import Mock, patch
from datetime import datetime
from botocore.exceptions import ClientError

from bucket_deploy.clients.s3_manager import S3Manager, S3Object, aws_client_kwargs
from bucket_deploy.exceptions import StoreError
from bucket_deploy.models.config import Route, S3Config
from bucket_deploy.models.data_models import LocalFile


@pytest.fixture
def bucket_config():
    """Create a test S3 configuration."""
    return S3Config(
        endpoint='http://localhost:9000',
        access_key='deploy_key',
        secret_key='deploy_secret',
        bucket='example.com',
        region='us-east-1'
    )


@pytest.fixture
def s3_manager(bucket_config):
    """Create a test S3Manager instance with mocked client."""
    with patch('bucket_deploy.clients.s3_manager.boto3.client') as mock_boto3:
        mock_boto3.return_value = Mock()

        manager = S3Manager(bucket_config)

        return manager


class TestS3Manager:
    """Test cases for S3Manager."""

    def test_initialization(self, bucket_config):
        """Test S3Manager initialization."""
        with patch('bucket_deploy.clients.s3_manager.boto3.client') as mock_boto3:
            mock_boto3.return_value = Mock()

            manager = S3Manager(bucket_config, acl='public-read')

            assert manager.config == bucket_config
            assert manager.acl == 'public-read'
            mock_boto3.assert_called_once_with(
                's3',
                endpoint_url='http://localhost:9000',
                region_name='us-east-1',
                aws_access_key_id='deploy_key',
                aws_secret_access_key='deploy_secret',
                aws_session_token=None
            )

    def test_default_credential_chain(self):
        """Test no static credentials are passed when none are configured."""
        assert aws_client_kwargs(S3Config(bucket='b', region='eu-west-1')) == {'region_name': 'eu-west-1'}

    def test_session_token(self, bucket_config, monkeypatch):
        monkeypatch.setenv('AWS_SESSION_TOKEN', 'token')

        assert aws_client_kwargs(bucket_config)['aws_session_token'] == 'token'

    def test_file_map(self, s3_manager):
        """Test listing objects from the bucket."""
        mock_paginator = Mock()
        mock_paginator.paginate.return_value = [
            {
                'Contents': [
                    {
                        'Key': 'index.html',
                        'Size': 1024,
                        'LastModified': datetime.now(),
                        'ETag': '"abc123"',
                        'StorageClass': 'STANDARD'
                    }
                ]
            },
            {
                'Contents': [
                    {'Key': 'css/main.css', 'Size': 10, 'ETag': '"def456"'}
                ]
            },
            {}
        ]
        s3_manager.client.get_paginator.return_value = mock_paginator

        objects = s3_manager.file_map('site')

        assert sorted(objects) == ['css/main.css', 'index.html']
        assert objects['index.html'].size == 1024
        assert objects['index.html'].etag == 'abc123'
        mock_paginator.paginate.assert_called_once_with(Bucket='example.com', Prefix='site')

    def test_file_map_failure(self, s3_manager):
        s3_manager.client.get_paginator.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}}, 'ListObjectsV2'
        )

        with patch('time.sleep'):
            with pytest.raises(StoreError, match='example.com'):
                s3_manager.file_map()

        assert s3_manager.client.get_paginator.call_count == 3

    def test_put(self, s3_manager):
        """Test uploads carry content, length and headers."""
        route = Route(route=r'\.css$', gzip=True, headers={
            'Cache-Control': 'max-age=630720000',
            'x-amz-meta-author': 'bep',
            'X-Custom': 'yes'
        })
        local_file = LocalFile('main.css', '/tmp/main.css', b'gzipped', 'text/css; charset=utf-8',
                               route=route, target_root='site')

        s3_manager.put(local_file)

        kwargs = s3_manager.client.put_object.call_args.kwargs
        assert kwargs['Bucket'] == 'example.com'
        assert kwargs['Key'] == 'site/main.css'
        assert kwargs['Body'].read() == b'gzipped'
        assert kwargs['ContentLength'] == 7
        assert kwargs['ContentType'] == 'text/css; charset=utf-8'
        assert kwargs['ContentEncoding'] == 'gzip'
        assert kwargs['CacheControl'] == 'max-age=630720000'
        assert kwargs['Metadata'] == {'author': 'bep', 'x-custom': 'yes'}
        assert 'ACL' not in kwargs

    def test_put_with_acl(self, s3_manager):
        s3_manager.acl = 'private'

        s3_manager.put(LocalFile('a.txt', '/tmp/a.txt', b'a', 'text/plain'))

        assert s3_manager.client.put_object.call_args.kwargs['ACL'] == 'private'

    def test_put_failure_is_not_retried(self, s3_manager):
        s3_manager.client.put_object.side_effect = ClientError(
            {'Error': {'Code': '500', 'Message': 'Internal'}}, 'PutObject'
        )

        with pytest.raises(StoreError, match='a.txt'):
            s3_manager.put(LocalFile('a.txt', '/tmp/a.txt', b'a', 'text/plain'))

        assert s3_manager.client.put_object.call_count == 1

    def test_delete_objects(self, s3_manager):
        s3_manager.client.delete_objects.return_value = {'Deleted': [{'Key': 'a'}, {'Key': 'b'}]}

        s3_manager.delete_objects(['a', 'b'])

        s3_manager.client.delete_objects.assert_called_once_with(
            Bucket='example.com',
            Delete={'Objects': [{'Key': 'a'}, {'Key': 'b'}], 'Quiet': True}
        )

    def test_delete_objects_key_errors(self, s3_manager):
        s3_manager.client.delete_objects.return_value = {
            'Errors': [{'Key': 'a', 'Code': 'AccessDenied', 'Message': 'Access Denied'}]
        }

        with pytest.raises(StoreError, match='AccessDenied'):
            s3_manager.delete_objects(['a'])

    def test_delete_objects_too_many(self, s3_manager):
        with pytest.raises(StoreError):
            s3_manager.delete_objects([f'k{i}' for i in range(1001)])

        s3_manager.client.delete_objects.assert_not_called()

    def test_retry_operation_success(self, s3_manager):
        """Test retry operation succeeds on first attempt."""
        operation = Mock(return_value='success')

        result = s3_manager._retry_operation(operation)

        assert result == 'success'
        assert operation.call_count == 1

    def test_retry_operation_eventual_success(self, s3_manager):
        """Test retry operation succeeds after failures."""
        operation = Mock()
        operation.side_effect = [
            ClientError({'Error': {'Code': '500'}}, 'TestOperation'),
            ClientError({'Error': {'Code': '500'}}, 'TestOperation'),
            'success'
        ]

        with patch('time.sleep'):  # Mock sleep to speed up test
            result = s3_manager._retry_operation(operation, max_retries=3)

        assert result == 'success'
        assert operation.call_count == 3

    def test_retry_operation_max_retries_exceeded(self, s3_manager):
        """Test retry operation fails after max retries."""
        operation = Mock()
        operation.side_effect = ClientError({'Error': {'Code': '500'}}, 'TestOperation')

        with patch('time.sleep'):  # Mock sleep to speed up test
            with pytest.raises(ClientError):
                s3_manager._retry_operation(operation, max_retries=2)

        assert operation.call_count == 2


class TestS3Object:
    """Test cases for S3Object."""

    def test_s3_object_creation(self):
        obj = S3Object(key='a.txt', size=3, etag='abc')

        assert obj.key == 'a.txt'
        assert obj.size == 3
        assert obj.etag == 'abc'
        assert repr(obj) == "S3Object(key='a.txt', size=3, etag='abc')"
