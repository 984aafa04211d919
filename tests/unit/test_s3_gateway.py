"""
Unit tests for the S3 gateway (backsync/backup/s3_gateway.py).

Uses moto to emulate S3.
"""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from backsync.backup.credentials import AppKeyCredentials, ConfigurationError, TokenCredentials
from backsync.backup.gateway import ConflictError, EntryKind, TransportError
from backsync.backup.s3_gateway import MIN_PART_SIZE, S3Gateway, is_transient_s3_error


CREDENTIALS = AppKeyCredentials(app_key='test_access_key', app_secret='test_secret_key')


def make_gateway(**kwargs):
    options = {'bucket_name': 'test-bucket', 'region': 'us-east-1', 'chunk_size': MIN_PART_SIZE, 'retry_backoff': 0}
    options.update(kwargs)
    return S3Gateway(CREDENTIALS, **options)


def client_error(code, operation='UploadPart'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestS3GatewayConfiguration:

    def test_token_credentials_rejected(self):
        with pytest.raises(ConfigurationError):
            S3Gateway(TokenCredentials(token='abc'), bucket_name='test-bucket', chunk_size=MIN_PART_SIZE)

    def test_bucket_required(self):
        with pytest.raises(ConfigurationError):
            S3Gateway(CREDENTIALS, bucket_name=None, chunk_size=MIN_PART_SIZE)

    def test_chunk_size_below_part_minimum_rejected(self):
        with pytest.raises(ConfigurationError):
            S3Gateway(CREDENTIALS, bucket_name='test-bucket', chunk_size=1024)


class TestS3GatewayUpload:
    """Test uploads to S3."""

    def test_upload_simple(self, mock_s3):
        """Small content goes up with a single put."""
        gateway = make_gateway()

        entry = gateway.upload('/backups/backup-2024.tar', io.BytesIO(b'test data' * 100))

        assert entry.path == '/backups/backup-2024.tar'
        assert entry.name == 'backup-2024.tar'
        assert entry.kind is EntryKind.FILE
        assert entry.modified_at is not None
        assert entry.modified_at.tzinfo is not None

        obj = mock_s3.Object('test-bucket', 'backups/backup-2024.tar')
        assert obj.get()['Body'].read() == b'test data' * 100

    def test_upload_empty_stream(self, mock_s3):
        gateway = make_gateway()

        gateway.upload('/backups/empty.tar', io.BytesIO(b''))

        assert mock_s3.Object('test-bucket', 'backups/empty.tar').content_length == 0

    def test_upload_large_uses_multipart(self, mock_s3):
        """Content at or above the chunk size goes up as a multipart upload."""
        data = b'x' * (MIN_PART_SIZE * 2 + 1024)
        gateway = make_gateway()

        gateway.upload('/backups/large.tar', io.BytesIO(data))

        obj = mock_s3.Object('test-bucket', 'backups/large.tar')
        assert obj.content_length == len(data)
        # Multipart ETags carry the part count
        assert obj.e_tag.strip('"').endswith('-3')

    def test_upload_existing_key_conflicts(self, mock_s3):
        mock_s3.Bucket('test-bucket').put_object(Key='backups/backup-2024.tar', Body=b'original')
        gateway = make_gateway()

        with pytest.raises(ConflictError):
            gateway.upload('/backups/backup-2024.tar', io.BytesIO(b'new data'))

        assert mock_s3.Object('test-bucket', 'backups/backup-2024.tar').get()['Body'].read() == b'original'

    def test_upload_missing_bucket_is_transport_error(self, mock_s3):
        gateway = make_gateway(bucket_name='missing-bucket')

        with pytest.raises(TransportError):
            gateway.upload('/backups/backup-2024.tar', io.BytesIO(b'data'))


class TestS3GatewayMultipartRetries:
    """Multipart part retries, using a mocked client."""

    def make_client(self):
        client = MagicMock()
        client.head_object.side_effect = [client_error('404', 'HeadObject'), {'LastModified': None}]
        client.create_multipart_upload.return_value = {'UploadId': 'upload-1'}
        return client

    def test_transient_part_error_retried(self):
        client = self.make_client()
        client.upload_part.side_effect = [client_error('SlowDown'), {'ETag': '"etag-1"'}, {'ETag': '"etag-2"'}]
        gateway = make_gateway(client=client, chunk_retries=2)

        gateway.upload('/backups/large.tar', io.BytesIO(b'x' * (MIN_PART_SIZE + 10)))

        assert client.upload_part.call_count == 3
        parts = client.complete_multipart_upload.call_args.kwargs['MultipartUpload']['Parts']
        assert parts == [{'PartNumber': 1, 'ETag': '"etag-1"'}, {'PartNumber': 2, 'ETag': '"etag-2"'}]
        client.abort_multipart_upload.assert_not_called()

    def test_exhausted_retries_abort_upload(self):
        client = self.make_client()
        client.upload_part.side_effect = client_error('ServiceUnavailable')
        gateway = make_gateway(client=client, chunk_retries=2)

        with pytest.raises(TransportError):
            gateway.upload('/backups/large.tar', io.BytesIO(b'x' * (MIN_PART_SIZE + 10)))

        assert client.upload_part.call_count == 3
        client.abort_multipart_upload.assert_called_once_with(
            Bucket='test-bucket', Key='backups/large.tar', UploadId='upload-1'
        )
        client.complete_multipart_upload.assert_not_called()

    def test_permanent_part_error_not_retried(self):
        client = self.make_client()
        client.upload_part.side_effect = client_error('AccessDenied')
        gateway = make_gateway(client=client, chunk_retries=5)

        with pytest.raises(TransportError):
            gateway.upload('/backups/large.tar', io.BytesIO(b'x' * (MIN_PART_SIZE + 10)))

        assert client.upload_part.call_count == 1
        client.abort_multipart_upload.assert_called_once()

    def test_transient_error_classification(self):
        assert is_transient_s3_error(client_error('SlowDown'))
        assert is_transient_s3_error(EndpointConnectionError(endpoint_url='https://s3.amazonaws.com'))
        assert not is_transient_s3_error(client_error('AccessDenied'))
        assert not is_transient_s3_error(ValueError('boom'))


class TestS3GatewayListAndDelete:
    """Test listing and deleting objects."""

    def test_list_entries_non_recursive(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='backups/a.tar', Body=b'data1')
        bucket.put_object(Key='backups/b.txt', Body=b'data2')
        bucket.put_object(Key='backups/old/c.tar', Body=b'data3')
        bucket.put_object(Key='other/d.tar', Body=b'data4')

        entries = make_gateway().list_entries('/backups/')

        files = {e.path: e for e in entries if e.kind is EntryKind.FILE}
        folders = [e for e in entries if e.kind is EntryKind.FOLDER]

        assert set(files) == {'/backups/a.tar', '/backups/b.txt'}
        assert all(e.modified_at is not None for e in files.values())
        assert len(folders) == 1
        assert folders[0].name == 'old'
        assert folders[0].modified_at is None

    def test_list_root(self, mock_s3):
        mock_s3.Bucket('test-bucket').put_object(Key='root.tar', Body=b'data')

        entries = make_gateway().list_entries('/')

        assert [e.path for e in entries] == ['/root.tar']

    def test_list_empty_folder(self, mock_s3):
        assert make_gateway().list_entries('/nothing-here') == []

    def test_list_missing_bucket_is_transport_error(self, mock_s3):
        with pytest.raises(TransportError):
            make_gateway(bucket_name='missing-bucket').list_entries('/backups')

    def test_delete(self, mock_s3):
        mock_s3.Bucket('test-bucket').put_object(Key='backups/a.tar', Body=b'data')

        make_gateway().delete('/backups/a.tar')

        assert list(mock_s3.Bucket('test-bucket').objects.all()) == []

    def test_delete_missing_key_succeeds(self, mock_s3):
        make_gateway().delete('/backups/never-existed.tar')

    def test_test_connection(self, mock_s3):
        assert make_gateway().test_connection() is True

    def test_test_connection_missing_bucket(self, mock_s3):
        with pytest.raises(TransportError):
            make_gateway(bucket_name='missing-bucket').test_connection()
