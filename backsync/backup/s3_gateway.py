"""
Amazon S3 (and S3 compatible) storage gateway.

Remote paths map to object keys without the leading separator:
/backups/site-20240115_120000.tar -> backups/site-20240115_120000.tar

Uploads never overwrite: an existing key raises ConflictError.
"""

import logging
from typing import BinaryIO, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError
)

from .credentials import AppKeyCredentials, ConfigurationError, Credentials
from .gateway import (
    REMOTE_SEPARATOR,
    ConflictError,
    EntryKind,
    RemoteEntry,
    TransportError,
    call_with_retries,
    normalize_folder,
    parse_timestamp,
    remote_basename,
    stream_size
)


logger = logging.getLogger(__name__)

# S3 rejects multipart parts smaller than 5MB (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024

TRANSIENT_ERROR_CODES = {
    'InternalError',
    'RequestTimeout',
    'RequestTimeTooSkewed',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
    '500',
    '503'
}


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


def is_transient_s3_error(error: Exception) -> bool:
    """Whether an S3 error is worth retrying."""
    if isinstance(error, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return True
    if isinstance(error, ClientError):
        return _error_code(error) in TRANSIENT_ERROR_CODES
    return False


def path_to_key(path: str) -> str:
    return path.strip(REMOTE_SEPARATOR)


def key_to_path(key: str) -> str:
    return REMOTE_SEPARATOR + key.strip(REMOTE_SEPARATOR)


class S3Gateway:
    """
    Gateway to an S3 bucket.

    Uploads smaller than chunk_size are sent with a single put_object;
    larger ones use a multipart upload with one part of chunk_size bytes
    read at a time.
    """

    def __init__(
        self,
        credentials: Credentials,
        bucket_name: str,
        region: str = 'us-east-1',
        chunk_size: int = 8 * 1024 * 1024,
        chunk_retries: int = 3,
        retry_backoff: float = 1.0,
        endpoint_url: Optional[str] = None,
        client=None
    ):
        """
        Initialize S3 gateway.

        Args:
            credentials: AWS access key pair (AppKeyCredentials)
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            chunk_size: Size threshold and part size for multipart uploads
            chunk_retries: Retries per part on transient errors
            retry_backoff: Base delay in seconds between part retries
            endpoint_url: Custom endpoint for S3 compatible services
            client: Preconfigured boto3 S3 client (skips client creation)

        Raises:
            ConfigurationError: If credentials or settings are unusable for S3
        """
        if not isinstance(credentials, AppKeyCredentials):
            raise ConfigurationError("S3 storage requires an access key ID and secret access key")
        if not bucket_name:
            raise ConfigurationError("S3 storage requires a bucket name (S3_BUCKET)")
        if chunk_size < MIN_PART_SIZE:
            raise ConfigurationError(
                f"S3 chunk size must be at least {MIN_PART_SIZE} bytes, got {chunk_size}"
            )

        self.bucket_name = bucket_name
        self.region = region
        self.chunk_size = chunk_size
        self.chunk_retries = chunk_retries
        self.retry_backoff = retry_backoff

        if client is not None:
            self.s3_client = client
            return

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=credentials.app_key,
                aws_secret_access_key=credentials.app_secret,
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(retries={'max_attempts': chunk_retries + 1, 'mode': 'standard'})
            )
        except (BotoCoreError, ValueError) as e:
            raise ConfigurationError(f"Failed to initialize S3 client: {e}") from e

    def upload(self, destination_path: str, content: BinaryIO) -> RemoteEntry:
        """
        Upload a stream to S3 without overwriting.

        Args:
            destination_path: Remote path of the new object
            content: Readable, seekable binary stream

        Returns:
            RemoteEntry of the uploaded object

        Raises:
            ConflictError: If an object already exists at the destination
            TransportError: If the upload fails
        """
        s3_key = path_to_key(destination_path)

        try:
            if self._exists(s3_key):
                raise ConflictError(f"S3 object already exists: {s3_key}")

            size = stream_size(content)

            if size < self.chunk_size:
                self._simple_upload(s3_key, content)
            else:
                self._multipart_upload(s3_key, content, size)

            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=s3_key)

        except TransportError:
            raise
        except ClientError as e:
            raise TransportError(f"S3 upload failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 upload failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Failed to read upload content: {e}") from e

        return RemoteEntry(
            path=key_to_path(s3_key),
            name=remote_basename(s3_key),
            kind=EntryKind.FILE,
            modified_at=parse_timestamp(response.get('LastModified'))
        )

    def _exists(self, s3_key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=s3_key)
            return True
        except ClientError as e:
            if _error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def _simple_upload(self, s3_key: str, content: BinaryIO):
        """
        Upload content using a single put_object.

        Args:
            s3_key: S3 object key
            content: Stream smaller than chunk_size
        """
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=s3_key,
            Body=content.read()
        )

    def _multipart_upload(self, s3_key: str, content: BinaryIO, size: int):
        """
        Upload content in parts of chunk_size bytes.

        Each part is retried on transient errors. The multipart upload is
        aborted when any part ultimately fails.

        Args:
            s3_key: S3 object key
            content: Stream to upload
            size: Number of bytes in the stream
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            part_number = 1

            while True:
                data = content.read(self.chunk_size)
                if not data:
                    break

                def send_part(data=data, part_number=part_number):
                    return self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                response = call_with_retries(
                    send_part,
                    retries=self.chunk_retries,
                    is_transient=is_transient_s3_error,
                    description=f"S3 part {part_number} of {s3_key}",
                    backoff=self.retry_backoff
                )

                parts.append({
                    'PartNumber': part_number,
                    'ETag': response['ETag']
                })
                logger.debug(f"Uploaded part {part_number} of {s3_key} ({len(data)} bytes)")

                part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )
            logger.info(f"Multipart upload of {s3_key} complete ({size} bytes, {len(parts)} parts)")

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def list_entries(self, folder_path: str) -> List[RemoteEntry]:
        """
        List objects and sub-folders directly inside a folder.

        Args:
            folder_path: Remote folder path

        Returns:
            RemoteEntry list; sub-folders (common prefixes) carry no timestamp

        Raises:
            TransportError: If listing fails
        """
        folder = normalize_folder(folder_path)
        prefix = path_to_key(folder) + REMOTE_SEPARATOR if folder else ''

        try:
            entries = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter=REMOTE_SEPARATOR):
                for common_prefix in page.get('CommonPrefixes', []):
                    key = common_prefix['Prefix']
                    entries.append(RemoteEntry(
                        path=key_to_path(key),
                        name=remote_basename(key),
                        kind=EntryKind.FOLDER
                    ))

                for obj in page.get('Contents', []):
                    # Zero-byte "folder marker" objects
                    if obj['Key'] == prefix or obj['Key'].endswith(REMOTE_SEPARATOR):
                        continue
                    entries.append(RemoteEntry(
                        path=key_to_path(obj['Key']),
                        name=remote_basename(obj['Key']),
                        kind=EntryKind.FILE,
                        modified_at=parse_timestamp(obj.get('LastModified'))
                    ))

            return entries

        except ClientError as e:
            raise TransportError(f"S3 list failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 list failed: {e}") from e

    def delete(self, path: str):
        """
        Delete an object from S3.

        Deleting a missing key succeeds, as S3 itself reports it.

        Args:
            path: Remote path of the object

        Raises:
            TransportError: If deletion fails
        """
        s3_key = path_to_key(path)

        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise TransportError(f"S3 delete failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 delete failed: {e}") from e

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            TransportError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise TransportError(f"Bucket does not exist: {self.bucket_name}") from e
            elif error_code == '403':
                raise TransportError(f"Access denied to bucket: {self.bucket_name}") from e
            else:
                raise TransportError(f"S3 connection test failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"Failed to connect to S3: {e}") from e
