"""
Backup module for backsync.

This module handles the core backup functionality including:
- Local backup creation (producer, compression)
- Remote storage gateways (Dropbox and S3)
- Retention policy evaluation
- Sync orchestration
"""

from .credentials import AppKeyCredentials, ConfigurationError, TokenCredentials
from .executor import BackupSync, RunState, SweepResult, SyncResult
from .gateway import (
    ConflictError,
    EntryKind,
    NotFoundError,
    RemoteEntry,
    RemoteStorageGateway,
    TransportError,
    join_remote_path
)
from .producer import ArchiveProducer, BackupProducer, ProducerError
from .retention import RetentionPolicy, select_expired


def create_gateway(settings) -> RemoteStorageGateway:
    """
    Create the storage gateway for the configured provider.

    Args:
        settings: SyncSettings

    Raises:
        ConfigurationError: If the provider is unknown or misconfigured
    """
    if settings.provider == 'dropbox':
        from .dropbox_gateway import DropboxGateway

        return DropboxGateway(
            settings.credentials,
            chunk_size=settings.chunk_size,
            chunk_retries=settings.chunk_retries,
            retry_backoff=settings.chunk_retry_backoff
        )

    if settings.provider == 's3':
        from .s3_gateway import S3Gateway

        return S3Gateway(
            settings.credentials,
            bucket_name=settings.s3_bucket,
            region=settings.s3_region,
            chunk_size=settings.chunk_size,
            chunk_retries=settings.chunk_retries,
            retry_backoff=settings.chunk_retry_backoff,
            endpoint_url=settings.s3_endpoint_url
        )

    raise ConfigurationError(f"Unknown storage provider: {settings.provider!r}")


__all__ = [
    'AppKeyCredentials',
    'ArchiveProducer',
    'BackupProducer',
    'BackupSync',
    'ConfigurationError',
    'ConflictError',
    'EntryKind',
    'NotFoundError',
    'ProducerError',
    'RemoteEntry',
    'RemoteStorageGateway',
    'RetentionPolicy',
    'RunState',
    'SweepResult',
    'SyncResult',
    'TokenCredentials',
    'TransportError',
    'create_gateway',
    'join_remote_path',
    'select_expired'
]
