import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from backsync.backup.credentials import (
    AppKeyCredentials,
    ConfigurationError,
    Credentials,
    TokenCredentials
)
from backsync.backup.compression import EXTENSIONS
from backsync.backup.gateway import normalize_folder
from backsync.backup.retention import RetentionPolicy


logger = logging.getLogger(__name__)

# Upload chunk size per provider when CHUNK_SIZE is not set; S3 parts must be at least 5 MiB
DEFAULT_CHUNK_SIZES = {
    'dropbox': 4 * 1024 * 1024,
    's3': 8 * 1024 * 1024
}


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_paths(name: str) -> Tuple[str, ...]:
    return tuple(p for p in os.environ.get(name, '').split(os.pathsep) if p)


class Config:
    """Base configuration"""

    # Storage provider: 'dropbox' or 's3'
    STORAGE_PROVIDER = os.environ.get('STORAGE_PROVIDER', 'dropbox')

    # Dropbox credentials: either an access token or an app key/secret pair
    DROPBOX_ACCESS_TOKEN = os.environ.get('DROPBOX_ACCESS_TOKEN')
    DROPBOX_APP_KEY = os.environ.get('DROPBOX_APP_KEY')
    DROPBOX_APP_SECRET = os.environ.get('DROPBOX_APP_SECRET')
    DROPBOX_REFRESH_TOKEN = os.environ.get('DROPBOX_REFRESH_TOKEN')

    # S3 credentials and bucket
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_REGION = os.environ.get('S3_REGION', 'us-east-1')
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL')

    # Upload and retention
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', '/')
    AUTO_DELETE = _env_bool('AUTO_DELETE', 'true')
    EXPIRY_SECONDS = int(os.environ.get('EXPIRY_SECONDS', 2592000))  # 30 days
    # Defaults to the extension of COMPRESSION_FORMAT
    NAME_SUFFIX = os.environ.get('NAME_SUFFIX')

    # Chunked uploads
    # Defaults to DEFAULT_CHUNK_SIZES of the provider
    CHUNK_SIZE = int(os.environ['CHUNK_SIZE']) if os.environ.get('CHUNK_SIZE') else None
    CHUNK_RETRIES = int(os.environ.get('CHUNK_RETRIES', 3))
    CHUNK_RETRY_BACKOFF = float(os.environ.get('CHUNK_RETRY_BACKOFF', 1.0))

    # Local backups
    BACKUP_SOURCE_PATHS = _env_paths('BACKUP_SOURCE_PATHS')
    BACKUP_EXCLUDE_PATTERNS = tuple(p for p in os.environ.get('BACKUP_EXCLUDE_PATTERNS', '').split(',') if p)
    BACKUP_NAME = os.environ.get('BACKUP_NAME', 'backup')
    COMPRESSION_FORMAT = os.environ.get('COMPRESSION_FORMAT', 'none')
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/local_backups'
    LOCAL_KEEP_COUNT = int(os.environ.get('LOCAL_KEEP_COUNT', 5))

    # Scheduler
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'false')
    SCHEDULE_CRON = os.environ.get('SCHEDULE_CRON')
    SCHEDULER_TIMEZONE = 'UTC'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(DevelopmentConfig):
    """Test configuration with placeholder credentials"""
    TESTING = True
    DEBUG = False
    DROPBOX_ACCESS_TOKEN = 'test-access-token'
    CHUNK_RETRY_BACKOFF = 0.0


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def credentials_from_config(settings: Mapping) -> Credentials:
    """
    Pick the credential form for the configured storage provider.

    Dropbox reads DROPBOX_ACCESS_TOKEN or DROPBOX_APP_KEY/DROPBOX_APP_SECRET
    (plus optional DROPBOX_REFRESH_TOKEN). S3 reads the AWS access key pair.
    A token takes precedence when both forms are configured.

    Raises:
        ConfigurationError: If no complete credential form is present
    """
    provider = settings.get('STORAGE_PROVIDER', 'dropbox')

    if provider == 'dropbox':
        token = settings.get('DROPBOX_ACCESS_TOKEN')
        key = settings.get('DROPBOX_APP_KEY')
        secret = settings.get('DROPBOX_APP_SECRET')
        refresh_token = settings.get('DROPBOX_REFRESH_TOKEN')
        key_names = 'DROPBOX_APP_KEY and DROPBOX_APP_SECRET'
        token_name = 'DROPBOX_ACCESS_TOKEN'
    elif provider == 's3':
        token = None
        key = settings.get('AWS_ACCESS_KEY_ID')
        secret = settings.get('AWS_SECRET_ACCESS_KEY')
        refresh_token = None
        key_names = 'AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY'
        token_name = None
    else:
        raise ConfigurationError(f"Unknown storage provider: {provider!r}. Valid options: ['dropbox', 's3']")

    if token:
        return TokenCredentials(token=token)

    if key and secret:
        return AppKeyCredentials(app_key=key, app_secret=secret, refresh_token=refresh_token)

    if key or secret:
        raise ConfigurationError(f"Incomplete credentials: both {key_names} must be set")

    if token_name:
        raise ConfigurationError(f"Missing credentials: set {token_name} or {key_names}")
    raise ConfigurationError(f"Missing credentials: set {key_names}")


@dataclass(frozen=True)
class SyncSettings:
    """Immutable settings for one backup sync run."""

    provider: str
    upload_folder: str
    auto_delete: bool
    policy: RetentionPolicy
    chunk_size: int
    chunk_retries: int
    chunk_retry_backoff: float
    credentials: Credentials
    s3_bucket: Optional[str] = None
    s3_region: str = 'us-east-1'
    s3_endpoint_url: Optional[str] = None

    @classmethod
    def from_config(cls, settings: Mapping) -> 'SyncSettings':
        """
        Build and validate settings from a Flask config (or any mapping).

        Raises:
            ConfigurationError: If any value is missing or out of range
        """
        credentials = credentials_from_config(settings)
        provider = settings.get('STORAGE_PROVIDER', 'dropbox')

        compression_format = settings.get('COMPRESSION_FORMAT', 'none')
        if compression_format not in EXTENSIONS:
            raise ConfigurationError(
                f"Invalid COMPRESSION_FORMAT: {compression_format!r}. Valid options: {list(EXTENSIONS.keys())}"
            )
        archive_suffix = '.' + EXTENSIONS[compression_format]
        name_suffix = settings.get('NAME_SUFFIX')
        if name_suffix is None:
            name_suffix = archive_suffix
        elif not archive_suffix.endswith(name_suffix):
            logger.warning(
                f"NAME_SUFFIX {name_suffix!r} does not match {compression_format!r} archives ({archive_suffix}); "
                f"retention will not delete backups created by this service"
            )

        try:
            expiry_seconds = int(settings.get('EXPIRY_SECONDS', 2592000))
            chunk_size = settings.get('CHUNK_SIZE')
            chunk_size = DEFAULT_CHUNK_SIZES[provider] if chunk_size is None else int(chunk_size)
            chunk_retries = int(settings.get('CHUNK_RETRIES', 3))
            chunk_retry_backoff = float(settings.get('CHUNK_RETRY_BACKOFF', 1.0))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        if expiry_seconds < 0:
            raise ConfigurationError(f"EXPIRY_SECONDS must be >= 0, got {expiry_seconds}")
        if chunk_size <= 0:
            raise ConfigurationError(f"CHUNK_SIZE must be > 0, got {chunk_size}")
        if chunk_retries < 0:
            raise ConfigurationError(f"CHUNK_RETRIES must be >= 0, got {chunk_retries}")
        if chunk_retry_backoff < 0:
            raise ConfigurationError(f"CHUNK_RETRY_BACKOFF must be >= 0, got {chunk_retry_backoff}")

        return cls(
            provider=provider,
            upload_folder=normalize_folder(settings.get('UPLOAD_FOLDER', '/')),
            auto_delete=bool(settings.get('AUTO_DELETE', True)),
            policy=RetentionPolicy(
                expiry_seconds=expiry_seconds,
                name_suffix=name_suffix
            ),
            chunk_size=chunk_size,
            chunk_retries=chunk_retries,
            chunk_retry_backoff=chunk_retry_backoff,
            credentials=credentials,
            s3_bucket=settings.get('S3_BUCKET'),
            s3_region=settings.get('S3_REGION') or 'us-east-1',
            s3_endpoint_url=settings.get('S3_ENDPOINT_URL')
        )
