"""
Backup sync executor - orchestrates the complete backup workflow.

Workflow:
1. Create a local backup with the producer
2. Upload it to the remote folder (add, never overwrite)
3. Delete expired remote backups (if auto delete is enabled)
4. Let the producer prune its local backups

A producer or upload failure ends the run as failed. Retention and local
cleanup problems are reported but leave a successful upload successful.
"""

import enum
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .gateway import NotFoundError, RemoteEntry, RemoteStorageGateway, TransportError, join_remote_path, normalize_folder
from .producer import BackupProducer, ProducerError
from .retention import RetentionPolicy, select_expired


logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    INIT = 'init'
    CREATED = 'created'
    UPLOADED = 'uploaded'
    SWEPT = 'swept'
    LOCAL_CLEANED = 'local_cleaned'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class SweepResult:
    """Outcome of one retention sweep."""

    folder: str
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class SyncResult:
    """Outcome of one backup sync run."""

    state: RunState = RunState.INIT
    artifact_path: Optional[str] = None
    destination_path: Optional[str] = None
    uploaded: Optional[RemoteEntry] = None
    sweep: Optional[SweepResult] = None
    error: Optional[Exception] = None
    sweep_error: Optional[Exception] = None
    cleanup_error: Optional[Exception] = None
    logs: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when the backup was uploaded."""
        return self.state is not RunState.FAILED and self.uploaded is not None

    @property
    def partial(self) -> bool:
        """True when the upload succeeded but retention or local cleanup had problems."""
        if not self.ok:
            return False
        sweep_failed = self.sweep is not None and not self.sweep.ok
        return bool(self.sweep_error or self.cleanup_error or sweep_failed)

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error else None


# Notification callback: (event, message). Events: 'uploaded', 'deleted',
# 'delete_failed', 'warning', 'failed'.
Notifier = Callable[[str, str], None]


class BackupSync:
    """
    Orchestrates one backup sync run.

    The producer and the gateway are injected; BackupSync never builds
    them itself.
    """

    def __init__(
        self,
        producer: BackupProducer,
        gateway: RemoteStorageGateway,
        upload_folder: str = '/',
        policy: Optional[RetentionPolicy] = None,
        auto_delete: bool = True,
        notify: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup sync.

        Args:
            producer: Creates and prunes local backups
            gateway: Remote storage gateway
            upload_folder: Remote folder receiving the backups
            policy: Retention policy for the remote folder
            auto_delete: Run the retention sweep after each upload
            notify: Optional callback receiving (event, message) notifications
            clock: Returns the current time (default: now in UTC)
        """
        self.producer = producer
        self.gateway = gateway
        self.upload_folder = normalize_folder(upload_folder)
        self.policy = policy or RetentionPolicy()
        self.auto_delete = auto_delete
        self.notify = notify
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logs = []

    def run(self) -> SyncResult:
        """
        Execute the backup sync.

        Returns:
            SyncResult; a producer or upload failure sets state FAILED and
            stores the error instead of raising it.
        """
        self.logs = []
        result = SyncResult(logs=self.logs)

        self._log("Starting backup sync")

        # Step 1: Create local backup
        try:
            result.artifact_path = self.producer.create()
        except Exception as e:
            error = e if isinstance(e, ProducerError) else ProducerError(f"Backup producer failed: {e}")
            return self._fail(result, error, "Backup creation failed")
        result.state = RunState.CREATED
        self._log(f"Local backup created: {result.artifact_path}")

        # Step 2: Remote destination
        filename = os.path.basename(result.artifact_path)
        result.destination_path = join_remote_path(self.upload_folder, filename)

        # Step 3: Upload
        try:
            result.uploaded = self._upload(result.artifact_path, result.destination_path)
        except (TransportError, ProducerError) as e:
            return self._fail(result, e, "Upload failed")
        result.state = RunState.UPLOADED
        self._log(f"Backup file successfully uploaded: {filename}")
        self._notify('uploaded', filename)

        # Step 4: Retention sweep
        if self.auto_delete:
            try:
                result.sweep = self.sweep()
            except Exception as e:
                result.sweep_error = e
                self._log(f"Retention sweep aborted: {e}")
                self._notify('warning', f"Retention sweep aborted: {e}")
            result.state = RunState.SWEPT
        else:
            self._log("Auto delete disabled, skipping retention sweep")

        # Step 5: Local cleanup
        try:
            self.producer.delete_local_junk()
            self._log("Local backups pruned")
        except Exception as e:
            result.cleanup_error = e
            self._log(f"Local cleanup failed: {e}")
            self._notify('warning', f"Local cleanup failed: {e}")
        result.state = RunState.LOCAL_CLEANED

        result.state = RunState.DONE
        if result.partial:
            self._log("Backup sync completed with warnings")
        else:
            self._log("Backup sync completed successfully")
        return result

    def sweep(self) -> SweepResult:
        """
        Delete expired backups from the upload folder.

        Each deletion is independent: a failing delete is reported and the
        sweep moves on. A path that is already gone counts as deleted.

        Returns:
            SweepResult with deleted and failed paths

        Raises:
            TransportError: If the folder cannot be listed
        """
        folder = self.upload_folder or '/'
        self._log(f"Listing {folder} for backups older than {self.policy.expiry_seconds}s")

        entries = self.gateway.list_entries(self.upload_folder)
        expired = select_expired(entries, self.policy, self.clock())
        self._log(f"Found {len(entries)} entries, {len(expired)} expired")

        result = SweepResult(folder=folder)

        for path in expired:
            try:
                self.gateway.delete(path)
            except NotFoundError:
                self._log(f"Expired file already absent: {path}")
            except Exception as e:
                result.failed[path] = str(e)
                self._log(f"Failed to delete expired file {path}: {e}")
                self._notify('delete_failed', f"{path}: {e}")
                continue
            result.deleted.append(path)
            self._log(f"Expired file was deleted: {path}")
            self._notify('deleted', path)

        self._log(f"Retention sweep complete. Deleted: {len(result.deleted)}, Errors: {len(result.failed)}")
        return result

    def _upload(self, artifact_path: str, destination_path: str) -> RemoteEntry:
        try:
            stream = open(artifact_path, 'rb')
        except OSError as e:
            raise ProducerError(f"Cannot read backup file {artifact_path}: {e}") from e

        try:
            self._log(f"Uploading {artifact_path} to {destination_path}")
            return self.gateway.upload(destination_path, stream)
        finally:
            try:
                stream.close()
            except OSError as e:
                logger.warning(f"Failed to close {artifact_path}: {e}")

    def _fail(self, result: SyncResult, error: Exception, message: str) -> SyncResult:
        result.state = RunState.FAILED
        result.error = error
        self._log(f"{message}: {error}")
        self._notify('failed', f"{message}: {error}")
        return result

    def _notify(self, event: str, message: str):
        if self.notify:
            self.notify(event, message)

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def build_backup_sync(app_config, notify: Optional[Notifier] = None, auto_delete: Optional[bool] = None) -> BackupSync:
    """
    Build a BackupSync from application configuration.

    Args:
        app_config: Flask config (or any mapping with the same keys)
        notify: Optional notification callback
        auto_delete: Override AUTO_DELETE when not None

    Raises:
        ConfigurationError: If the configuration is incomplete
    """
    from backsync.config import SyncSettings
    from . import create_gateway
    from .producer import ArchiveProducer

    settings = SyncSettings.from_config(app_config)

    producer = ArchiveProducer(
        source_paths=app_config.get('BACKUP_SOURCE_PATHS', ()),
        backup_dir=app_config['LOCAL_BACKUP_DIR'],
        backup_name=app_config.get('BACKUP_NAME', 'backup'),
        compression_format=app_config.get('COMPRESSION_FORMAT', 'none'),
        keep_count=int(app_config.get('LOCAL_KEEP_COUNT', 5)),
        exclude_patterns=app_config.get('BACKUP_EXCLUDE_PATTERNS', ())
    )

    return BackupSync(
        producer=producer,
        gateway=create_gateway(settings),
        upload_folder=settings.upload_folder,
        policy=settings.policy,
        auto_delete=settings.auto_delete if auto_delete is None else auto_delete,
        notify=notify
    )


def execute_backup_sync(app_config, notify: Optional[Notifier] = None, auto_delete: Optional[bool] = None) -> SyncResult:
    """
    Run a full backup sync with the given configuration.

    Returns:
        SyncResult of the run
    """
    return build_backup_sync(app_config, notify=notify, auto_delete=auto_delete).run()


def execute_retention_sweep(app_config, notify: Optional[Notifier] = None) -> SweepResult:
    """
    Run only the retention sweep, without creating or uploading a backup.

    Raises:
        TransportError: If the upload folder cannot be listed
    """
    return build_backup_sync(app_config, notify=notify).sweep()
