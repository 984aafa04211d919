"""
Backup producers.

A producer creates the local backup artifact that gets uploaded, and prunes
old local artifacts afterwards. BackupSync only relies on the
BackupProducer protocol; ArchiveProducer is the bundled implementation that
archives a list of local paths.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .compression import (
    EXTENSIONS,
    CompressionError,
    create_archive,
    generate_archive_filename,
    sanitize_name,
    strip_archive_extension
)


logger = logging.getLogger(__name__)


class ProducerError(Exception):
    """Raised when a local backup cannot be created or pruned."""
    pass


class BackupProducer(Protocol):

    def create(self) -> str:
        """Create a new local backup artifact and return its path."""
        ...

    def delete_local_junk(self) -> None:
        """Prune local backup artifacts."""
        ...


class ArchiveProducer:
    """
    Archives local paths into a backup directory.

    Archives are named {backup_name}-{YYYYMMDD_HHMMSS}.{ext}; only the
    keep_count newest archives with that name prefix survive
    delete_local_junk().
    """

    def __init__(
        self,
        source_paths: Sequence[str],
        backup_dir: str,
        backup_name: str = 'backup',
        compression_format: str = 'none',
        keep_count: int = 5,
        exclude_patterns: Optional[Sequence[str]] = None
    ):
        if compression_format not in EXTENSIONS:
            raise ValueError(
                f"Invalid compression format: {compression_format}. "
                f"Valid options: {list(EXTENSIONS.keys())}"
            )
        if keep_count < 0:
            raise ValueError(f"keep_count must be >= 0, got {keep_count}")

        self.source_paths = list(source_paths)
        self.backup_dir = Path(backup_dir)
        self.backup_name = backup_name
        self.compression_format = compression_format
        self.keep_count = keep_count
        self.exclude_patterns = list(exclude_patterns or [])

    def create(self) -> str:
        """
        Archive the source paths into the backup directory.

        Returns:
            Path of the new archive

        Raises:
            ProducerError: If nothing can be archived or archiving fails
        """
        if not self.source_paths:
            raise ProducerError("No backup source paths configured")

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProducerError(f"Failed to create backup directory {self.backup_dir}: {e}") from e

        filename = generate_archive_filename(self.backup_name, self.compression_format)
        archive_base = self.backup_dir / strip_archive_extension(filename)

        try:
            archive_path = create_archive(
                self.source_paths,
                str(archive_base),
                self.compression_format,
                self.exclude_patterns
            )
        except CompressionError as e:
            raise ProducerError(str(e)) from e

        logger.info(f"Created local backup {archive_path} ({os.path.getsize(archive_path)} bytes)")
        return archive_path

    def list_archives(self) -> List[Path]:
        """Local archives of this backup, oldest first."""
        if not self.backup_dir.is_dir():
            return []

        prefix = sanitize_name(self.backup_name) + '-'
        extension = '.' + EXTENSIONS[self.compression_format]

        archives = [
            path for path in self.backup_dir.iterdir()
            if path.is_file() and path.name.startswith(prefix) and path.name.endswith(extension)
        ]
        return sorted(archives, key=lambda path: (path.stat().st_mtime, path.name))

    def delete_local_junk(self):
        """
        Delete all but the keep_count newest local archives.

        Raises:
            ProducerError: If an archive cannot be deleted
        """
        archives = self.list_archives()
        junk = archives[:max(len(archives) - self.keep_count, 0)]

        failed = []
        for path in junk:
            try:
                path.unlink()
                logger.info(f"Deleted local backup {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete local backup {path}: {e}")
                failed.append(path.name)

        if failed:
            raise ProducerError(f"Failed to delete local backups: {', '.join(failed)}")
