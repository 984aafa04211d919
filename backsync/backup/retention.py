"""
Retention policy for remote backups.

Decides which remote entries are old enough to be deleted. The decision is a
pure function of the listed entries, the policy and the current time; the
actual deletion is done by BackupSync.sweep().
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List

from .gateway import RemoteEntry


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Which remote files may be deleted.

    Attributes:
        expiry_seconds: Minimum age in seconds of an expired file
        name_suffix: Only file names ending with this suffix are eligible
    """

    expiry_seconds: int = 2592000
    name_suffix: str = '.tar'

    def __post_init__(self):
        if self.expiry_seconds < 0:
            raise ValueError(f"expiry_seconds must be >= 0, got {self.expiry_seconds}")


def is_expired(entry: RemoteEntry, policy: RetentionPolicy, now: datetime) -> bool:
    """
    Check whether a single entry is eligible for deletion.

    Folders, files with another suffix and files without a usable
    modification time are never expired. An entry exactly expiry_seconds
    old is expired.
    """
    if entry.is_folder:
        return False

    if not entry.name.endswith(policy.name_suffix):
        return False

    if entry.modified_at is None:
        return False

    modified_at = entry.modified_at
    if modified_at.tzinfo is None:
        modified_at = modified_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    age = (now - modified_at).total_seconds()
    return age >= policy.expiry_seconds


def select_expired(entries: Iterable[RemoteEntry], policy: RetentionPolicy, now: datetime) -> List[str]:
    """
    Select the paths of expired entries.

    Args:
        entries: Remote entries of one folder listing
        policy: Retention policy to apply
        now: Reference time (aware or naive UTC)

    Returns:
        Paths of expired entries, in input order
    """
    return [entry.path for entry in entries if is_expired(entry, policy, now)]
