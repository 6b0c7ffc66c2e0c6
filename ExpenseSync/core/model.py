"""Data types shared by the sync engine.

Records and payment methods describe the local ledger. The result types are
what every public operation of the GitHub client and the sync orchestrator
returns: expected failures are reported through ``success``, ``error`` and
``error_kind`` instead of raised.
"""
import datetime
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..status.status import ErrorKind

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    """Return the current instant as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


class SyncDirection(enum.StrEnum):
    """What a sync should do given the local and remote state."""
    InSync = 'in_sync'
    Push = 'push'
    Pull = 'pull'
    Conflict = 'conflict'
    Error = 'error'


@dataclass(frozen=True)
class PaymentMethod:
    """How an expense was paid."""
    type: str
    identifier: Optional[str] = None  # e.g. last digits of a card
    instrument_id: Optional[str] = None  # Reference to a saved payment instrument


@dataclass
class Record:
    """One expense.

    ``updated_at`` is the only field used to decide which copy of a record
    wins when local and remote disagree.
    """
    id: str
    amount: Decimal
    category: str
    date: datetime.datetime
    note: str = ''
    payment_method: Optional[PaymentMethod] = None
    created_at: datetime.datetime = field(default_factory=utc_now)
    updated_at: datetime.datetime = field(default_factory=utc_now)
    deleted_at: Optional[datetime.datetime] = None
    currency: str = ''


@dataclass(frozen=True)
class SyncConfig:
    """Remote repository settings, read-only for the sync engine."""
    token: str
    repo: str  # owner/name
    branch: str

    @property
    def owner(self) -> str:
        return self.repo.split('/', 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split('/', 1)[1]

    def is_complete(self) -> bool:
        return bool(self.token and self.repo and '/' in self.repo and self.branch)


@dataclass(frozen=True)
class RemoteFile:
    """A file listed on the remote. ``sha`` is only valid for the current operation."""
    name: str
    path: str
    sha: str


@dataclass(frozen=True)
class FileContent:
    content: str
    sha: str


@dataclass
class RemoteResult:
    """Outcome of a simple-tier GitHub client call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'RemoteResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str) -> 'RemoteResult':
        return cls(success=False, error=error, error_kind=kind)


@dataclass
class CommitResult:
    """Outcome of an atomic batch commit.

    Attributes:
        failed_step: Name of the step that failed ('head', 'tree', 'blob', 'create_tree',
            'commit' or 'ref'), None on success.
    """
    success: bool
    commit_sha: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    failed_step: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of a push (sync up) or of a merge that ended in a push."""
    success: bool
    message: str = ''
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    files_uploaded: int = 0
    files_skipped: int = 0
    files_deleted: int = 0
    files_failed: int = 0
    partial: bool = False

    settings_synced: bool = False
    settings_skipped: bool = False
    settings_error: Optional[str] = None

    commit_sha: Optional[str] = None
    commit_timestamp: Optional[datetime.datetime] = None

    direction: Optional[SyncDirection] = None
    merge: Optional['MergeResult'] = None


@dataclass
class PullResult:
    """Outcome of a download (sync down)."""
    success: bool
    message: str = ''
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    records: List[Record] = field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None
    has_more: bool = False
    files_downloaded: int = 0
    remote_hashes: Dict[str, str] = field(default_factory=dict)


@dataclass
class DirectionResult:
    direction: SyncDirection
    local_time: Optional[datetime.datetime] = None
    remote_time: Optional[datetime.datetime] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class MergeResult:
    """Outcome of a timestamp merge.

    Attributes:
        merged: Union of both sides with conflicts resolved.
        new_from_remote: Remote-only records that were added.
        updated_from_remote: Records present on both sides where the remote copy won.
        updated_from_local: Records present on both sides where the local copy won.
        local_only: Local-only records that were kept.
        deleted_locally: Remote-only records that were dropped as deleted on this device.
    """
    merged: List[Record] = field(default_factory=list)
    new_from_remote: int = 0
    updated_from_remote: int = 0
    updated_from_local: int = 0
    local_only: int = 0
    deleted_locally: int = 0


@dataclass
class ConflictAnalysis:
    """Read-only preview of what a merge would do."""
    success: bool
    message: str = ''
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    new_from_remote: int = 0
    remote_wins: int = 0
    local_wins: int = 0
    local_only: int = 0
    deleted_locally: int = 0
