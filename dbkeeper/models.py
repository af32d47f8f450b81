import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple


STATUS_SKIPPED = 'skipped'
STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


def sanitize_path(path: str) -> str:
    """Turn a filesystem path into a flat name by replacing separators with underscores."""
    safe = path.replace('/', '_')
    if os.sep != '/':
        safe = safe.replace(os.sep, '_')
    return safe


@dataclass(frozen=True)
class TelegramCredentials:
    """Bot token and chat id used for failure alerts"""
    token: str
    chat_id: str

    def __repr__(self):
        return f'<TelegramCredentials chat_id={self.chat_id}>'


@dataclass(frozen=True)
class CloudConfig:
    """Remote store settings"""
    remote_name: str
    telegram: Optional[TelegramCredentials] = None


@dataclass(frozen=True)
class TrackedObject:
    """One local file configured for periodic backup"""
    local_path: str
    interval_days: int
    remote_folder: str

    @property
    def safe_name(self) -> str:
        return sanitize_path(self.local_path)

    def __repr__(self):
        return f'<TrackedObject {self.local_path} every={self.interval_days}d folder={self.remote_folder}>'


@dataclass(frozen=True)
class BackupConfig:
    """Parsed configuration file"""
    cloud: CloudConfig
    objects: Tuple[TrackedObject, ...] = ()


@dataclass(frozen=True)
class RemoteEntry:
    """A file in a remote folder, as reported by the store"""
    name: str
    mod_time: datetime


@dataclass
class ObjectResult:
    """Outcome of processing one tracked object"""
    obj: TrackedObject
    status: str
    stage: str
    reason: Optional[str] = None
    archive_name: Optional[str] = None
    remote_path: Optional[str] = None
    pruned: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def __repr__(self):
        return f'<ObjectResult {self.obj.local_path} status={self.status} stage={self.stage}>'


@dataclass
class BatchReport:
    """Results of one run over all tracked objects"""
    results: List[ObjectResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed(self) -> List[ObjectResult]:
        return [r for r in self.results if r.status == STATUS_FAILED]

    @property
    def succeeded(self) -> List[ObjectResult]:
        return [r for r in self.results if r.status == STATUS_SUCCESS]

    @property
    def skipped(self) -> List[ObjectResult]:
        return [r for r in self.results if r.status == STATUS_SKIPPED]

    def summary(self) -> str:
        return (
            f"Processed {len(self.results)} objects: "
            f"{len(self.succeeded)} backed up, "
            f"{len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )
