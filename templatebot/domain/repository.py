"""Domain entities for template repositories and the changes propagated from them."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class TemplateRepository:
    """Immutable template repository entity. Read-only to the engine."""

    id: int
    owner: str
    name: str
    full_name: str
    default_branch: str
    is_template: bool = True

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TemplateRepository":
        owner, name = _split_full_name(data)
        return cls(
            id=data.get("id", 0),
            owner=owner,
            name=name,
            full_name=f"{owner}/{name}" if owner else name,
            default_branch=data.get("default_branch") or "main",
            is_template=bool(data.get("is_template", False)),
        )


@dataclass(frozen=True)
class DerivedRepository:
    """Immutable entity for a repository created from a template."""

    id: int
    owner: str
    name: str
    full_name: str
    default_branch: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DerivedRepository":
        owner, name = _split_full_name(data)
        return cls(
            id=data.get("id", 0),
            owner=owner,
            name=name,
            full_name=f"{owner}/{name}",
            default_branch=data.get("default_branch"),
        )


def _split_full_name(data: Dict[str, Any]) -> Tuple[str, str]:
    full_name = data.get("full_name") or ""
    if "/" in full_name:
        owner, name = full_name.split("/", 1)
        return owner, name
    owner = (data.get("owner") or {}).get("login", "")
    return owner, data.get("name", full_name)


class ChangeKind(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"

    @classmethod
    def from_status(cls, status: str) -> "ChangeKind":
        """Map a GitHub commit file status onto the three kinds the engine knows."""
        if status == "removed":
            return cls.REMOVED
        if status in ("added", "copied", "renamed"):
            return cls.ADDED
        return cls.MODIFIED


@dataclass(frozen=True)
class ChangedFile:
    path: str
    kind: ChangeKind
    previous_path: Optional[str] = None


@dataclass(frozen=True)
class ChangeSet:
    """Ordered, immutable list of files touched by one template commit."""

    commit_sha: str
    files: Tuple[ChangedFile, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.files

    def syncable(self) -> List[ChangedFile]:
        return [f for f in self.files if f.kind is not ChangeKind.REMOVED]


@dataclass(frozen=True)
class TemplateCommit:
    """The propagation record: commit SHA plus its full message."""

    sha: str
    message: str

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass(frozen=True)
class PullRequest:
    number: int
    title: str
    body: str
    head: str
    base: str
    url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PullRequest":
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            head=(data.get("head") or {}).get("ref", ""),
            base=(data.get("base") or {}).get("ref", ""),
            url=data.get("html_url") or "",
        )


class FileSyncStatus(Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileSyncOutcome:
    path: str
    status: FileSyncStatus
    error: Optional[str] = None


@dataclass
class SyncReport:
    """Per-file outcomes of one synchronization run."""

    outcomes: List[FileSyncOutcome] = field(default_factory=list)

    def add(self, outcome: FileSyncOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def succeeded(self) -> List[FileSyncOutcome]:
        return [o for o in self.outcomes if o.status in (FileSyncStatus.CREATED, FileSyncStatus.UPDATED)]

    @property
    def failed(self) -> List[FileSyncOutcome]:
        return [o for o in self.outcomes if o.status is FileSyncStatus.FAILED]

    @property
    def skipped(self) -> List[FileSyncOutcome]:
        return [o for o in self.outcomes if o.status is FileSyncStatus.SKIPPED]


class PropagationOutcome(Enum):
    OPENED = "opened"
    ALREADY_PROCESSED = "already_processed"
    NOT_ASSOCIATED = "not_associated"
    NO_CHANGES = "no_changes"
    ERROR = "error"


@dataclass(frozen=True)
class PropagationResult:
    """What happened to one derived repository during a fan-out."""

    repository: DerivedRepository
    outcome: PropagationOutcome
    pull_request: Optional[PullRequest] = None
