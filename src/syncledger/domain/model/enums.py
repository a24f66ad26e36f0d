"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ChangeAction(StrEnum):
    """Discriminator for change records."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REWIND = "rewind"
    SYNC = "sync"


class ChangeType(StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class AgentKind(StrEnum):
    USER = "user"
    SYSTEM = "system"


class ValueMethod(StrEnum):
    """How a value was obtained."""

    DECLARED = "declared"
    MEASURED = "measured"
    AGGREGATED = "aggregated"
    INFERRED = "inferred"
    DERIVED = "derived"
    UNKNOWN = "unknown"


class Scale(StrEnum):
    """Organizational scale a value applies to."""

    INDIVIDUAL = "individual"
    TEAM = "team"
    DEPARTMENT = "department"
    ORGANIZATION = "organization"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


class Side(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class ConflictStrategy(StrEnum):
    SUPERPOSITION = "superposition"
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    NEWEST_WINS = "newest-wins"


class ConflictOutcome(StrEnum):
    """Discriminator for conflict decisions."""

    NOT_A_CONFLICT = "not-a-conflict"
    OVERRIDE = "override"
    SUPERPOSED = "superposed"


class RemoteWriteMode(StrEnum):
    """What the remote store receives for a superposed field."""

    DOMINANT = "dominant"
    SUPPRESS = "suppress"


class SyncDirection(StrEnum):
    BIDIRECTIONAL = "bidirectional"
    REMOTE_TO_LOCAL = "remote-to-local"
    LOCAL_TO_REMOTE = "local-to-remote"

    @property
    def pulls(self) -> bool:
        return self is not SyncDirection.LOCAL_TO_REMOTE

    @property
    def pushes(self) -> bool:
        return self is not SyncDirection.REMOTE_TO_LOCAL


class SyncStep(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    RESOLVING = "resolving"
    APPLYING = "applying"
    LOGGING = "logging"
    FAILED = "failed"


class RewindPhase(StrEnum):
    IDLE = "idle"
    PREVIEW_PENDING = "preview_pending"
    PREVIEWING = "previewing"
    APPLYING = "applying"
