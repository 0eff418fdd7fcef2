"""Defines enumerations for states and statuses used throughout the application."""

from enum import Enum


class RefreshState(Enum):
    """Enumeration of refresh orchestration states, in protocol order."""
    INIT = "init"
    ARRAY_CONNECTED = "array_connected"
    TARGETS_RESOLVED = "targets_resolved"
    DEST_DB_OFFLINE = "dest_db_offline"
    DEST_DISK_OFFLINE = "dest_disk_offline"
    VOLUME_OVERWRITTEN = "volume_overwritten"
    DEST_DISK_ONLINE = "dest_disk_online"
    DEST_DB_ONLINE = "dest_db_online"
    ABORTING = "aborting"
    ABORTED = "aborted"


class RefreshOutcome(Enum):
    """Terminal outcome of a refresh operation."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Destination left offline, needs manual intervention.
    UNSAFE = "unsafe"


class DatabaseStatus(Enum):
    """Enumeration of database availability states as reported by the engine."""
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    RESTORING = "RESTORING"
    RECOVERING = "RECOVERING"
    RECOVERY_PENDING = "RECOVERY_PENDING"
    SUSPECT = "SUSPECT"
    EMERGENCY = "EMERGENCY"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_state_desc(cls, value: str) -> "DatabaseStatus":
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


class DiskStatus(Enum):
    """Enumeration of host disk states."""
    ONLINE = "online"
    OFFLINE = "offline"


class TargetSide(Enum):
    """Which side of the refresh a resolved object belongs to."""
    SOURCE = "source"
    DESTINATION = "destination"


class ProgressPhase(Enum):
    """Phases reported through progress events."""
    CONNECTING = "connecting"
    RESOLVING = "resolving"
    OFFLINING = "offlining"
    OVERWRITING = "overwriting"
    ONLINING = "onlining"
    COMPLETED = "completed"
    COMPENSATING = "compensating"
    FAILED = "failed"


class RemoteOperation(Enum):
    """Units of work the remote executor knows how to dispatch."""
    GET_DISK_FOR_PATH = "get_disk_for_path"
    SET_DISK_OFFLINE = "set_disk_offline"


class RemoteFailureKind(Enum):
    """Distinguishes remote execution failures so callers can tell them apart."""
    CONNECTIVITY = "connectivity"
    AUTHORIZATION = "authorization"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    REMOTE_EXCEPTION = "remote_exception"
