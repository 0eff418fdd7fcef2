"""Defines Data Transfer Objects (DTOs) for the application's domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from dbrefresh.domain.enums import (DiskStatus, ProgressPhase, RefreshOutcome,
                                    RefreshState, TargetSide)


@dataclass(frozen=True)
class RefreshRequest:
    """Parameters of one refresh operation."""
    database_name: str
    source_instance: str
    destination_instance: str
    array_endpoint: str
    array_username: str
    array_password: str = field(repr=False)


@dataclass
class HostDisk:
    """A host-level disk backing a database's files."""
    host_name: str
    disk_number: int
    serial_number: str
    status: DiskStatus = DiskStatus.ONLINE


@dataclass(frozen=True)
class StorageVolume:
    """The array-side volume object matching a host disk."""
    name: str
    serial: str


@dataclass
class ExecutionResult:
    """Outcome of one remote dispatch."""
    host_name: str
    operation: str
    exit_status: int
    output: str = ""
    error: str = ""

    @property
    def success(self) -> bool:
        return self.exit_status == 0


@dataclass
class ResolvedTarget:
    """Everything resolved for one side of the refresh."""
    side: TargetSide
    database: Any
    host_name: str
    disk: HostDisk
    volume: StorageVolume


@dataclass
class ProgressEvent:
    """Structured progress record emitted on each transition."""
    phase: ProgressPhase
    state: RefreshState
    message: str
    timestamp: datetime
    elapsed_seconds: Optional[float] = None


@dataclass
class CompensationRecord:
    """Outcome of one compensating action."""
    action: str
    success: bool
    error: Optional[str] = None


@dataclass
class RefreshReport:
    """Final report of a refresh operation."""
    outcome: RefreshOutcome
    final_state: RefreshState
    state_history: List[RefreshState]
    total_seconds: float
    overwrite_seconds: Optional[float] = None
    failed_step: Optional[int] = None
    failed_step_name: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    compensations: List[CompensationRecord] = field(default_factory=list)
    events: List[ProgressEvent] = field(default_factory=list)
    refresh_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RefreshOutcome.SUCCEEDED
