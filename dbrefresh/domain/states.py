"""Defines the refresh protocol as a state machine using the State pattern.

Each step performs one transition of the protocol and returns the next step.
Failures never propagate out of a step: `handle_step_failure` converts them
into an `AbortingStep`, which is the single place that decides which
compensations run.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from dbrefresh.config.constants import STEP_NAMES
from dbrefresh.domain.enums import (DatabaseStatus, DiskStatus, ProgressPhase, RefreshOutcome,
                                    RefreshState, RemoteOperation, TargetSide)
from dbrefresh.domain.errors import AmbiguousMappingError
from dbrefresh.domain.models import CompensationRecord

if TYPE_CHECKING:
    from dbrefresh.core.orchestrator import RefreshOrchestrator


def handle_step_failure(func: Callable[..., Any]) -> Callable[..., Any]:
    """A decorator that turns any exception raised by a step into an abort."""

    @wraps(func)
    def wrapper(step: 'RefreshStep',
                context: 'RefreshOrchestrator') -> Optional['RefreshStep']:
        try:
            return func(step, context)
        except Exception as e:
            context.logger.error(
                f"Step {step.number} '{step.get_state_name()}' failed: {e}", {
                    "step": step.number,
                    "state": context.state.value,
                    "exception_type": type(e).__name__,
                })
            return AbortingStep(step.number, step.get_state_name(), e)

    return wrapper


class RefreshStep(ABC):
    """Abstract base class for refresh steps implementing the State pattern."""

    number: int = 0

    def get_state_name(self) -> str:
        """Return the human-readable name of this step."""
        return STEP_NAMES.get(self.number, type(self).__name__)

    @abstractmethod
    def execute(self, context: 'RefreshOrchestrator') -> Optional[RefreshStep]:
        """Execute this step and return the next one, or None when terminal."""
        pass


class ConnectArrayStep(RefreshStep):
    """Step 1: authenticate against the storage array."""

    number = 1

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        context.raise_if_cancelled()
        request = context.request
        context.emit(ProgressPhase.CONNECTING, f"Connecting to array {request.array_endpoint}")
        context.array_session = context.array_connector(
            request.array_endpoint, request.array_username, request.array_password)
        context.advance(RefreshState.ARRAY_CONNECTED)
        return ResolveDestinationStep()


class ResolveDestinationStep(RefreshStep):
    """Step 2: resolve destination database, host, disk and volume."""

    number = 2

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        context.raise_if_cancelled()
        instance = context.request.destination_instance
        context.emit(ProgressPhase.RESOLVING, f"Resolving destination on {instance}")
        context.destination = context.resolve_target(TargetSide.DESTINATION, instance)
        context.initial_destination_status = context.destination.database.status
        return ResolveSourceStep()


class ResolveSourceStep(RefreshStep):
    """Step 3: resolve source database, host, disk and volume."""

    number = 3

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        context.raise_if_cancelled()
        instance = context.request.source_instance
        context.emit(ProgressPhase.RESOLVING, f"Resolving source on {instance}")
        context.source = context.resolve_target(TargetSide.SOURCE, instance)

        if context.refresh_config.get("forbid_same_volume", True):
            src, dst = context.source.volume, context.destination.volume
            if src.name == dst.name or src.serial.upper() == dst.serial.upper():
                raise AmbiguousMappingError(
                    f"Source and destination both resolve to volume {dst.name}",
                    candidates=[src.name, dst.name])

        context.advance(RefreshState.TARGETS_RESOLVED)
        return OfflineDatabaseStep()


class OfflineDatabaseStep(RefreshStep):
    """Step 4: take the destination database offline."""

    number = 4

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        context.raise_if_cancelled()
        context.mutation_started = True
        database = context.destination.database
        context.emit(ProgressPhase.OFFLINING, f"Taking database {database.name} offline")
        database.set_offline()
        context.advance(RefreshState.DEST_DB_OFFLINE)
        return OfflineDiskStep()


class OfflineDiskStep(RefreshStep):
    """Step 5: take the destination disk offline on its host."""

    number = 5

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        disk = context.destination.disk
        context.emit(ProgressPhase.OFFLINING,
                     f"Taking disk {disk.disk_number} offline on {disk.host_name}")
        context.executor.run(disk.host_name, RemoteOperation.SET_DISK_OFFLINE,
                             {"disk_number": disk.disk_number, "offline": True})
        disk.status = DiskStatus.OFFLINE
        context.advance(RefreshState.DEST_DISK_OFFLINE)
        return OverwriteVolumeStep()


class OverwriteVolumeStep(RefreshStep):
    """Step 6: overwrite the destination volume with the source volume."""

    number = 6

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        target = context.destination.volume.name
        source = context.source.volume.name
        context.emit(ProgressPhase.OVERWRITING, f"Overwriting volume {target} from {source}")
        started = time.monotonic()
        try:
            context.array_session.overwrite_volume(target, source)
        finally:
            context.overwrite_seconds = time.monotonic() - started
        context.emit(ProgressPhase.OVERWRITING, f"Volume {target} overwritten",
                     elapsed_seconds=context.overwrite_seconds)
        context.advance(RefreshState.VOLUME_OVERWRITTEN)
        return OnlineDiskStep()


class OnlineDiskStep(RefreshStep):
    """Step 7: bring the destination disk back online."""

    number = 7

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        disk = context.destination.disk
        context.emit(ProgressPhase.ONLINING,
                     f"Bringing disk {disk.disk_number} online on {disk.host_name}")
        context.executor.run(disk.host_name, RemoteOperation.SET_DISK_OFFLINE,
                             {"disk_number": disk.disk_number, "offline": False})
        disk.status = DiskStatus.ONLINE
        context.advance(RefreshState.DEST_DISK_ONLINE)
        return OnlineDatabaseStep()


class OnlineDatabaseStep(RefreshStep):
    """Step 8: bring the destination database back online."""

    number = 8

    @handle_step_failure
    def execute(self, context: 'RefreshOrchestrator') -> RefreshStep:
        database = context.destination.database
        context.emit(ProgressPhase.ONLINING, f"Bringing database {database.name} online")
        database.set_online()
        context.advance(RefreshState.DEST_DB_ONLINE)
        return CompletedStep()


class CompletedStep(RefreshStep):
    """Terminal success."""

    def execute(self, context: 'RefreshOrchestrator') -> Optional[RefreshStep]:
        context.outcome = RefreshOutcome.SUCCEEDED
        context.emit(ProgressPhase.COMPLETED, "Refresh completed successfully",
                     elapsed_seconds=context.elapsed())
        return None

    def get_state_name(self) -> str:
        return "Completed"


class AbortingStep(RefreshStep):
    """Runs the compensations owed for a failure at `failed_step`."""

    def __init__(self, failed_step: int, failed_step_name: str, error: Exception):
        self.failed_step = failed_step
        self.failed_step_name = failed_step_name
        self.error = error

    def get_state_name(self) -> str:
        return "Aborting"

    def compensations_for(self, context: 'RefreshOrchestrator') -> List[Tuple[str, Callable[[], None]]]:
        """Returns the (description, action) pairs owed for the failed step, in order."""
        if self.failed_step == 4:
            # The ALTER may have applied before the failure surfaced; set_online is a
            # no-op when it did not.
            if context.initial_destination_status is not DatabaseStatus.ONLINE:
                return []
            database = context.destination.database
            return [(f"Bring database {database.name} online", database.set_online)]
        if self.failed_step not in (5, 6):
            return []

        disk = context.destination.disk
        database = context.destination.database

        def disk_online() -> None:
            context.executor.run(disk.host_name, RemoteOperation.SET_DISK_OFFLINE,
                                 {"disk_number": disk.disk_number, "offline": False})
            disk.status = DiskStatus.ONLINE

        return [
            (f"Bring disk {disk.disk_number} online on {disk.host_name}", disk_online),
            (f"Bring database {database.name} online", database.set_online),
        ]

    def execute(self, context: 'RefreshOrchestrator') -> Optional[RefreshStep]:
        context.advance(RefreshState.ABORTING)
        context.record_failure(self.failed_step, self.failed_step_name, self.error)
        context.emit(ProgressPhase.FAILED,
                     f"Step {self.failed_step} '{self.failed_step_name}' failed: {self.error}")

        for description, action in self.compensations_for(context):
            context.emit(ProgressPhase.COMPENSATING, description)
            try:
                action()
            except Exception as e:
                context.logger.error("Compensation failed", {"action": description,
                                                             "error": str(e)})
                context.compensations.append(CompensationRecord(description, False, str(e)))
            else:
                context.logger.info("Compensation succeeded", {"action": description})
                context.compensations.append(CompensationRecord(description, True))

        unsafe = self.failed_step in (7, 8) or any(not c.success for c in context.compensations)
        context.outcome = RefreshOutcome.UNSAFE if unsafe else RefreshOutcome.FAILED
        if unsafe:
            context.logger.critical(
                "Destination left unusable; manual intervention required", {
                    "failed_step": self.failed_step,
                    "database": context.request.database_name,
                    "instance": context.request.destination_instance,
                    "error": str(self.error),
                })
        return AbortedStep()


class AbortedStep(RefreshStep):
    """Terminal failure."""

    def execute(self, context: 'RefreshOrchestrator') -> Optional[RefreshStep]:
        context.advance(RefreshState.ABORTED)
        return None

    def get_state_name(self) -> str:
        return "Aborted"
