"""Sequences a single volume-copy refresh through the protocol's state machine."""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from dbrefresh.config.constants import FIRST_MUTATING_STEP
from dbrefresh.core.disk_locator import locate_disk_for_database
from dbrefresh.domain.enums import (DatabaseStatus, ProgressPhase, RefreshOutcome,
                                    RefreshState, TargetSide)
from dbrefresh.domain.errors import CancelledError
from dbrefresh.domain.models import (CompensationRecord, ProgressEvent, RefreshReport,
                                     RefreshRequest, ResolvedTarget)
from dbrefresh.domain.states import ConnectArrayStep, RefreshStep
from dbrefresh.infrastructure.logging_handler import StructuredLogger

ProgressListener = Callable[[ProgressEvent], None]


class RefreshOrchestrator:
    """Runs one refresh request to a terminal state according to the State pattern.

    The orchestrator is the context object handed to every step: it owns the
    collaborators, the resolved targets and the bookkeeping that ends up in
    the `RefreshReport`.
    """

    def __init__(
        self,
        request: RefreshRequest,
        array_connector: Callable[[str, str, str], Any],
        engine: Any,
        executor: Any,
        logger: StructuredLogger,
        refresh_config: Optional[Dict[str, Any]] = None,
        listener: Optional[ProgressListener] = None,
    ):
        """Initializes the orchestrator with all required collaborators.

        Args:
            request (RefreshRequest): The refresh parameters.
            array_connector (Callable): Opens an array session from (endpoint, user, password).
            engine (Any): Database engine collaborator (`SqlServerEngine`).
            executor (Any): Remote executor used for host disk operations.
            logger (StructuredLogger): The structured logger.
            refresh_config (Optional[Dict[str, Any]]): Orchestration settings.
            listener (Optional[ProgressListener]): Receives every progress event.
        """
        self.request = request
        self.array_connector = array_connector
        self.engine = engine
        self.executor = executor
        self.logger = logger
        self.refresh_config = refresh_config or {}
        self.listener = listener
        self.refresh_id = uuid.uuid4().hex[:12]

        self.array_session: Any = None
        self.destination: Optional[ResolvedTarget] = None
        self.source: Optional[ResolvedTarget] = None
        self.initial_destination_status: Optional[DatabaseStatus] = None

        self.state = RefreshState.INIT
        self.state_history: List[RefreshState] = [RefreshState.INIT]
        self.events: List[ProgressEvent] = []
        self.compensations: List[CompensationRecord] = []
        self.outcome: Optional[RefreshOutcome] = None
        self.overwrite_seconds: Optional[float] = None
        self.failed_step: Optional[int] = None
        self.failed_step_name: Optional[str] = None
        self.error: Optional[Exception] = None

        self.mutation_started = False
        self._cancel_requested = False
        self._started_at: Optional[float] = None
        self.current_step: Optional[RefreshStep] = ConnectArrayStep()

    # ------------------------------------------------------------------
    # Called by steps
    # ------------------------------------------------------------------

    def advance(self, state: RefreshState) -> None:
        """Records a state transition."""
        self.logger.info(f"Transitioning from {self.state.name} to {state.name}",
                         {"database": self.request.database_name})
        self.state = state
        self.state_history.append(state)

    def emit(self, phase: ProgressPhase, message: str,
             elapsed_seconds: Optional[float] = None) -> ProgressEvent:
        """Creates, logs and forwards a progress event."""
        event = ProgressEvent(phase=phase, state=self.state, message=message,
                              timestamp=datetime.now(timezone.utc),
                              elapsed_seconds=elapsed_seconds)
        self.events.append(event)
        log_data = {"phase": phase.value, "state": self.state.value}
        if elapsed_seconds is not None:
            log_data["elapsed_seconds"] = round(elapsed_seconds, 3)
        self.logger.info(message, log_data)

        if self.listener is not None:
            try:
                self.listener(event)
            except Exception as e:
                self.logger.warning("Progress listener failed", {"error": str(e)})
        return event

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def resolve_target(self, side: TargetSide, instance: str) -> ResolvedTarget:
        """Resolves database, physical host, disk and array volume for one side."""
        self.logger.bind(side=side.value)
        try:
            database = self.engine.resolve(instance, self.request.database_name)
            disk = locate_disk_for_database(self.engine, self.executor, database)
            volume = self.array_session.resolve_volume_by_serial(disk.serial_number)
        finally:
            self.logger.bind(side=None)
        target = ResolvedTarget(side=side, database=database, host_name=disk.host_name,
                                disk=disk, volume=volume)
        self.logger.info(f"Resolved {side.value}", {
            "instance": instance,
            "host": disk.host_name,
            "disk_number": disk.disk_number,
            "serial": disk.serial_number,
            "volume": volume.name,
        })
        return target

    def request_cancel(self) -> bool:
        """Asks the refresh to stop. Honoured only before the destination is touched.

        Returns:
            bool: True if the cancellation will be honoured.
        """
        if self.mutation_started:
            self.logger.warning("Cancellation ignored; destination is already being modified",
                                {"state": self.state.value})
            return False
        self.logger.warning("Cancellation requested", {"state": self.state.value})
        self._cancel_requested = True
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancel_requested and not self.mutation_started:
            raise CancelledError(
                f"Refresh cancelled before step {FIRST_MUTATING_STEP}; nothing was modified")

    def record_failure(self, step: int, step_name: str, error: Exception) -> None:
        self.failed_step = step
        self.failed_step_name = step_name
        self.error = error

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run(self) -> RefreshReport:
        """Executes the complete protocol and returns the final report."""
        self._started_at = time.monotonic()
        self.logger.bind(refresh_id=self.refresh_id)
        self.logger.info("Starting refresh", {
            "database": self.request.database_name,
            "source": self.request.source_instance,
            "destination": self.request.destination_instance,
            "array": self.request.array_endpoint,
        })

        try:
            while self.current_step:
                step_name = self.current_step.get_state_name()
                self.logger.bind(step=self.current_step.number or None)
                self.logger.debug(f"Executing step: {step_name}")
                self.current_step = self.current_step.execute(self)
        finally:
            self.logger.bind(step=None)
            self._close_array_session()

        report = self.build_report()
        log = self.logger.info if report.succeeded else self.logger.error
        log("Refresh finished", {
            "outcome": report.outcome.value,
            "final_state": report.final_state.value,
            "total_seconds": round(report.total_seconds, 3),
            "overwrite_seconds": report.overwrite_seconds,
        })
        self.logger.clear_scope()
        return report

    def _close_array_session(self) -> None:
        if self.array_session is None:
            return
        try:
            self.array_session.close()
        except Exception as e:
            self.logger.warning("Closing array session failed", {"error": str(e)})

    def build_report(self) -> RefreshReport:
        return RefreshReport(
            refresh_id=self.refresh_id,
            outcome=self.outcome or RefreshOutcome.FAILED,
            final_state=self.state,
            state_history=list(self.state_history),
            total_seconds=self.elapsed(),
            overwrite_seconds=self.overwrite_seconds,
            failed_step=self.failed_step,
            failed_step_name=self.failed_step_name,
            error=str(self.error) if self.error else None,
            error_type=type(self.error).__name__ if self.error else None,
            compensations=list(self.compensations),
            events=list(self.events),
        )
