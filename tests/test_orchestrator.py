"""Tests for the refresh state machine driven through RefreshOrchestrator."""

import json
from unittest.mock import MagicMock

import pytest

from dbrefresh.core.orchestrator import RefreshOrchestrator
from dbrefresh.core.volume_resolver import match_volume_by_serial
from dbrefresh.domain.enums import (DatabaseStatus, DiskStatus, ProgressPhase,
                                    RefreshOutcome, RefreshState, RemoteOperation)
from dbrefresh.domain.errors import (ConnectivityError, NotFoundError, RemoteExecutionError,
                                     ReplicationError, StateTransitionError)
from dbrefresh.domain.models import ExecutionResult, RefreshRequest, StorageVolume


HAPPY_SEQUENCE = [
    RefreshState.INIT,
    RefreshState.ARRAY_CONNECTED,
    RefreshState.TARGETS_RESOLVED,
    RefreshState.DEST_DB_OFFLINE,
    RefreshState.DEST_DISK_OFFLINE,
    RefreshState.VOLUME_OVERWRITTEN,
    RefreshState.DEST_DISK_ONLINE,
    RefreshState.DEST_DB_ONLINE,
]


class FakeDatabase:
    """Database handle whose transitions are idempotent, like the real one."""

    def __init__(self, instance, name, path):
        self.instance = instance
        self.name = name
        self.primary_file_path = path
        self.status = DatabaseStatus.ONLINE
        self.fail_offline = False
        self.fail_online = False
        self.calls = []

    def set_offline(self):
        self.calls.append("offline")
        if self.fail_offline:
            raise StateTransitionError("offline rejected")
        self.status = DatabaseStatus.OFFLINE

    def set_online(self):
        self.calls.append("online")
        if self.fail_online:
            raise StateTransitionError("online rejected")
        self.status = DatabaseStatus.ONLINE


class FakeEngine:
    def __init__(self):
        self.databases = {
            "DST01": FakeDatabase("DST01", "AppDb", r"F:\Data\AppDb.mdf"),
            "SRC01": FakeDatabase("SRC01", "AppDb", r"G:\Data\AppDb.mdf"),
        }
        self.hosts = {"DST01": "DSTHOST", "SRC01": "SRCHOST"}
        self.missing = set()

    def resolve(self, instance, name):
        if instance in self.missing:
            raise NotFoundError(f"Database {name} not found on {instance}")
        return self.databases[instance]

    def resolve_physical_host_name(self, instance):
        host = self.hosts.get(instance)
        if not host:
            raise NotFoundError(f"Instance {instance} did not report a physical host name")
        return host


class FakeExecutor:
    """Remote executor simulating one disk per host."""

    def __init__(self):
        self.disks = {
            "DSTHOST": {"Number": 3, "SerialNumber": "SN-A", "IsOffline": False},
            "SRCHOST": {"Number": 5, "SerialNumber": "SN-B", "IsOffline": False},
        }
        self.fail_on = set()
        self.calls = []

    def run(self, host_name, operation, arguments):
        self.calls.append((host_name, operation, dict(arguments)))
        if operation is RemoteOperation.GET_DISK_FOR_PATH:
            return ExecutionResult(host_name, operation.value, 0, json.dumps(self.disks[host_name]))
        key = "offline" if arguments["offline"] else "online"
        if key in self.fail_on:
            raise RemoteExecutionError(f"Set-Disk {key} failed", host_name=host_name)
        self.disks[host_name]["IsOffline"] = arguments["offline"]
        return ExecutionResult(host_name, operation.value, 0)

    def disk_toggles(self):
        return [c for c in self.calls if c[1] is RemoteOperation.SET_DISK_OFFLINE]


class FakeArraySession:
    def __init__(self, volumes):
        self.volumes = volumes
        self.content = {v.name: f"data-of-{v.name}" for v in volumes}
        self.overwrites = []
        self.fail_overwrite = False
        self.closed = False

    def resolve_volume_by_serial(self, serial):
        return match_volume_by_serial(self.volumes, serial)

    def overwrite_volume(self, target, source):
        self.overwrites.append((target, source))
        if self.fail_overwrite:
            raise ReplicationError("array rejected copy")
        self.content[target] = self.content[source]

    def close(self):
        self.closed = True


@pytest.fixture
def request_params():
    return RefreshRequest(
        database_name="AppDb",
        source_instance="SRC01",
        destination_instance="DST01",
        array_endpoint="10.0.0.5",
        array_username="pureuser",
        array_password="secret",
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def array_session():
    return FakeArraySession([
        StorageVolume("dst-vol", "SN-A"),
        StorageVolume("src-vol", "SN-B"),
        StorageVolume("other-vol", "SN-C"),
    ])


@pytest.fixture
def make_orchestrator(request_params, engine, executor, array_session):
    def factory(refresh_config=None, listener=None, connector=None):
        return RefreshOrchestrator(
            request=request_params,
            array_connector=connector or (lambda endpoint, user, password: array_session),
            engine=engine,
            executor=executor,
            logger=MagicMock(),
            refresh_config=refresh_config,
            listener=listener,
        )
    return factory


def test_happy_path_runs_every_state_in_order(make_orchestrator, engine, executor, array_session):
    """All eight steps succeed: destination ends online holding the source's data."""
    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.SUCCEEDED
    assert report.state_history == HAPPY_SEQUENCE
    assert report.final_state is RefreshState.DEST_DB_ONLINE
    assert report.failed_step is None
    assert report.compensations == []
    assert report.overwrite_seconds is not None
    assert report.total_seconds >= report.overwrite_seconds

    assert array_session.overwrites == [("dst-vol", "src-vol")]
    assert array_session.content["dst-vol"] == array_session.content["src-vol"]
    assert array_session.closed

    dest = engine.databases["DST01"]
    assert dest.status is DatabaseStatus.ONLINE
    assert dest.calls == ["offline", "online"]
    assert engine.databases["SRC01"].calls == []

    assert executor.disk_toggles() == [
        ("DSTHOST", RemoteOperation.SET_DISK_OFFLINE, {"disk_number": 3, "offline": True}),
        ("DSTHOST", RemoteOperation.SET_DISK_OFFLINE, {"disk_number": 3, "offline": False}),
    ]
    assert executor.disks["DSTHOST"]["IsOffline"] is False


def test_happy_path_reports_progress_phases(make_orchestrator):
    events = []
    report = make_orchestrator(listener=events.append).run()

    phases = [e.phase for e in events]
    for phase in (ProgressPhase.CONNECTING, ProgressPhase.RESOLVING, ProgressPhase.OFFLINING,
                  ProgressPhase.OVERWRITING, ProgressPhase.ONLINING, ProgressPhase.COMPLETED):
        assert phase in phases
    assert all(e.timestamp.tzinfo is not None for e in events)

    overwrite_done = [e for e in events
                      if e.phase is ProgressPhase.OVERWRITING and e.elapsed_seconds is not None]
    assert len(overwrite_done) == 1
    assert events[-1].phase is ProgressPhase.COMPLETED
    assert events[-1].elapsed_seconds is not None
    assert report.events == events


def test_destination_disk_taken_offline_only_after_database(make_orchestrator, engine, executor):
    order = []
    dest = engine.databases["DST01"]
    original_offline = dest.set_offline
    original_run = executor.run

    def tracking_offline():
        order.append("db-offline")
        original_offline()

    def tracking_run(host, operation, arguments):
        if operation is RemoteOperation.SET_DISK_OFFLINE and arguments["offline"]:
            order.append("disk-offline")
        return original_run(host, operation, arguments)

    dest.set_offline = tracking_offline
    executor.run = tracking_run

    make_orchestrator().run()

    assert order == ["db-offline", "disk-offline"]


def test_ambiguous_destination_volume_aborts_without_mutation(make_orchestrator, engine,
                                                              executor, array_session):
    """Two array volumes share serial SN-A: resolution fails at step 2."""
    array_session.volumes.append(StorageVolume("dst-vol-clone", "SN-A"))

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.FAILED
    assert report.failed_step == 2
    assert report.error_type == "AmbiguousMappingError"
    assert report.final_state is RefreshState.ABORTED
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE
    assert engine.databases["DST01"].calls == []
    assert executor.disk_toggles() == []
    assert array_session.overwrites == []
    assert report.compensations == []


@pytest.mark.parametrize("failed_step", [1, 2, 3, 4])
def test_failures_before_disk_offline_leave_database_state_unchanged(
        failed_step, make_orchestrator, engine, executor, array_session):
    dest = engine.databases["DST01"]
    before = dest.status
    connector = None
    if failed_step == 1:
        def connector(endpoint, user, password):
            raise ConnectivityError("array unreachable")
    elif failed_step == 2:
        engine.missing.add("DST01")
    elif failed_step == 3:
        engine.missing.add("SRC01")
    else:
        dest.fail_offline = True

    report = make_orchestrator(connector=connector).run()

    assert report.outcome is RefreshOutcome.FAILED
    assert report.failed_step == failed_step
    assert report.final_state is RefreshState.ABORTED
    assert report.state_history[-2:] == [RefreshState.ABORTING, RefreshState.ABORTED]
    assert all(c.success for c in report.compensations)
    assert dest.status is before
    assert executor.disk_toggles() == []
    assert array_session.overwrites == []


def test_physical_host_resolution_failure_is_fatal(make_orchestrator, engine, executor):
    engine.hosts["DST01"] = None

    report = make_orchestrator().run()

    assert report.failed_step == 2
    assert report.error_type == "NotFoundError"
    assert executor.calls == []


def test_disk_offline_failure_restores_disk_and_database(make_orchestrator, engine, executor):
    executor.fail_on.add("offline")

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.FAILED
    assert report.failed_step == 5
    assert report.error_type == "RemoteExecutionError"
    assert [c.success for c in report.compensations] == [True, True]
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE
    assert executor.disks["DSTHOST"]["IsOffline"] is False
    assert report.final_state is RefreshState.ABORTED


def test_disk_offline_failure_always_compensates(make_orchestrator, engine, executor):
    """Leftover settings from older configs cannot turn compensation off."""
    executor.fail_on.add("offline")

    report = make_orchestrator(refresh_config={"compensate_disk_offline_failure": False}).run()

    assert report.failed_step == 5
    assert report.outcome is RefreshOutcome.FAILED
    assert [c.success for c in report.compensations] == [True, True]
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE


def test_database_offline_applied_then_failed_is_brought_back_online(make_orchestrator, engine):
    """The ALTER succeeded but its verification failed: step 4 still restores the database."""
    dest = engine.databases["DST01"]

    def offline_then_fail():
        dest.calls.append("offline")
        dest.status = DatabaseStatus.OFFLINE
        raise StateTransitionError("state re-read failed")

    dest.set_offline = offline_then_fail

    report = make_orchestrator().run()

    assert report.failed_step == 4
    assert report.outcome is RefreshOutcome.FAILED
    assert [c.success for c in report.compensations] == [True]
    assert dest.calls == ["offline", "online"]
    assert dest.status is DatabaseStatus.ONLINE


def test_database_offline_failure_with_failed_restore_is_unsafe(make_orchestrator, engine):
    dest = engine.databases["DST01"]
    dest.fail_online = True

    def offline_then_fail():
        dest.status = DatabaseStatus.OFFLINE
        raise StateTransitionError("state re-read failed")

    dest.set_offline = offline_then_fail

    report = make_orchestrator().run()

    assert report.failed_step == 4
    assert report.outcome is RefreshOutcome.UNSAFE
    assert dest.status is DatabaseStatus.OFFLINE


def test_database_initially_offline_is_not_brought_online(make_orchestrator, engine):
    dest = engine.databases["DST01"]
    dest.status = DatabaseStatus.OFFLINE
    dest.fail_offline = True

    report = make_orchestrator().run()

    assert report.failed_step == 4
    assert report.compensations == []
    assert dest.calls == ["offline"]
    assert dest.status is DatabaseStatus.OFFLINE


def test_overwrite_failure_compensates_disk_then_database(make_orchestrator, engine,
                                                          executor, array_session):
    """Disk offlined, array copy fails: both are brought back online."""
    array_session.fail_overwrite = True

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.FAILED
    assert report.failed_step == 6
    assert report.error_type == "ReplicationError"
    assert [c.action.split()[1] for c in report.compensations] == ["disk", "database"]
    assert all(c.success for c in report.compensations)
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE
    assert executor.disks["DSTHOST"]["IsOffline"] is False
    assert array_session.content["dst-vol"] == "data-of-dst-vol"
    assert report.overwrite_seconds is not None
    assert RefreshState.VOLUME_OVERWRITTEN not in report.state_history


def test_compensation_failure_is_reported_as_unsafe(make_orchestrator, engine, array_session):
    array_session.fail_overwrite = True
    engine.databases["DST01"].fail_online = True

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.UNSAFE
    assert [c.success for c in report.compensations] == [True, False]
    assert "online rejected" in report.compensations[1].error
    # No recursion: each compensation ran exactly once.
    assert engine.databases["DST01"].calls == ["offline", "online"]


def test_disk_online_failure_is_unsafe_and_not_compensated(make_orchestrator, engine, executor):
    executor.fail_on.add("online")

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.UNSAFE
    assert report.failed_step == 7
    assert report.compensations == []
    assert engine.databases["DST01"].status is DatabaseStatus.OFFLINE


def test_database_online_failure_is_unsafe(make_orchestrator, engine, executor):
    engine.databases["DST01"].fail_online = True

    report = make_orchestrator().run()

    assert report.outcome is RefreshOutcome.UNSAFE
    assert report.failed_step == 8
    assert report.final_state is RefreshState.ABORTED
    assert executor.disks["DSTHOST"]["IsOffline"] is False
    assert engine.databases["DST01"].status is DatabaseStatus.OFFLINE


def test_unsafe_outcome_logged_as_critical(request_params, engine, executor, array_session):
    engine.databases["DST01"].fail_online = True
    logger = MagicMock()
    orchestrator = RefreshOrchestrator(request_params, lambda *a: array_session,
                                       engine, executor, logger)

    orchestrator.run()

    logger.critical.assert_called_once()


def test_same_source_and_destination_volume_is_rejected(make_orchestrator, executor, array_session):
    executor.disks["SRCHOST"]["SerialNumber"] = "sn-a"

    report = make_orchestrator().run()

    assert report.failed_step == 3
    assert report.error_type == "AmbiguousMappingError"
    assert array_session.overwrites == []


def test_cancel_before_start_aborts_without_connecting(make_orchestrator):
    connector = MagicMock()
    orchestrator = make_orchestrator(connector=connector)

    assert orchestrator.request_cancel() is True
    report = orchestrator.run()

    connector.assert_not_called()
    assert report.outcome is RefreshOutcome.FAILED
    assert report.failed_step == 1
    assert report.error_type == "CancelledError"


def test_cancel_during_overwrite_is_ignored(make_orchestrator, engine):
    holder = {}

    def listener(event):
        if event.phase is ProgressPhase.OVERWRITING:
            holder["accepted"] = holder["orchestrator"].request_cancel()

    orchestrator = make_orchestrator(listener=listener)
    holder["orchestrator"] = orchestrator
    report = orchestrator.run()

    assert holder["accepted"] is False
    assert report.outcome is RefreshOutcome.SUCCEEDED
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE


def test_listener_errors_do_not_abort_refresh(make_orchestrator):
    def broken_listener(event):
        raise RuntimeError("terminal closed")

    report = make_orchestrator(listener=broken_listener).run()

    assert report.outcome is RefreshOutcome.SUCCEEDED


def test_disk_status_tracked_on_resolved_target(make_orchestrator):
    orchestrator = make_orchestrator()
    orchestrator.run()

    assert orchestrator.destination.disk.status is DiskStatus.ONLINE
    assert orchestrator.destination.host_name == "DSTHOST"
    assert orchestrator.source.volume.name == "src-vol"


def test_cancel_during_resolution_stops_before_source(make_orchestrator, engine, array_session):
    holder = {}

    def listener(event):
        if event.phase is ProgressPhase.RESOLVING and "accepted" not in holder:
            holder["accepted"] = holder["orchestrator"].request_cancel()

    orchestrator = make_orchestrator(listener=listener)
    holder["orchestrator"] = orchestrator
    report = orchestrator.run()

    assert holder["accepted"] is True
    assert report.outcome is RefreshOutcome.FAILED
    assert report.error_type == "CancelledError"
    assert report.failed_step == 3
    assert report.compensations == []
    assert engine.databases["DST01"].calls == []
    assert engine.databases["DST01"].status is DatabaseStatus.ONLINE
    assert array_session.overwrites == []


def test_array_session_close_failure_still_returns_report(make_orchestrator, array_session):
    def broken_close():
        raise RuntimeError("adapter already closed")

    array_session.close = broken_close
    orchestrator = make_orchestrator()

    report = orchestrator.run()

    assert report.outcome is RefreshOutcome.SUCCEEDED
    orchestrator.logger.warning.assert_any_call("Closing array session failed",
                                                {"error": "adapter already closed"})


def test_refresh_scope_bound_to_logger(make_orchestrator):
    orchestrator = make_orchestrator()

    report = orchestrator.run()

    logger = orchestrator.logger
    assert report.refresh_id == orchestrator.refresh_id
    logger.bind.assert_any_call(refresh_id=orchestrator.refresh_id)
    logger.bind.assert_any_call(step=6)
    logger.bind.assert_any_call(side="destination")
    logger.bind.assert_any_call(side=None)
    logger.clear_scope.assert_called_once()
