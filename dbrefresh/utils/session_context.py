"""Context manager helpers that open and reliably close the refresh collaborators."""

from contextlib import contextmanager
from typing import Callable, Generator, Tuple

from dbrefresh.config.settings import Settings
from dbrefresh.infrastructure.array_session import ArraySession
from dbrefresh.infrastructure.database_handle import SqlServerEngine
from dbrefresh.infrastructure.logging_handler import StructuredLogger
from dbrefresh.infrastructure.remote_executor import RemoteExecutor


def make_array_connector(settings: Settings,
                         logger: StructuredLogger) -> Callable[[str, str, str], ArraySession]:
    """Binds array configuration and logger into a (endpoint, user, password) connector."""
    array_config = settings.get_array_config()

    def connect(endpoint: str, username: str, password: str) -> ArraySession:
        return ArraySession.connect(endpoint, username, password, array_config, logger)

    return connect


@contextmanager
def open_collaborators(
    settings: Settings,
    logger: StructuredLogger
) -> Generator[Tuple[SqlServerEngine, RemoteExecutor], None, None]:
    """Provides the database engine and remote executor with automatic cleanup.

    Example:
        with open_collaborators(settings, logger) as (engine, executor):
            handle = engine.resolve("SQL01", "AppDb")
    """
    engine = None
    executor = None
    try:
        engine = SqlServerEngine(settings.get_sqlserver_config(), logger)
        executor = RemoteExecutor(settings.get_remote_config(), logger)
        yield engine, executor
    finally:
        if executor:
            executor.close()
        if engine:
            engine.close()
