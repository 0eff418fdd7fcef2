"""Manages SQL Server connections and database online/offline transitions."""

from typing import Any, Dict, Optional, Tuple

import pymssql

from dbrefresh.config import constants
from dbrefresh.domain.enums import DatabaseStatus
from dbrefresh.domain.errors import ConnectivityError, NotFoundError, StateTransitionError
from dbrefresh.infrastructure.logging_handler import StructuredLogger


def quote_identifier(name: str) -> str:
    """Bracket-quotes a T-SQL identifier."""
    return "[" + name.replace("]", "]]") + "]"


def fetch_one(connection: Any, statement: str, params: Tuple = ()) -> Optional[tuple]:
    """Runs a statement on a fresh cursor and returns its first row."""
    cursor = connection.cursor()
    try:
        if params:
            cursor.execute(statement, params)
        else:
            cursor.execute(statement)
        return cursor.fetchone()
    finally:
        cursor.close()


class DatabaseHandle:
    """A live binding to one database on one instance."""

    def __init__(self, instance: str, name: str, primary_file_path: str,
                 status: DatabaseStatus, connection: Any, logger: StructuredLogger):
        """
        Args:
            instance (str): Instance address the database lives on.
            name (str): Database name.
            primary_file_path (str): Physical path of the primary data file.
            status (DatabaseStatus): State at resolution time.
            connection (Any): Autocommit connection to master on the instance.
            logger (StructuredLogger): Logger for recording transitions.
        """
        self.instance = instance
        self.name = name
        self.primary_file_path = primary_file_path
        self.status = status
        self._connection = connection
        self.logger = logger

    def __repr__(self) -> str:
        return f"DatabaseHandle({self.instance!r}, {self.name!r}, {self.status.value})"

    def refresh_status(self) -> DatabaseStatus:
        """Re-reads the database state from the engine."""
        try:
            row = fetch_one(self._connection, constants.SQL_DATABASE_STATE, (self.name,))
        except pymssql.Error as e:
            raise StateTransitionError(f"Cannot read state of {self.name} on {self.instance}: {e}",
                                       {"instance": self.instance, "database": self.name}) from e
        if row is None:
            raise NotFoundError(f"Database {self.name} no longer exists on {self.instance}",
                                {"instance": self.instance, "database": self.name})
        self.status = DatabaseStatus.from_state_desc(row[0])
        return self.status

    def _transition(self, target: DatabaseStatus, statement: str) -> None:
        log_data = {"instance": self.instance, "database": self.name, "target": target.value}
        if self.refresh_status() is target:
            self.logger.info("Database already in requested state", log_data)
            return

        self.logger.info("Changing database state", {**log_data, "from": self.status.value})
        cursor = self._connection.cursor()
        try:
            cursor.execute(statement.format(name=quote_identifier(self.name)))
        except pymssql.Error as e:
            self.logger.error("Database state change rejected", {**log_data, "error": str(e)})
            raise StateTransitionError(
                f"Setting {self.name} on {self.instance} {target.value} failed: {e}",
                log_data) from e
        finally:
            cursor.close()

        if self.refresh_status() is not target:
            raise StateTransitionError(
                f"{self.name} on {self.instance} is {self.status.value} after "
                f"requesting {target.value}", log_data)

    def set_offline(self) -> None:
        """Takes the database offline, rolling back open transactions. No-op if already offline."""
        self._transition(DatabaseStatus.OFFLINE, constants.SQL_SET_OFFLINE)

    def set_online(self) -> None:
        """Brings the database online. No-op if already online."""
        self._transition(DatabaseStatus.ONLINE, constants.SQL_SET_ONLINE)


class SqlServerEngine:
    """Database engine collaborator: opens connections and resolves handles."""

    def __init__(self, sql_config: Dict[str, Any], logger: StructuredLogger):
        self.sql_config = sql_config
        self.logger = logger
        self._connections: Dict[str, Any] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connection_arguments(self, instance: str) -> Dict[str, Any]:
        cfg = self.sql_config
        arguments: Dict[str, Any] = {
            "server": instance,
            "database": "master",
            "autocommit": True,
            "login_timeout": cfg.get("login_timeout_seconds", 15),
            "timeout": cfg.get("query_timeout_seconds", 300),
            "tds_version": cfg.get("tds_version", "7.4"),
            "appname": "dbrefresh",
        }
        if cfg.get("port"):
            arguments["port"] = str(cfg["port"])
        if not cfg.get("trusted_connection", True):
            arguments["user"] = cfg.get("username")
            arguments["password"] = cfg.get("password") or ""
        return arguments

    def connect(self, instance: str) -> Any:
        """Returns a cached autocommit connection to `instance`.

        Raises:
            ConnectivityError: If the instance cannot be reached or rejects the login.
        """
        key = instance.lower()
        if key in self._connections:
            return self._connections[key]
        try:
            connection = pymssql.connect(**self.connection_arguments(instance))
        except pymssql.Error as e:
            self.logger.error("Failed to connect to instance", {"instance": instance,
                                                                "error": str(e)})
            raise ConnectivityError(f"Cannot connect to instance {instance}: {e}",
                                    {"instance": instance}) from e
        self._connections[key] = connection
        self.logger.info("Connected to instance", {"instance": instance})
        return connection

    def resolve(self, instance: str, database_name: str) -> DatabaseHandle:
        """Looks up a database and its primary data file.

        Raises:
            NotFoundError: The database does not exist on the instance.
        """
        connection = self.connect(instance)
        try:
            row = fetch_one(connection, constants.SQL_DATABASE_LOOKUP, (database_name,))
        except pymssql.Error as e:
            raise NotFoundError(f"Lookup of {database_name} on {instance} failed: {e}",
                                {"instance": instance, "database": database_name}) from e
        if row is None:
            raise NotFoundError(f"Database {database_name} not found on {instance}",
                                {"instance": instance, "database": database_name})

        handle = DatabaseHandle(instance=instance, name=row[0], primary_file_path=row[2],
                                status=DatabaseStatus.from_state_desc(row[1]),
                                connection=connection, logger=self.logger)
        self.logger.info("Resolved database", {"instance": instance, "database": handle.name,
                                               "status": handle.status.value,
                                               "primary_file": handle.primary_file_path})
        return handle

    def resolve_physical_host_name(self, instance: str) -> str:
        """Returns the NetBIOS name of the machine currently running `instance`.

        Raises:
            NotFoundError: If the engine does not report a physical host.
        """
        connection = self.connect(instance)
        try:
            row = fetch_one(connection, constants.SQL_PHYSICAL_HOST_NAME)
        except pymssql.Error as e:
            raise NotFoundError(f"Physical host lookup for {instance} failed: {e}",
                                {"instance": instance}) from e
        host_name: Optional[str] = row[0].strip() if row and row[0] else None
        if not host_name:
            raise NotFoundError(f"Instance {instance} did not report a physical host name",
                                {"instance": instance})
        self.logger.info("Resolved physical host", {"instance": instance, "host": host_name})
        return host_name

    def close(self) -> None:
        for key in list(self._connections):
            connection = self._connections.pop(key)
            try:
                connection.close()
            except pymssql.Error as e:
                self.logger.warning("Failed to close instance connection",
                                    {"instance": key, "error": str(e)})
