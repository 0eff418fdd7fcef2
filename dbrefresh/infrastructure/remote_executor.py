"""Runs well-defined units of work on database hosts over SSH."""

import base64
import socket
from typing import Any, Callable, Dict, Optional

import paramiko

from dbrefresh.config import constants
from dbrefresh.domain.enums import RemoteFailureKind, RemoteOperation
from dbrefresh.domain.errors import RemoteExecutionError
from dbrefresh.domain.models import ExecutionResult
from dbrefresh.infrastructure.logging_handler import StructuredLogger
from dbrefresh.utils.ssh_helper import create_ssh_client


def encode_powershell(script: str) -> str:
    """Encodes a script for powershell.exe -EncodedCommand (base64 of UTF-16LE)."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def build_script(operation: RemoteOperation, arguments: Dict[str, Any]) -> str:
    """Renders the PowerShell script for an operation.

    Raises:
        ValueError: If the operation is unknown or an argument is invalid.
    """
    if operation is RemoteOperation.GET_DISK_FOR_PATH:
        letter = str(arguments.get("drive_letter", ""))
        if len(letter) != 1 or not letter.isalpha():
            raise ValueError(f"Invalid drive letter: {letter!r}")
        body = constants.GET_DISK_FOR_PATH_SCRIPT.format(drive_letter=letter.upper())
    elif operation is RemoteOperation.SET_DISK_OFFLINE:
        disk_number = int(arguments["disk_number"])
        offline = "true" if arguments["offline"] else "false"
        body = constants.SET_DISK_OFFLINE_SCRIPT.format(disk_number=disk_number,
                                                        offline=offline)
    else:
        raise ValueError(f"Unsupported remote operation: {operation}")
    return f"{constants.POWERSHELL_PREAMBLE} {body}"


class RemoteExecutor:
    """Dispatches remote operations to named hosts, one cached SSH client per host.

    Calls are serial; the executor is not meant to be shared between threads.
    """

    def __init__(self, remote_config: Dict[str, Any], logger: StructuredLogger,
                 client_factory: Optional[Callable[..., paramiko.SSHClient]] = None):
        self.remote_config = remote_config
        self.logger = logger
        self._client_factory = client_factory or create_ssh_client
        self._clients: Dict[str, paramiko.SSHClient] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _get_client(self, host_name: str) -> paramiko.SSHClient:
        key = host_name.lower()
        if key not in self._clients:
            self._clients[key] = self._client_factory(host_name, self.remote_config, self.logger)
        return self._clients[key]

    def run(self, host_name: str, operation: RemoteOperation,
            arguments: Dict[str, Any]) -> ExecutionResult:
        """Runs one operation on a host and waits for it to finish.

        Returns:
            ExecutionResult with exit status 0 and the script's stdout.

        Raises:
            ConnectivityError: The host could not be reached.
            RemoteExecutionError: Authorization, transport, timeout or remote-side failure.
        """
        command = constants.POWERSHELL_COMMAND_TEMPLATE.format(
            encoded=encode_powershell(build_script(operation, arguments)))
        timeout = self.remote_config.get("command_timeout_seconds", 120)
        log_data = {"host": host_name, "operation": operation.value, "arguments": arguments}

        client = self._get_client(host_name)
        self.logger.debug("Dispatching remote operation", log_data)
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            output = stdout.read().decode("utf-8", errors="replace")
            error = stderr.read().decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            self._discard_client(host_name)
            raise RemoteExecutionError(
                f"{operation.value} on {host_name} timed out after {timeout}s",
                host_name=host_name, kind=RemoteFailureKind.TIMEOUT) from e
        except (paramiko.SSHException, OSError) as e:
            self._discard_client(host_name)
            raise RemoteExecutionError(
                f"{operation.value} on {host_name} failed in transport: {e}",
                host_name=host_name, kind=RemoteFailureKind.TRANSPORT) from e

        result = ExecutionResult(host_name=host_name, operation=operation.value,
                                 exit_status=exit_status, output=output.strip(),
                                 error=error.strip())
        if not result.success:
            self.logger.error("Remote operation failed",
                              {**log_data, "exit_status": exit_status, "stderr": result.error})
            raise RemoteExecutionError(
                f"{operation.value} on {host_name} exited with {exit_status}: {result.error}",
                host_name=host_name, kind=RemoteFailureKind.REMOTE_EXCEPTION,
                exit_status=exit_status)

        self.logger.debug("Remote operation completed", {**log_data, "exit_status": exit_status})
        return result

    def _discard_client(self, host_name: str) -> None:
        client = self._clients.pop(host_name.lower(), None)
        if client is not None:
            client.close()

    def close(self) -> None:
        """Closes every cached SSH client."""
        for host in list(self._clients):
            self._discard_client(host)
