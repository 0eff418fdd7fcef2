"""SSH client initialization helper for database host connections."""

import os
import socket
from typing import Any, Dict

import paramiko

from dbrefresh.domain.enums import RemoteFailureKind
from dbrefresh.domain.errors import ConnectivityError, RemoteExecutionError
from dbrefresh.infrastructure.logging_handler import StructuredLogger

_HOST_KEY_POLICIES = {
    "auto_add": paramiko.AutoAddPolicy,
    "warn": paramiko.WarningPolicy,
    "reject": paramiko.RejectPolicy,
}


def create_ssh_client(host_name: str, remote_config: Dict[str, Any],
                      logger: StructuredLogger) -> paramiko.SSHClient:
    """Creates and connects an SSH client to a database host.

    This helper encapsulates the common pattern of:
    1. Validating required connection parameters
    2. Creating the client with the configured host key policy
    3. Establishing the connection with timeout handling
    4. Translating paramiko/socket failures into the application's errors

    Args:
        host_name: Physical host to connect to
        remote_config: SSH settings (user, ssh_key_path, port, timeouts, host_key_policy)
        logger: Structured logger for connection events

    Returns:
        Connected paramiko.SSHClient instance

    Raises:
        ConnectivityError: Host unreachable or connection timed out.
        RemoteExecutionError: Authentication rejected or SSH negotiation failed.
    """
    user = remote_config.get("user")
    if not user:
        raise RemoteExecutionError(
            "Remote user is not configured; cannot reach database hosts",
            host_name=host_name, kind=RemoteFailureKind.AUTHORIZATION)

    ssh_client = paramiko.SSHClient()
    ssh_client.load_system_host_keys()
    policy = _HOST_KEY_POLICIES.get(remote_config.get("host_key_policy", "auto_add"),
                                    paramiko.AutoAddPolicy)
    ssh_client.set_missing_host_key_policy(policy())

    connection_timeout = remote_config.get("connection_timeout_seconds")
    if connection_timeout is None:
        logger.warning("connection_timeout_seconds not in config, defaulting to 30 seconds.")
        connection_timeout = 30

    key_path = remote_config.get("ssh_key_path")
    if key_path:
        key_path = os.path.expanduser(key_path)

    logger.info("Connecting to database host", {"host": host_name, "user": user})
    try:
        ssh_client.connect(
            hostname=host_name,
            username=user,
            key_filename=key_path,
            port=remote_config.get("port", 22),
            timeout=connection_timeout
        )
    except paramiko.AuthenticationException as e:
        ssh_client.close()
        logger.error("SSH authentication rejected", {"host": host_name, "error": str(e)})
        raise RemoteExecutionError(f"Authentication to {host_name} rejected: {e}",
                                   host_name=host_name,
                                   kind=RemoteFailureKind.AUTHORIZATION) from e
    except (socket.timeout, paramiko.ssh_exception.NoValidConnectionsError, OSError) as e:
        ssh_client.close()
        logger.error("Database host unreachable", {"host": host_name, "error": str(e)})
        raise ConnectivityError(f"Host {host_name} unreachable: {e}",
                                {"host": host_name}) from e
    except paramiko.SSHException as e:
        ssh_client.close()
        logger.error("SSH negotiation failed", {"host": host_name, "error": str(e)})
        raise RemoteExecutionError(f"SSH negotiation with {host_name} failed: {e}",
                                   host_name=host_name,
                                   kind=RemoteFailureKind.TRANSPORT) from e

    logger.info("Successfully connected to database host", {"host": host_name})
    return ssh_client
