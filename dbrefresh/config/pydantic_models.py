"""Pydantic models for configuration validation.

This module defines type-safe, validated configuration models using Pydantic.
It provides runtime validation and clear error messages for misconfigured settings.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum


class LogLevel(str, Enum):
    """Valid logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HostKeyPolicy(str, Enum):
    """How unknown SSH host keys are treated"""
    AUTO_ADD = "auto_add"
    WARN = "warn"
    REJECT = "reject"


class ArrayConfig(BaseModel):
    """Storage array connection configuration.

    Attributes:
        endpoint: Default management endpoint (overridden on the command line)
        username: Default array user (overridden on the command line)
        allow_untrusted_certificate: Accept self-signed management certificates
        ca_bundle: Optional CA bundle used to verify the management certificate
        api_version: REST API version used in request paths
        request_timeout_seconds: Timeout for authentication and queries
        overwrite_timeout_seconds: Timeout for the volume overwrite call
    """
    endpoint: Optional[str] = Field(default=None, description="Array management endpoint")
    username: Optional[str] = Field(default=None, description="Array username")
    allow_untrusted_certificate: bool = Field(
        default=False,
        description="Accept self-signed certificates on the management endpoint"
    )
    ca_bundle: Optional[str] = Field(default=None, description="CA bundle path")
    api_version: str = Field(default="1.19", description="Array REST API version")
    request_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Timeout for array authentication and queries"
    )
    overwrite_timeout_seconds: int = Field(
        default=600,
        ge=1,
        le=7200,
        description="Timeout for the volume overwrite call"
    )

    @model_validator(mode='after')
    def validate_tls_options(self) -> 'ArrayConfig':
        if self.allow_untrusted_certificate and self.ca_bundle:
            raise ValueError(
                "allow_untrusted_certificate and ca_bundle are mutually exclusive"
            )
        return self


class RemoteConfig(BaseModel):
    """SSH settings used to reach database hosts.

    Attributes:
        user: Login user on the database hosts
        ssh_key_path: Private key file used for authentication
        port: SSH port
        connection_timeout_seconds: Timeout for establishing a connection
        command_timeout_seconds: Timeout for one remote command
        host_key_policy: Handling of unknown host keys
    """
    user: Optional[str] = Field(default=None, description="SSH login user")
    ssh_key_path: Optional[str] = Field(default=None, description="SSH private key path")
    port: int = Field(default=22, ge=1, le=65535, description="SSH port")
    connection_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=300,
        description="SSH connection timeout in seconds"
    )
    command_timeout_seconds: int = Field(
        default=120,
        ge=1,
        le=3600,
        description="Remote command timeout in seconds"
    )
    host_key_policy: HostKeyPolicy = Field(
        default=HostKeyPolicy.AUTO_ADD,
        description="Unknown host key handling"
    )

    model_config = {
        "use_enum_values": True
    }


class SqlServerConfig(BaseModel):
    """Database engine connection settings.

    Attributes:
        trusted_connection: Use integrated (Kerberos) authentication
        username: SQL login when not using integrated authentication
        password: SQL password when not using integrated authentication
        port: TCP port; None lets the driver resolve the instance
        tds_version: TDS protocol version requested from the server
        login_timeout_seconds: Connection timeout
        query_timeout_seconds: Per-statement timeout (0 waits forever)
    """
    trusted_connection: bool = Field(default=True, description="Integrated authentication")
    username: Optional[str] = Field(default=None, description="SQL login")
    password: Optional[str] = Field(default=None, description="SQL password", repr=False)
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="TCP port")
    tds_version: str = Field(default="7.4", description="TDS protocol version")
    login_timeout_seconds: int = Field(default=15, ge=1, le=300, description="Login timeout")
    query_timeout_seconds: int = Field(default=300, ge=0, le=7200, description="Query timeout")

    @model_validator(mode='after')
    def validate_credentials(self) -> 'SqlServerConfig':
        if not self.trusted_connection and not self.username:
            raise ValueError("username is required when trusted_connection is false")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration with validation.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        max_file_size_mb: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep
        structured_logging: Emit JSON records instead of plain text
    """
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )
    log_dir: str = Field(
        default="logs",
        description="Directory for log files"
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum log file size in MB before rotation"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of backup log files to keep"
    )
    structured_logging: bool = Field(default=True, description="JSON log records")

    model_config = {
        "use_enum_values": True
    }


class RefreshConfig(BaseModel):
    """Orchestration behaviour.

    Attributes:
        forbid_same_volume: Reject source and destination resolving to one volume
    """
    forbid_same_volume: bool = Field(
        default=True,
        description="Reject refreshes whose source and destination share a volume"
    )


class AppConfig(BaseModel):
    """Root application configuration with validation.

    Attributes:
        array: Storage array configuration
        remote: SSH configuration for database hosts
        sqlserver: Database engine configuration
        logging: Logging configuration
        refresh: Orchestration configuration
    """
    array: ArrayConfig = Field(default_factory=ArrayConfig, description="Array configuration")
    remote: RemoteConfig = Field(default_factory=RemoteConfig, description="Remote configuration")
    sqlserver: SqlServerConfig = Field(
        default_factory=SqlServerConfig,
        description="SQL Server configuration"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")
    refresh: RefreshConfig = Field(default_factory=RefreshConfig, description="Refresh configuration")

    model_config = {
        "validate_assignment": True,
        "extra": "allow",
    }

    @field_validator('array')
    @classmethod
    def validate_api_version(cls, v: ArrayConfig) -> ArrayConfig:
        """API version must look like '<major>.<minor>'"""
        parts = v.api_version.split(".")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"api_version must look like '1.19', got {v.api_version!r}")
        return v
