"""Defines developer-managed constants for the application.

These constants are fixed values that are not meant to be configured
by users: REST paths of the array API, the PowerShell scripts dispatched
to database hosts and the T-SQL statements issued against instances.
"""

# ===== STORAGE ARRAY REST API =====
ARRAY_API_VERSION = "1.19"
ARRAY_API_TOKEN_PATH = "/api/{version}/auth/apitoken"
ARRAY_SESSION_PATH = "/api/{version}/auth/session"
ARRAY_VOLUMES_PATH = "/api/{version}/volume"
ARRAY_VOLUME_PATH = "/api/{version}/volume/{name}"

# ===== REMOTE POWERSHELL =====
POWERSHELL_COMMAND_TEMPLATE = (
    "powershell.exe -NoProfile -NonInteractive -ExecutionPolicy Bypass "
    "-EncodedCommand {encoded}"
)

# Prepended to every script so cmdlet errors surface as a non-zero exit.
POWERSHELL_PREAMBLE = "$ErrorActionPreference = 'Stop'; $ProgressPreference = 'SilentlyContinue';"

GET_DISK_FOR_PATH_SCRIPT = (
    "$partition = Get-Partition -DriveLetter '{drive_letter}'; "
    "$disk = Get-Disk -Number $partition.DiskNumber; "
    "[pscustomobject]@{{ Number = $disk.Number; SerialNumber = $disk.SerialNumber; "
    "IsOffline = $disk.IsOffline }} | ConvertTo-Json -Compress"
)

SET_DISK_OFFLINE_SCRIPT = "Set-Disk -Number {disk_number} -IsOffline ${offline}"

# ===== SQL SERVER =====
SQL_DATABASE_LOOKUP = (
    "SELECT d.name, d.state_desc, mf.physical_name "
    "FROM sys.databases AS d "
    "JOIN sys.master_files AS mf ON mf.database_id = d.database_id AND mf.file_id = 1 "
    "WHERE d.name = %s"
)
SQL_DATABASE_STATE = "SELECT state_desc FROM sys.databases WHERE name = %s"
SQL_PHYSICAL_HOST_NAME = (
    "SELECT CAST(SERVERPROPERTY('ComputerNamePhysicalNetBIOS') AS nvarchar(256))"
)
SQL_SET_OFFLINE = "ALTER DATABASE {name} SET OFFLINE WITH ROLLBACK IMMEDIATE"
SQL_SET_ONLINE = "ALTER DATABASE {name} SET ONLINE"

# ===== ORCHESTRATION =====
# Steps at or beyond this number mutate the destination and cannot be cancelled.
FIRST_MUTATING_STEP = 4

STEP_NAMES = {
    1: "Connect array session",
    2: "Resolve destination",
    3: "Resolve source",
    4: "Destination database offline",
    5: "Destination disk offline",
    6: "Overwrite destination volume",
    7: "Destination disk online",
    8: "Destination database online",
}

# ===== EXIT CODES =====
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_UNSAFE = 2
EXIT_USAGE = 3

DEFAULT_PASSWORD_ENV = "DBREFRESH_ARRAY_PASSWORD"
