"""Resolves the host disk that backs a database's primary data file."""

import json
import re

from dbrefresh.domain.enums import DiskStatus, RemoteOperation
from dbrefresh.domain.errors import NotFoundError
from dbrefresh.domain.models import HostDisk

_DRIVE_PATTERN = re.compile(r"^([A-Za-z]):[\\/]")


def drive_letter_from_path(path: str) -> str:
    """Returns the upper-case drive letter of a Windows path such as 'F:\\Data\\app.mdf'.

    Raises:
        NotFoundError: If the path is not rooted at a drive letter.
    """
    match = _DRIVE_PATTERN.match((path or "").strip())
    if not match:
        raise NotFoundError(f"Cannot determine drive letter from path: {path!r}",
                            {"path": path})
    return match.group(1).upper()


def parse_disk_descriptor(host_name: str, output: str) -> HostDisk:
    """Parses the JSON disk descriptor printed by the remote disk lookup."""
    try:
        data = json.loads(output)
    except (TypeError, ValueError) as e:
        raise NotFoundError(f"Disk lookup on {host_name} returned unreadable output",
                            {"host": host_name, "output": output}) from e
    if isinstance(data, list):
        if len(data) != 1:
            raise NotFoundError(f"Disk lookup on {host_name} returned {len(data)} disks",
                                {"host": host_name})
        data = data[0]
    if not isinstance(data, dict) or data.get("Number") is None:
        raise NotFoundError(f"Disk lookup on {host_name} returned no disk",
                            {"host": host_name, "output": output})

    serial = str(data.get("SerialNumber") or "").strip()
    if not serial:
        raise NotFoundError(f"Disk {data['Number']} on {host_name} has no serial number",
                            {"host": host_name, "disk_number": data["Number"]})

    return HostDisk(
        host_name=host_name,
        disk_number=int(data["Number"]),
        serial_number=serial,
        status=DiskStatus.OFFLINE if data.get("IsOffline") else DiskStatus.ONLINE,
    )


def locate_disk(executor, host_name: str, path: str) -> HostDisk:
    """Resolves partition then disk for `path` on `host_name` via the remote executor."""
    drive_letter = drive_letter_from_path(path)
    result = executor.run(host_name, RemoteOperation.GET_DISK_FOR_PATH,
                          {"drive_letter": drive_letter})
    if not result.output:
        raise NotFoundError(f"No disk owns drive {drive_letter}: on {host_name}",
                            {"host": host_name, "drive_letter": drive_letter})
    return parse_disk_descriptor(host_name, result.output)


def locate_disk_for_database(engine, executor, handle) -> HostDisk:
    """Finds the disk backing `handle`'s primary file on the instance's physical host.

    The lookup runs on the machine that owns the volume, so the instance's
    physical host name is resolved first; clustered instance names are not
    valid targets for disk cmdlets.
    """
    host_name = engine.resolve_physical_host_name(handle.instance)
    return locate_disk(executor, host_name, handle.primary_file_path)
