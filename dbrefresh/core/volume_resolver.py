"""Matches host disks to array volumes by serial number."""

from typing import Iterable, List

from dbrefresh.domain.errors import AmbiguousMappingError, NotFoundError
from dbrefresh.domain.models import StorageVolume


def normalize_serial(serial: str) -> str:
    """Serials are compared case-insensitively with surrounding whitespace removed."""
    return (serial or "").strip().upper()


def match_volume_by_serial(volumes: Iterable[StorageVolume], serial: str) -> StorageVolume:
    """Returns the single volume whose serial equals `serial`.

    Raises:
        NotFoundError: If the serial is empty or no volume matches.
        AmbiguousMappingError: If more than one volume matches.
    """
    wanted = normalize_serial(serial)
    if not wanted:
        raise NotFoundError("Cannot resolve a volume for an empty serial number")

    matches: List[StorageVolume] = [v for v in volumes if normalize_serial(v.serial) == wanted]
    if not matches:
        raise NotFoundError(f"No array volume has serial {wanted}", {"serial": wanted})
    if len(matches) > 1:
        names = [v.name for v in matches]
        raise AmbiguousMappingError(
            f"{len(matches)} array volumes share serial {wanted}: {', '.join(names)}",
            candidates=names, context={"serial": wanted})
    return matches[0]
