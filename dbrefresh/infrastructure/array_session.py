"""Authenticated session against the storage array's REST management API."""

from typing import Any, Dict, List, Optional

import requests
import urllib3

from dbrefresh.config import constants
from dbrefresh.core.volume_resolver import match_volume_by_serial
from dbrefresh.domain.errors import ConnectivityError, ReplicationError
from dbrefresh.domain.models import StorageVolume
from dbrefresh.infrastructure.logging_handler import StructuredLogger


class ArraySession:
    """Wraps a logged-in `requests.Session` on one array.

    Use `ArraySession.connect` to create instances; the constructor does not
    talk to the array.
    """

    def __init__(self, endpoint: str, http: requests.Session, array_config: Dict[str, Any],
                 logger: StructuredLogger):
        self.endpoint = endpoint
        self.http = http
        self.logger = logger
        self.api_version = array_config.get("api_version", constants.ARRAY_API_VERSION)
        self.request_timeout = array_config.get("request_timeout_seconds", 30)
        self.overwrite_timeout = array_config.get("overwrite_timeout_seconds", 600)
        self.connected = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _url(self, template: str, **kwargs: Any) -> str:
        base = self.endpoint if "://" in self.endpoint else f"https://{self.endpoint}"
        return base.rstrip("/") + template.format(version=self.api_version, **kwargs)

    @classmethod
    def connect(cls, endpoint: str, username: str, password: str,
                array_config: Dict[str, Any], logger: StructuredLogger,
                http: Optional[requests.Session] = None) -> "ArraySession":
        """Logs in with username/password and opens a REST session.

        Raises:
            ConnectivityError: Endpoint unreachable, timed out or credentials rejected.
        """
        http = http or requests.Session()
        if array_config.get("allow_untrusted_certificate"):
            logger.warning("Accepting untrusted certificates from array management endpoint",
                           {"endpoint": endpoint})
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            http.verify = False
        elif array_config.get("ca_bundle"):
            http.verify = array_config["ca_bundle"]

        session = cls(endpoint, http, array_config, logger)
        logger.info("Connecting to storage array", {"endpoint": endpoint, "user": username})
        try:
            response = http.post(session._url(constants.ARRAY_API_TOKEN_PATH),
                                 json={"username": username, "password": password},
                                 timeout=session.request_timeout)
            session._check(response, ConnectivityError, "Array login rejected")
            api_token = response.json().get("api_token")
            if not api_token:
                raise ConnectivityError("Array login returned no API token",
                                        {"endpoint": endpoint})

            response = http.post(session._url(constants.ARRAY_SESSION_PATH),
                                 json={"api_token": api_token},
                                 timeout=session.request_timeout)
            session._check(response, ConnectivityError, "Array session rejected")
        except requests.RequestException as e:
            http.close()
            raise ConnectivityError(f"Cannot reach array {endpoint}: {e}",
                                    {"endpoint": endpoint}) from e
        except ConnectivityError:
            http.close()
            raise

        session.connected = True
        logger.info("Connected to storage array", {"endpoint": endpoint})
        return session

    def _check(self, response: requests.Response, error_cls: type, message: str) -> None:
        if response.ok:
            return
        detail = response.text[:500] if response.text else ""
        raise error_cls(f"{message}: HTTP {response.status_code} {detail}".strip(),
                        {"endpoint": self.endpoint, "status_code": response.status_code})

    def list_volumes(self) -> List[StorageVolume]:
        """Returns every volume on the array as (name, serial) records."""
        try:
            response = self.http.get(self._url(constants.ARRAY_VOLUMES_PATH),
                                     timeout=self.request_timeout)
        except requests.RequestException as e:
            raise ConnectivityError(f"Volume query on {self.endpoint} failed: {e}",
                                    {"endpoint": self.endpoint}) from e
        self._check(response, ConnectivityError, "Volume query rejected")
        try:
            return [StorageVolume(name=item["name"], serial=item.get("serial") or "")
                    for item in response.json()]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConnectivityError(f"Volume listing from {self.endpoint} is malformed: {e}",
                                    {"endpoint": self.endpoint}) from e

    def resolve_volume_by_serial(self, serial: str) -> StorageVolume:
        """Finds the single array volume whose serial matches a host disk serial."""
        volume = match_volume_by_serial(self.list_volumes(), serial)
        self.logger.info("Resolved array volume", {"serial": serial, "volume": volume.name})
        return volume

    def overwrite_volume(self, target_volume_name: str, source_volume_name: str) -> None:
        """Replaces the content of `target_volume_name` with a copy of `source_volume_name`.

        Returns once the array reports completion.

        Raises:
            ReplicationError: The array rejected the copy, or the call failed or timed out.
        """
        self.logger.info("Overwriting array volume",
                         {"target": target_volume_name, "source": source_volume_name})
        try:
            response = self.http.post(
                self._url(constants.ARRAY_VOLUME_PATH, name=target_volume_name),
                json={"source": source_volume_name, "overwrite": True},
                timeout=self.overwrite_timeout)
        except requests.RequestException as e:
            raise ReplicationError(
                f"Overwrite of {target_volume_name} from {source_volume_name} failed: {e}",
                {"target": target_volume_name, "source": source_volume_name}) from e
        self._check(response, ReplicationError,
                    f"Overwrite of {target_volume_name} from {source_volume_name} rejected")

    def close(self) -> None:
        """Ends the REST session. Logout failures are logged, not raised."""
        if self.connected:
            try:
                self.http.delete(self._url(constants.ARRAY_SESSION_PATH),
                                 timeout=self.request_timeout)
            except requests.RequestException as e:
                self.logger.warning("Array logout failed", {"endpoint": self.endpoint,
                                                            "error": str(e)})
            self.connected = False
        self.http.close()
