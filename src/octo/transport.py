"""
Engine transport: one connection to the local engine control socket.

EngineTransport is a docker-py low-level APIClient with three additions the
service layer relies on:
  - request_timeout(): a per-thread timeout applied to every HTTP request
    issued inside the `with` block, so each operation can carry its own
    deadline while sharing one connection pool
  - container_logs_raw(): the logs endpoint as an undecoded streaming
    response, leaving stdout/stderr framing to octo.logstream
  - an idempotent close()

connect() resolves the socket address (DOCKER_HOST first, then the usual
per-platform socket paths), negotiates the API version and pings the engine
before handing the transport out.
"""

import os
import sys
import threading
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

import docker
import requests
from docker.utils import kwargs_from_env

from .errors import DaemonUnresponsiveError, TransportError
from .timeouts import TIMEOUT_PING

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 60


class EngineAPI(Protocol):
    """Raw engine operations the service depends on."""

    def ping(self) -> bool: ...
    def info(self) -> Dict[str, Any]: ...
    def close(self) -> None: ...
    def request_timeout(self, seconds: Optional[float]) -> Any: ...
    def containers(self, all: bool = False, size: bool = False, filters: Optional[Dict] = None, **kwargs) -> List[Dict]: ...
    def images(self, all: bool = False, filters: Optional[Dict] = None, **kwargs) -> List[Dict]: ...
    def volumes(self, filters: Optional[Dict] = None) -> Dict[str, Any]: ...
    def networks(self, greedy: bool = False, **kwargs) -> List[Dict]: ...
    def df(self) -> Dict[str, Any]: ...
    def remove_container(self, container: str, v: bool = False, link: bool = False, force: bool = False) -> None: ...
    def remove_image(self, image: str, force: bool = False, noprune: bool = False) -> None: ...
    def remove_volume(self, name: str, force: bool = False) -> None: ...
    def remove_network(self, net_id: str) -> None: ...
    def start(self, container: str) -> None: ...
    def stop(self, container: str, timeout: Optional[int] = None) -> None: ...
    def restart(self, container: str, timeout: int = 10) -> None: ...
    def stats(self, container: str, decode: Optional[bool] = None, stream: bool = True, one_shot: Optional[bool] = None) -> Any: ...
    def prune_containers(self, filters: Optional[Dict] = None) -> Dict[str, Any]: ...
    def prune_images(self, filters: Optional[Dict] = None) -> Dict[str, Any]: ...
    def prune_volumes(self, filters: Optional[Dict] = None) -> Dict[str, Any]: ...
    def prune_networks(self, filters: Optional[Dict] = None) -> Dict[str, Any]: ...
    def prune_builds(self, filters: Optional[Dict] = None, keep_storage: Optional[int] = None, all: Optional[bool] = None) -> Dict[str, Any]: ...
    def container_logs_raw(self, container: str, tail: Any = "all", follow: bool = False, timestamps: bool = True, timeout: Optional[float] = None) -> Any: ...


def detect_socket() -> Optional[str]:
    """Return the first existing engine socket for this platform, as a URL."""
    home = os.path.expanduser("~")
    if sys.platform == "darwin":
        candidates = [
            os.path.join(home, ".docker", "run", "docker.sock"),
            os.path.join(home, "Library", "Containers", "com.docker.docker", "Data", "docker.sock"),
            "/var/run/docker.sock",
        ]
    elif sys.platform.startswith("linux"):
        candidates = ["/var/run/docker.sock", "/run/docker.sock"]
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
        if runtime_dir:
            candidates.append(os.path.join(runtime_dir, "docker.sock"))
    elif sys.platform == "win32":
        return "npipe:////./pipe/docker_engine"
    else:
        candidates = ["/var/run/docker.sock"]

    for path in candidates:
        if os.path.exists(path):
            return f"unix://{path}"
    return None


class EngineTransport(docker.APIClient):
    """docker-py APIClient with per-thread request timeouts and raw log access."""

    def __init__(self, *args, **kwargs):
        # version="auto" issues a request from the base constructor
        self._local = threading.local()
        self._closed = False
        super().__init__(*args, **kwargs)

    def _set_request_timeout(self, kwargs):
        timeout = getattr(self._local, "timeout", None)
        kwargs.setdefault('timeout', timeout if timeout is not None else self.timeout)
        return kwargs

    @contextmanager
    def request_timeout(self, seconds: Optional[float]) -> Iterator[None]:
        """Apply `seconds` to every request this thread makes inside the block."""
        previous = getattr(self._local, "timeout", None)
        self._local.timeout = seconds
        try:
            yield
        finally:
            self._local.timeout = previous

    def ping_within(self, seconds: float = TIMEOUT_PING) -> bool:
        return self._result(self._get(self._url('/_ping'), timeout=seconds)) == 'OK'

    def container_logs_raw(self, container: str, tail: Any = "all", follow: bool = False,
                           timestamps: bool = True, timeout: Optional[float] = None) -> requests.Response:
        """Open the logs endpoint and return the streaming response, framing intact."""
        params = {
            'stdout': 1,
            'stderr': 1,
            'timestamps': int(timestamps),
            'follow': int(follow),
            'tail': tail,
        }
        url = self._url("/containers/{0}/logs", container)
        response = self._get(url, params=params, stream=True, timeout=timeout)
        self._raise_for_status(response)
        return response

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        super().close()
        logger.debug("Engine transport closed")


def connect(base_url: Optional[str] = None, timeout: int = DEFAULT_REQUEST_TIMEOUT) -> EngineTransport:
    """
    Open a transport to the local engine and verify it answers.

    Raises:
        TransportError: the socket could not be reached or the API version
            could not be negotiated
        DaemonUnresponsiveError: the engine did not answer a ping in time
    """
    params = kwargs_from_env()
    if base_url:
        params['base_url'] = base_url
    elif not params.get('base_url'):
        detected = detect_socket()
        if detected:
            params['base_url'] = detected

    logger.info(f"Connecting to engine at {params.get('base_url') or 'default socket'}")
    try:
        transport = EngineTransport(version="auto", timeout=timeout, **params)
    except docker.errors.DockerException as e:
        raise TransportError(f"failed to connect to engine: {e}") from e

    try:
        transport.ping_within(TIMEOUT_PING)
    except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
        transport.close()
        raise DaemonUnresponsiveError(f"engine did not answer ping: {e}") from e
    except docker.errors.APIError as e:
        transport.close()
        raise TransportError(f"engine ping failed: {e}") from e

    logger.info(f"Connected to engine, API version {transport.api_version}")
    return transport
