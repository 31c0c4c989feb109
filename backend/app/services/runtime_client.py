"""Runtime client capability interface and its Docker implementation.

Everything the engine needs from the container runtime goes through
``RuntimeClient``. ``DockerRuntimeClient`` talks to a real Docker daemon through
the docker SDK; ``app.services.fake_runtime.InMemoryRuntimeClient`` is the
in-memory stand-in used by tests.
"""

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any, Callable, Deque, Dict, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from app.exceptions import (
    ContainerNotFoundError,
    DockPulseError,
    ImageNotFoundError,
    RuntimeOperationError,
    RuntimeTimeoutError,
    RuntimeUnavailableError,
)
from app.models.launch import LaunchSpec
from app.models.metrics import ContainerIdentity, RawUsageSnapshot
from app.models.runtime import (
    ContainerDetails,
    ContainerSummary,
    ImageDetails,
    ImageSummary,
    SystemInfo,
)
from app.services.docker_stats import DockerStatsParser
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class LogFollow(ABC):
    """Cancelable, append-only stream of log lines.

    Iterate with ``async for``. ``aclose()`` releases the runtime-side handle;
    it is idempotent and safe to call while another task is awaiting a line.
    """

    def __aiter__(self) -> "LogFollow":
        return self

    @abstractmethod
    async def __anext__(self) -> str:
        """Return the next line (without trailing newline)."""

    @abstractmethod
    async def aclose(self) -> None:
        """Cancel the follow subscription."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once the subscription has been released."""


class RuntimeClient(ABC):
    """Narrow capability interface to the container runtime.

    All methods raise ``DockPulseError`` subclasses; runtime SDK exceptions
    never leak through this boundary.
    """

    @abstractmethod
    async def list_running(self) -> List[ContainerSummary]:
        """List currently running containers."""

    @abstractmethod
    async def list_images(self) -> List[ImageSummary]:
        """List local images that carry at least one real tag."""

    @abstractmethod
    async def inspect(self, container_id: str) -> ContainerDetails:
        """Inspect a single container (any state)."""

    @abstractmethod
    async def stats(self, container_id: str) -> RawUsageSnapshot:
        """Read a one-shot usage snapshot. Raises ContainerNotFoundError if gone."""

    @abstractmethod
    async def start(self, container_id: str) -> None: ...

    @abstractmethod
    async def stop(self, container_id: str) -> None: ...

    @abstractmethod
    async def restart(self, container_id: str) -> None: ...

    @abstractmethod
    async def remove(self, container_id: str) -> None: ...

    @abstractmethod
    async def create(self, spec: LaunchSpec) -> ContainerIdentity:
        """Create (but do not start) a container from a validated spec."""

    @abstractmethod
    async def follow_logs(self, container_id: str, tail_lines: int) -> LogFollow:
        """Open a follow subscription starting ``tail_lines`` lines back."""

    @abstractmethod
    async def logs(self, container_id: str, tail_lines: int) -> str:
        """Return the last ``tail_lines`` lines as one blob."""

    @abstractmethod
    async def system_info(self) -> SystemInfo: ...

    @abstractmethod
    async def inspect_image(self, image: str) -> ImageDetails: ...

    async def close(self) -> None:
        """Release any connection held by the client."""
        return None


def translate_docker_error(exc: Exception, target: Optional[str] = None) -> DockPulseError:
    """Map a docker SDK / requests exception onto the DockPulse taxonomy."""
    if isinstance(exc, DockPulseError):
        return exc
    if isinstance(exc, ImageNotFound):
        return ImageNotFoundError(f"Image not found: {target}")
    if isinstance(exc, NotFound):
        return ContainerNotFoundError(f"Container not found: {target}", container_id=target)
    if isinstance(exc, APIError):
        detail = exc.explanation or str(exc)
        return RuntimeOperationError(f"Docker rejected the request: {detail}", container_id=target)
    if isinstance(exc, requests.exceptions.Timeout):
        return RuntimeTimeoutError(f"Docker call timed out for {target}", container_id=target)
    if isinstance(exc, requests.exceptions.ConnectionError):
        return RuntimeUnavailableError(f"Cannot reach Docker daemon: {exc}")
    if isinstance(exc, DockerException):
        return RuntimeUnavailableError(f"Docker client error: {exc}")
    return RuntimeOperationError(f"Unexpected runtime error: {exc}", container_id=target)


class DockerLogFollow(LogFollow):
    """Follow subscription backed by a docker SDK CancellableStream.

    Reads block for as long as the container is quiet, so each follow gets its
    own reader thread. Open viewers never occupy the shared default executor
    that the metrics tick and lifecycle calls run on.
    """

    def __init__(self, stream: Any, container_id: str) -> None:
        self._stream = stream
        self._iter = iter(stream)
        self._container_id = container_id
        self._buffer = ""
        self._pending: Deque[str] = deque()
        self._closed = False
        self._reader = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"logs-{container_id[:12]}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def __anext__(self) -> str:
        while not self._pending:
            if self._closed:
                raise StopAsyncIteration
            try:
                loop = asyncio.get_running_loop()
                chunk = await loop.run_in_executor(self._reader, next, self._iter, None)
            except (DockerException, requests.exceptions.RequestException, OSError, ValueError) as e:
                if self._closed:
                    raise StopAsyncIteration
                raise translate_docker_error(e, self._container_id) from e

            if chunk is None:
                # Runtime ended the stream (container stopped or removed)
                if self._buffer:
                    line, self._buffer = self._buffer, ""
                    await self.aclose()
                    return line
                await self.aclose()
                raise StopAsyncIteration

            self._feed(chunk)
        return self._pending.popleft()

    def _feed(self, chunk: bytes) -> None:
        text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else str(chunk)
        self._buffer += text
        *complete, self._buffer = self._buffer.split("\n")
        for line in complete:
            self._pending.append(line.rstrip("\r"))

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # Shuts the socket down; a thread blocked in next() wakes up with an error
            self._stream.close()
        except (OSError, AttributeError) as e:
            logger.debug(f"Error closing log stream for {self._container_id}: {e}")
        self._reader.shutdown(wait=False)


class DockerRuntimeClient(RuntimeClient):
    """RuntimeClient backed by the Docker Engine API via the docker SDK.

    The SDK is blocking, so every call runs in a worker thread. The underlying
    DockerClient is created on first use so the app can boot while the daemon
    is still down; the collector simply retries on the next tick.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[docker.DockerClient] = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> docker.DockerClient:
        with self._client_lock:
            if self._client is None:
                self._client = docker.DockerClient(
                    base_url=self.base_url, timeout=int(self.timeout)
                )
                logger.info(f"Connected to Docker at {self.base_url}")
            return self._client

    async def _call(self, func: Callable[..., Any], *args: Any, target: Optional[str] = None) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except DockPulseError:
            raise
        except (DockerException, requests.exceptions.RequestException) as e:
            error = translate_docker_error(e, target)
            logger.debug(
                f"Docker call {func.__name__} failed for {sanitize_log_message(target)}: "
                f"{type(e).__name__}"
            )
            raise error from e

    @staticmethod
    def _strip_name(name: str) -> str:
        return name.lstrip("/")

    # -- queries ---------------------------------------------------------

    def _list_running_sync(self) -> List[ContainerSummary]:
        rows = self._get_client().api.containers(filters={"status": "running"})
        summaries = []
        for row in rows:
            names = row.get("Names") or []
            summaries.append(
                ContainerSummary(
                    id=row.get("Id", ""),
                    name=self._strip_name(names[0]) if names else "",
                    image=row.get("Image", ""),
                    status=row.get("State", "running"),
                )
            )
        return summaries

    async def list_running(self) -> List[ContainerSummary]:
        return await self._call(self._list_running_sync)

    def _list_images_sync(self) -> List[ImageSummary]:
        images = []
        for row in self._get_client().api.images():
            tags = tuple(t for t in (row.get("RepoTags") or []) if "<none>" not in t)
            if tags:
                images.append(ImageSummary(id=row.get("Id", ""), repo_tags=tags))
        return images

    async def list_images(self) -> List[ImageSummary]:
        return await self._call(self._list_images_sync)

    def _inspect_sync(self, container_id: str) -> ContainerDetails:
        data = self._get_client().api.inspect_container(container_id)
        state = data.get("State") or {}
        config = data.get("Config") or {}
        return ContainerDetails(
            identity=ContainerIdentity(
                id=data.get("Id", container_id),
                name=self._strip_name(data.get("Name", "")),
            ),
            image=config.get("Image", ""),
            status=state.get("Status", "unknown"),
            running=bool(state.get("Running", False)),
        )

    async def inspect(self, container_id: str) -> ContainerDetails:
        return await self._call(self._inspect_sync, container_id, target=container_id)

    def _stats_sync(self, container_id: str) -> RawUsageSnapshot:
        payload = self._get_client().api.stats(container_id, stream=False, one_shot=True)
        read_at = time.monotonic()
        identity = ContainerIdentity(
            id=payload.get("id") or container_id,
            name=self._strip_name(payload.get("name") or ""),
        )
        return DockerStatsParser.parse_snapshot(
            identity, payload, monotonic=read_at, timestamp=datetime.now(UTC)
        )

    async def stats(self, container_id: str) -> RawUsageSnapshot:
        return await self._call(self._stats_sync, container_id, target=container_id)

    def _system_info_sync(self) -> SystemInfo:
        info = self._get_client().info()
        return SystemInfo(
            version=str(info.get("ServerVersion", "unknown")),
            total_images=int(info.get("Images", 0) or 0),
            total_containers=int(info.get("Containers", 0) or 0),
            running_containers=int(info.get("ContainersRunning", 0) or 0),
            cpu_count=int(info.get("NCPU", 1) or 1),
        )

    async def system_info(self) -> SystemInfo:
        return await self._call(self._system_info_sync)

    def _inspect_image_sync(self, image: str) -> ImageDetails:
        data = self._get_client().api.inspect_image(image)
        config = data.get("Config") or {}
        return ImageDetails(
            id=data.get("Id", ""),
            repo_tags=tuple(data.get("RepoTags") or ()),
            environment=tuple(config.get("Env") or ()),
            exposed_ports=tuple((config.get("ExposedPorts") or {}).keys()),
        )

    async def inspect_image(self, image: str) -> ImageDetails:
        try:
            return await self._call(self._inspect_image_sync, image, target=image)
        except ContainerNotFoundError as e:
            raise ImageNotFoundError(f"Image not found: {image}") from e

    # -- mutations -------------------------------------------------------

    def _start_sync(self, container_id: str) -> None:
        self._get_client().api.start(container_id)

    async def start(self, container_id: str) -> None:
        await self._call(self._start_sync, container_id, target=container_id)

    def _stop_sync(self, container_id: str) -> None:
        self._get_client().api.stop(container_id)

    async def stop(self, container_id: str) -> None:
        await self._call(self._stop_sync, container_id, target=container_id)

    def _restart_sync(self, container_id: str) -> None:
        self._get_client().api.restart(container_id)

    async def restart(self, container_id: str) -> None:
        await self._call(self._restart_sync, container_id, target=container_id)

    async def remove(self, container_id: str) -> None:
        await self._call(self._remove_sync, container_id, target=container_id)

    def _remove_sync(self, container_id: str) -> None:
        self._get_client().api.remove_container(container_id, force=True)

    def _create_sync(self, spec: LaunchSpec) -> ContainerIdentity:
        ports: Dict[str, Any] = {}
        for mapping in spec.effective_ports():
            key = f"{mapping.container_port}/{mapping.protocol}"
            if key in ports:
                existing = ports[key]
                ports[key] = (existing if isinstance(existing, list) else [existing]) + [
                    mapping.host_port
                ]
            else:
                ports[key] = mapping.host_port

        kwargs: Dict[str, Any] = {
            "environment": [f"{k}={v}" for k, v in spec.effective_environment().items()],
            "ports": ports,
            "detach": True,
        }
        if spec.container_name:
            kwargs["name"] = spec.container_name
        if spec.restart_policy:
            kwargs["restart_policy"] = {"Name": spec.restart_policy}

        container = self._get_client().containers.create(spec.image, **kwargs)
        return ContainerIdentity(id=container.id, name=container.name)

    async def create(self, spec: LaunchSpec) -> ContainerIdentity:
        try:
            return await self._call(self._create_sync, spec, target=spec.image)
        except ContainerNotFoundError as e:
            raise ImageNotFoundError(f"Image not found: {spec.image}") from e

    # -- logs ------------------------------------------------------------

    def _open_follow_sync(self, container_id: str, tail_lines: int) -> Any:
        return self._get_client().api.logs(
            container_id, stream=True, follow=True, tail=tail_lines, timestamps=False
        )

    async def follow_logs(self, container_id: str, tail_lines: int) -> LogFollow:
        stream = await self._call(
            self._open_follow_sync, container_id, tail_lines, target=container_id
        )
        return DockerLogFollow(stream, container_id)

    def _logs_sync(self, container_id: str, tail_lines: int) -> str:
        raw = self._get_client().api.logs(
            container_id, stream=False, tail=tail_lines, timestamps=False
        )
        return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)

    async def logs(self, container_id: str, tail_lines: int) -> str:
        return await self._call(self._logs_sync, container_id, tail_lines, target=container_id)

    async def close(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            await asyncio.to_thread(client.close)
            logger.info("Docker client closed")
