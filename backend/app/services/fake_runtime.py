"""In-memory RuntimeClient used by tests and local development.

Behaves like a tiny single-host runtime: containers have a running flag,
usage counters are scripted per container, and logs are an append-only list
that live followers observe. Hooks let tests slow down or fail individual
calls and observe how many mutations overlap.
"""

import asyncio
import hashlib
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Dict, List, Optional, Set

from app.exceptions import (
    ContainerNotFoundError,
    ImageNotFoundError,
    RuntimeOperationError,
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
from app.services.runtime_client import LogFollow, RuntimeClient

logger = logging.getLogger(__name__)

_END = object()


@dataclass
class FakeContainer:
    """Mutable state of one fake container."""

    id: str
    name: str
    image: str
    running: bool = False
    environment: Dict[str, str] = field(default_factory=dict)
    ports: Dict[str, int] = field(default_factory=dict)
    restart_policy: Optional[str] = None
    cpu_total_ns: int = 0
    memory_bytes: int = 0
    memory_limit_bytes: int = 0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 1
    log_lines: List[str] = field(default_factory=list)
    stats_delay: float = 0.0
    stats_error: Optional[Exception] = None

    @property
    def identity(self) -> ContainerIdentity:
        return ContainerIdentity(id=self.id, name=self.name)


class FakeLogFollow(LogFollow):
    """Follow subscription over a fake container's log list."""

    def __init__(self, runtime: "InMemoryRuntimeClient", container_id: str, backlog: List[str]) -> None:
        self._runtime = runtime
        self.container_id = container_id
        self._queue: asyncio.Queue = asyncio.Queue()
        for line in backlog:
            self._queue.put_nowait(line)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: object) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            await self.aclose()
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._runtime._followers.discard(self)
        self._runtime.closed_follows += 1
        # Wake any reader still parked on the queue
        self._queue.put_nowait(_END)


class InMemoryRuntimeClient(RuntimeClient):
    """Fake runtime with scripted counters and observable call patterns.

    Attributes:
        clock: Monotonic clock used to stamp snapshots (replaceable in tests)
        cpu_count: Host core count reported by system_info
        version: Runtime version reported by system_info
        list_error: When set, list_running raises it
        system_info_error: When set, system_info raises it
        start_error: When set, start raises it
        mutation_delay: Seconds every start/stop/restart sleeps mid-call
        calls: Names of every mutating call, in order
        max_in_flight: Highest observed number of overlapping mutations
            on a single container id
    """

    def __init__(self, cpu_count: int = 2, version: str = "24.0.7") -> None:
        self.clock: Callable[[], float] = time.monotonic
        self.cpu_count = cpu_count
        self.version = version
        self.containers: Dict[str, FakeContainer] = {}
        self.images: Dict[str, ImageDetails] = {}
        self.list_error: Optional[Exception] = None
        self.system_info_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.mutation_delay: float = 0.0
        self.calls: List[tuple] = []
        self.max_in_flight: Dict[str, int] = {}
        self._in_flight: Dict[str, int] = {}
        self._followers: Set[FakeLogFollow] = set()
        self.opened_follows = 0
        self.closed_follows = 0
        self._ids = itertools.count(1)

    # -- test helpers ----------------------------------------------------

    def add_container(
        self,
        container_id: str,
        name: Optional[str] = None,
        image: str = "nginx:latest",
        running: bool = True,
        **counters,
    ) -> FakeContainer:
        container = FakeContainer(
            id=container_id, name=name or container_id, image=image, running=running, **counters
        )
        self.containers[container_id] = container
        return container

    def add_image(
        self,
        reference: str,
        environment: tuple = (),
        exposed_ports: tuple = (),
    ) -> ImageDetails:
        details = ImageDetails(
            id="sha256:" + hashlib.sha256(reference.encode()).hexdigest(),
            repo_tags=(reference,),
            environment=tuple(environment),
            exposed_ports=tuple(exposed_ports),
        )
        self.images[reference] = details
        return details

    def emit_log(self, container_id: str, line: str) -> None:
        """Append a log line and deliver it to live followers."""
        self._get(container_id).log_lines.append(line)
        for follower in list(self._followers):
            if follower.container_id == container_id:
                follower.push(line)

    def end_logs(self, container_id: str) -> None:
        """End every follow subscription on a container (runtime-side close)."""
        for follower in list(self._followers):
            if follower.container_id == container_id:
                follower.push(_END)

    def remove_container(self, container_id: str) -> None:
        """Simulate an external `docker rm -f`."""
        self.end_logs(container_id)
        self.containers.pop(container_id, None)

    @property
    def active_follows(self) -> int:
        return len(self._followers)

    # -- internals -------------------------------------------------------

    def _get(self, container_id: str) -> FakeContainer:
        """Resolve a full id, a name, or a unique id prefix, as Docker does."""
        container = self.containers.get(container_id)
        if container is None:
            matches = [
                c
                for c in self.containers.values()
                if c.name == container_id or c.id.startswith(container_id)
            ]
            if len(matches) == 1:
                container = matches[0]
        if container is None:
            raise ContainerNotFoundError(
                f"Container not found: {container_id}", container_id=container_id
            )
        return container

    async def _mutate(self, action: str, container_id: str) -> FakeContainer:
        container = self._get(container_id)
        key = container.id
        self.calls.append((action, container_id))
        self._in_flight[key] = self._in_flight.get(key, 0) + 1
        self.max_in_flight[key] = max(self.max_in_flight.get(key, 0), self._in_flight[key])
        try:
            if self.mutation_delay:
                await asyncio.sleep(self.mutation_delay)
            return container
        finally:
            self._in_flight[key] -= 1

    # -- RuntimeClient ---------------------------------------------------

    async def list_running(self) -> List[ContainerSummary]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ContainerSummary(id=c.id, name=c.name, image=c.image, status="running")
            for c in self.containers.values()
            if c.running
        ]

    async def list_images(self) -> List[ImageSummary]:
        return [ImageSummary(id=d.id, repo_tags=d.repo_tags) for d in self.images.values()]

    async def inspect(self, container_id: str) -> ContainerDetails:
        container = self._get(container_id)
        return ContainerDetails(
            identity=container.identity,
            image=container.image,
            status="running" if container.running else "exited",
            running=container.running,
        )

    async def stats(self, container_id: str) -> RawUsageSnapshot:
        container = self._get(container_id)
        if container.stats_delay:
            await asyncio.sleep(container.stats_delay)
        if container.stats_error is not None:
            raise container.stats_error
        if container_id not in self.containers:
            raise ContainerNotFoundError(
                f"Container vanished: {container_id}", container_id=container_id
            )
        return RawUsageSnapshot(
            container=container.identity,
            timestamp=datetime.now(UTC),
            monotonic=self.clock(),
            cpu_total_ns=container.cpu_total_ns,
            online_cpus=self.cpu_count,
            memory_bytes=container.memory_bytes,
            memory_limit_bytes=container.memory_limit_bytes,
            network_rx_bytes=container.network_rx_bytes,
            network_tx_bytes=container.network_tx_bytes,
            block_read_bytes=container.block_read_bytes,
            block_write_bytes=container.block_write_bytes,
            pids=container.pids,
        )

    async def start(self, container_id: str) -> None:
        container = await self._mutate("start", container_id)
        if self.start_error is not None:
            raise self.start_error
        container.running = True

    async def stop(self, container_id: str) -> None:
        container = await self._mutate("stop", container_id)
        container.running = False

    async def restart(self, container_id: str) -> None:
        container = await self._mutate("restart", container_id)
        container.running = True

    async def remove(self, container_id: str) -> None:
        self.calls.append(("remove", container_id))
        self.remove_container(container_id)

    async def create(self, spec: LaunchSpec) -> ContainerIdentity:
        self.calls.append(("create", spec.image))
        if spec.image not in self.images:
            raise ImageNotFoundError(f"Image not found: {spec.image}")
        container_id = f"fake{next(self._ids):060d}"
        name = spec.container_name or f"fake_container_{len(self.containers) + 1}"
        if any(c.name == name for c in self.containers.values()):
            raise RuntimeOperationError(f"Conflict: name {name} is already in use")
        self.add_container(
            container_id,
            name=name,
            image=spec.image,
            running=False,
            environment=spec.effective_environment(),
            ports={
                f"{p.container_port}/{p.protocol}": p.effective_host_port
                for p in spec.port_mappings
            },
            restart_policy=spec.restart_policy,
        )
        return ContainerIdentity(id=container_id, name=name)

    async def follow_logs(self, container_id: str, tail_lines: int) -> LogFollow:
        container = self._get(container_id)
        backlog = container.log_lines[-tail_lines:] if tail_lines > 0 else []
        follow = FakeLogFollow(self, container_id, backlog)
        self._followers.add(follow)
        self.opened_follows += 1
        return follow

    async def logs(self, container_id: str, tail_lines: int) -> str:
        container = self._get(container_id)
        lines = container.log_lines[-tail_lines:] if tail_lines > 0 else []
        return "".join(f"{line}\n" for line in lines)

    async def system_info(self) -> SystemInfo:
        if self.system_info_error is not None:
            raise self.system_info_error
        return SystemInfo(
            version=self.version,
            total_images=len(self.images),
            total_containers=len(self.containers),
            running_containers=sum(1 for c in self.containers.values() if c.running),
            cpu_count=self.cpu_count,
        )

    async def inspect_image(self, image: str) -> ImageDetails:
        details = self.images.get(image)
        if details is None:
            raise ImageNotFoundError(f"Image not found: {image}")
        return details
