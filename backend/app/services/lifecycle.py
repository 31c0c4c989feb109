"""Lifecycle controller: validated start/stop/restart/launch of containers."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from app.config import Settings
from app.exceptions import ContainerBusyError, DockPulseError, LaunchValidationError
from app.models.launch import (
    PROTOCOLS,
    EnvironmentVariable,
    ImageRuntimeDefaults,
    LaunchSpec,
    PortMapping,
)
from app.models.lifecycle import LifecycleOutcome
from app.models.runtime import ContainerDetails, ContainerSummary, ImageSummary
from app.services import metrics as prom
from app.services.runtime_client import RuntimeClient
from app.utils.security import sanitize_log_message
from app.utils.validators import ValidationError, validate_image_reference, validate_launch_spec

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ContainerLockRegistry:
    """Keyed map of per-container locks.

    Unrelated keys never contend. An entry exists only while some caller holds
    or waits on it, so the map does not grow with every container ever seen.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.lock.locked())

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        """Hold the lock for ``key``.

        Args:
            key: Container id (or requested name for launches)
            timeout: Seconds to wait for a concurrent holder; 0 rejects at once

        Raises:
            ContainerBusyError: The lock was not obtained within ``timeout``
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.users += 1
        try:
            if timeout <= 0:
                if entry.lock.locked():
                    raise ContainerBusyError(
                        f"Another operation is in progress on {key}", container_id=key
                    )
                await entry.lock.acquire()
            else:
                try:
                    await asyncio.wait_for(entry.lock.acquire(), timeout)
                except asyncio.TimeoutError:
                    raise ContainerBusyError(
                        f"Timed out after {timeout}s waiting for another operation on {key}",
                        container_id=key,
                    ) from None
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]


class LifecycleController:
    """Performs state transitions on single containers.

    Every mutating call returns a LifecycleOutcome instead of raising, and at
    most one mutation per container id reaches the runtime at a time.
    """

    def __init__(self, runtime: RuntimeClient, settings: Settings) -> None:
        self.runtime = runtime
        self.settings = settings
        self.locks = ContainerLockRegistry()

    def _record(self, action: str, outcome: LifecycleOutcome) -> LifecycleOutcome:
        label = outcome.kind if outcome.ok else (outcome.error_class or "error")
        prom.lifecycle_operations_total.labels(action=action, outcome=label).inc()
        target = sanitize_log_message(outcome.container_id or "-")
        if outcome.ok:
            logger.info(f"{action} {target}: {outcome.kind} (changed={outcome.changed})")
        else:
            logger.warning(
                f"{action} {target} failed [{outcome.error_class}]: "
                f"{sanitize_log_message(outcome.reason or '')}"
            )
        return outcome

    @asynccontextmanager
    async def _hold_container(self, ref: str) -> AsyncIterator[ContainerDetails]:
        """Lock the container ``ref`` names and yield its current details.

        Names and id prefixes are resolved to the full id first, so every
        reference to one container contends on the same lock. Details are
        read again once the lock is held.
        """
        resolved = await self.runtime.inspect(ref)
        container_id = resolved.identity.id
        async with self.locks.hold(container_id, self.settings.lifecycle_lock_timeout_seconds):
            yield await self.runtime.inspect(container_id)

    async def start(self, container_id: str) -> LifecycleOutcome:
        """Start a container; starting a running container is a no-op success."""
        try:
            async with self._hold_container(container_id) as details:
                if details.running:
                    outcome = LifecycleOutcome.started(details.identity.id, changed=False)
                else:
                    await self.runtime.start(details.identity.id)
                    outcome = LifecycleOutcome.started(details.identity.id)
        except DockPulseError as e:
            outcome = LifecycleOutcome.failed(str(e), e.error_class, container_id)
        return self._record("start", outcome)

    async def stop(self, container_id: str) -> LifecycleOutcome:
        """Stop a container; stopping a stopped container is a no-op success."""
        try:
            async with self._hold_container(container_id) as details:
                if not details.running:
                    outcome = LifecycleOutcome.stopped(details.identity.id, changed=False)
                else:
                    await self.runtime.stop(details.identity.id)
                    outcome = LifecycleOutcome.stopped(details.identity.id)
        except DockPulseError as e:
            outcome = LifecycleOutcome.failed(str(e), e.error_class, container_id)
        return self._record("stop", outcome)

    async def restart(self, container_id: str) -> LifecycleOutcome:
        try:
            async with self._hold_container(container_id) as details:
                await self.runtime.restart(details.identity.id)
                outcome = LifecycleOutcome.restarted(details.identity.id)
        except DockPulseError as e:
            outcome = LifecycleOutcome.failed(str(e), e.error_class, container_id)
        return self._record("restart", outcome)

    async def launch(self, spec: LaunchSpec) -> LifecycleOutcome:
        """Create a container from ``spec`` and start it.

        Validation runs before any runtime call, so an invalid request has no
        side effects. If the start fails after a successful create, the new
        container is removed again.
        """
        try:
            validate_launch_spec(spec)
        except ValidationError as e:
            return self._record(
                "launch", LifecycleOutcome.failed(str(e), "validation")
            )

        lock_key = f"name:{spec.container_name}" if spec.container_name else None
        try:
            if lock_key is None:
                outcome = await self._create_and_start(spec)
            else:
                async with self.locks.hold(lock_key, self.settings.lifecycle_lock_timeout_seconds):
                    outcome = await self._create_and_start(spec)
        except DockPulseError as e:
            outcome = LifecycleOutcome.failed(str(e), e.error_class)
        return self._record("launch", outcome)

    async def _create_and_start(self, spec: LaunchSpec) -> LifecycleOutcome:
        created = await self.runtime.create(spec)
        logger.info(
            f"Created container {sanitize_log_message(created.name)} ({created.id[:12]}) "
            f"from {sanitize_log_message(spec.image)}"
        )
        try:
            await self.runtime.start(created.id)
        except DockPulseError as e:
            await self._discard(created.id)
            return LifecycleOutcome.failed(
                f"Container created but failed to start: {e}", e.error_class, created.id
            )
        return LifecycleOutcome.started(created.id)

    async def _discard(self, container_id: str) -> None:
        try:
            await self.runtime.remove(container_id)
            logger.info(f"Removed half-launched container {container_id[:12]}")
        except DockPulseError as e:
            logger.error(f"Failed to remove half-launched container {container_id[:12]}: {e}")

    async def image_runtime_defaults(self, image: str) -> ImageRuntimeDefaults:
        """Report an image's declared environment and exposed ports.

        Read-only. Output ordering is canonical: environment sorted by key
        (last declaration of a duplicate key wins), ports sorted by
        (container port, protocol) with host port equal to container port.

        Raises:
            LaunchValidationError: Blank image reference
            ImageNotFoundError: The runtime does not know the image
        """
        try:
            validate_image_reference(image)
        except ValidationError as e:
            raise LaunchValidationError(str(e), field=e.field) from e
        details = await self.runtime.inspect_image(image)

        env: Dict[str, str] = {}
        for entry in details.environment:
            key, _, value = entry.partition("=")
            if key:
                env[key] = value

        ports = set()
        for spec in details.exposed_ports:
            port = parse_exposed_port(spec)
            if port is not None:
                ports.add(port)

        return ImageRuntimeDefaults(
            image=image,
            environment=tuple(
                EnvironmentVariable(key=k, value=env[k]) for k in sorted(env)
            ),
            exposed_ports=tuple(
                PortMapping(container_port=p, host_port=p, protocol=proto)
                for p, proto in sorted(ports)
            ),
        )

    async def list_containers(self) -> List[ContainerSummary]:
        """Running containers started from a named image.

        Containers whose image is only an id (or untagged) are left out of
        this listing; the metrics collector still samples them.
        """
        return [c for c in await self.runtime.list_running() if not is_image_id(c.image)]

    async def list_images(self) -> List[ImageSummary]:
        return await self.runtime.list_images()


HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def is_image_id(image: str) -> bool:
    """True for image references that are a content id rather than a name."""
    if image.startswith("sha256:") or "<none>" in image:
        return True
    return len(image) == 64 and all(ch in HEX_DIGITS for ch in image)


def parse_exposed_port(spec: str) -> Optional[tuple]:
    """Parse an image ``ExposedPorts`` key such as ``"80/tcp"``.

    Returns (port, protocol), or None for ranges and unsupported protocols.
    """
    number, _, protocol = spec.partition("/")
    protocol = (protocol or "tcp").lower()
    if protocol not in PROTOCOLS:
        return None
    try:
        port = int(number)
    except ValueError:
        return None
    if port < 1 or port > 65535:
        return None
    return port, protocol
