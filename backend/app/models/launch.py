"""Launch request model and image runtime defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

PROTOCOLS = ("tcp", "udp")
RESTART_POLICIES = ("no", "always", "unless-stopped", "on-failure")


@dataclass(frozen=True)
class EnvironmentVariable:
    key: str
    value: str

    def to_dict(self) -> dict:
        return {"key": self.key, "value": self.value}


@dataclass(frozen=True)
class PortMapping:
    """Container port published on the host.

    ``host_port`` of None means "same as the container port".
    """

    container_port: int
    host_port: Optional[int] = None
    protocol: str = "tcp"

    @property
    def effective_host_port(self) -> int:
        return self.host_port if self.host_port is not None else self.container_port

    def to_dict(self) -> dict:
        return {
            "container_port": self.container_port,
            "host_port": self.host_port,
            "protocol": self.protocol,
        }


@dataclass(frozen=True)
class LaunchSpec:
    """Description of a new container to create and start.

    Environment order is preserved and keys may repeat; the last value for a
    key wins in the effective environment.
    """

    image: str
    container_name: Optional[str] = None
    environment: tuple[EnvironmentVariable, ...] = ()
    port_mappings: tuple[PortMapping, ...] = ()
    restart_policy: Optional[str] = None

    def effective_environment(self) -> dict[str, str]:
        """Collapse duplicate keys, keeping the last value for each."""
        env: dict[str, str] = {}
        for var in self.environment:
            env[var.key] = var.value
        return env

    def effective_ports(self) -> tuple[PortMapping, ...]:
        """Port mappings with ``host_port`` filled in from ``container_port``."""
        return tuple(
            PortMapping(
                container_port=p.container_port,
                host_port=p.effective_host_port,
                protocol=p.protocol,
            )
            for p in self.port_mappings
        )


@dataclass(frozen=True)
class ImageRuntimeDefaults:
    """Declared environment and exposed ports of an image, canonically ordered."""

    image: str
    environment: tuple[EnvironmentVariable, ...] = field(default_factory=tuple)
    exposed_ports: tuple[PortMapping, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "image": self.image,
            "environment_variables": [e.to_dict() for e in self.environment],
            "exposed_ports": [p.to_dict() for p in self.exposed_ports],
        }
