"""Read models returned by the runtime client."""

from __future__ import annotations

from dataclasses import dataclass, field

from app.models.metrics import ContainerIdentity


@dataclass(frozen=True)
class ContainerSummary:
    id: str
    name: str
    image: str
    status: str

    @property
    def identity(self) -> ContainerIdentity:
        return ContainerIdentity(id=self.id, name=self.name)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "image": self.image, "status": self.status}


@dataclass(frozen=True)
class ContainerDetails:
    """Static metadata from inspecting a single container."""

    identity: ContainerIdentity
    image: str
    status: str
    running: bool


@dataclass(frozen=True)
class ImageSummary:
    id: str
    repo_tags: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"id": self.id, "repo_tags": list(self.repo_tags)}


@dataclass(frozen=True)
class ImageDetails:
    """Image configuration as declared by the image author.

    ``environment`` holds raw ``KEY=VALUE`` strings and ``exposed_ports`` holds
    ``"<port>/<proto>"`` strings, both in whatever order the runtime reports.
    """

    id: str
    repo_tags: tuple[str, ...] = ()
    environment: tuple[str, ...] = ()
    exposed_ports: tuple[str, ...] = ()


@dataclass(frozen=True)
class SystemInfo:
    version: str
    total_images: int
    total_containers: int
    running_containers: int
    cpu_count: int = field(default=1)
