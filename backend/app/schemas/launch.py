"""Pydantic schemas for container launch requests."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.launch import EnvironmentVariable, LaunchSpec, PortMapping


class EnvironmentVariableSchema(BaseModel):
    key: str
    value: str = ""


class PortMappingSchema(BaseModel):
    """Port mapping; ``host_port`` defaults to ``container_port``."""

    container_port: int
    host_port: Optional[int] = None
    protocol: str = "tcp"

    @field_validator("protocol")
    @classmethod
    def normalize_protocol(cls, v: str) -> str:
        return v.strip().lower()


class LaunchRequest(BaseModel):
    """Request body for launching a new container.

    Field ranges are checked by the lifecycle controller so that every invalid
    field is reported the same way.
    """

    image: str = Field(..., max_length=512)
    container_name: Optional[str] = Field(None, max_length=255)
    environment: List[EnvironmentVariableSchema] = Field(default_factory=list)
    port_mappings: List[PortMappingSchema] = Field(default_factory=list)
    restart_policy: Optional[str] = None

    @field_validator("container_name", "restart_policy")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    def to_spec(self) -> LaunchSpec:
        return LaunchSpec(
            image=self.image.strip(),
            container_name=self.container_name,
            environment=tuple(
                EnvironmentVariable(key=e.key, value=e.value) for e in self.environment
            ),
            port_mappings=tuple(
                PortMapping(
                    container_port=p.container_port,
                    host_port=p.host_port,
                    protocol=p.protocol,
                )
                for p in self.port_mappings
            ),
            restart_policy=self.restart_policy,
        )
