"""Validation utilities for container launch requests."""

import re
from typing import Optional, Set, Tuple

from app.models.launch import PROTOCOLS, RESTART_POLICIES, LaunchSpec, PortMapping

MIN_PORT = 1
MAX_PORT = 65535

# Same character rules the Docker daemon enforces for container names
_CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
_ENV_KEY_FORBIDDEN = ("=", "\x00", "\n", "\r")


class ValidationError(Exception):
    """Raised when validation fails.

    Attributes:
        field: Name of the offending launch field, when known
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


def validate_container_name(name: str) -> str:
    """Validate a container name against Docker naming rules.

    Args:
        name: Container name to validate

    Returns:
        Validated name

    Raises:
        ValidationError: If name contains invalid characters or patterns
    """
    if not name:
        raise ValidationError("Container name cannot be empty", field="container_name")

    # Reject names starting with dash (could be interpreted as flag)
    if name.startswith("-"):
        raise ValidationError("Container name cannot start with dash", field="container_name")

    if not _CONTAINER_NAME_RE.match(name):
        raise ValidationError(
            "Container name must start with a letter or digit and contain only "
            "alphanumeric characters, underscores, dashes, and dots",
            field="container_name",
        )

    # Length check
    if len(name) > 255:
        raise ValidationError(
            "Container name too long (max 255 characters)", field="container_name"
        )

    return name


def validate_image_reference(image: str) -> str:
    """Validate that an image reference is usable.

    Raises:
        ValidationError: If the reference is blank or contains whitespace
    """
    if image is None or not image.strip():
        raise ValidationError("Image cannot be empty", field="image")
    if any(ch.isspace() for ch in image):
        raise ValidationError("Image reference cannot contain whitespace", field="image")
    return image


def validate_port(port: int, field: str = "container_port") -> int:
    """Validate a TCP/UDP port number (1-65535)."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if port < MIN_PORT or port > MAX_PORT:
        raise ValidationError(
            f"{field} {port} out of range ({MIN_PORT}-{MAX_PORT})", field=field
        )
    return port


def validate_protocol(protocol: str) -> str:
    if protocol not in PROTOCOLS:
        raise ValidationError(
            f"Protocol must be one of {', '.join(PROTOCOLS)}, got '{protocol}'",
            field="protocol",
        )
    return protocol


def validate_env_key(key: str) -> str:
    if not key:
        raise ValidationError("Environment variable key cannot be empty", field="environment")
    if any(ch in key for ch in _ENV_KEY_FORBIDDEN):
        raise ValidationError(
            f"Environment variable key '{key}' contains forbidden characters",
            field="environment",
        )
    return key


def validate_restart_policy(policy: Optional[str]) -> Optional[str]:
    if policy is None:
        return None
    if policy not in RESTART_POLICIES:
        raise ValidationError(
            f"Restart policy must be one of {', '.join(RESTART_POLICIES)}, got '{policy}'",
            field="restart_policy",
        )
    return policy


def validate_port_mapping(mapping: PortMapping) -> PortMapping:
    validate_port(mapping.container_port, "container_port")
    if mapping.host_port is not None:
        validate_port(mapping.host_port, "host_port")
    validate_protocol(mapping.protocol)
    return mapping


def validate_launch_spec(spec: LaunchSpec) -> LaunchSpec:
    """Validate every field of a launch request.

    Nothing here touches the runtime. The first invalid field fails the whole
    request.

    Args:
        spec: Launch request to validate

    Returns:
        The same spec, unchanged

    Raises:
        ValidationError: On the first invalid field
    """
    validate_image_reference(spec.image)
    if spec.container_name:
        validate_container_name(spec.container_name)
    for var in spec.environment:
        validate_env_key(var.key)
    validate_restart_policy(spec.restart_policy)

    published: Set[Tuple[int, str]] = set()
    for mapping in spec.port_mappings:
        validate_port_mapping(mapping)
        binding = (mapping.effective_host_port, mapping.protocol)
        if binding in published:
            raise ValidationError(
                f"Host port {binding[0]}/{binding[1]} is mapped more than once",
                field="host_port",
            )
        published.add(binding)

    return spec
