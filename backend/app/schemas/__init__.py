"""Pydantic schemas for API validation."""

from app.schemas.auth import LoginRequest, TokenResponse
from app.schemas.launch import EnvironmentVariableSchema, LaunchRequest, PortMappingSchema

__all__ = [
    "EnvironmentVariableSchema",
    "LaunchRequest",
    "LoginRequest",
    "PortMappingSchema",
    "TokenResponse",
]
