"""Authentication header strategies.

Credentials are stored as SecretStr so they never show up in reprs,
logs or JSON dumps.
"""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer


@runtime_checkable
class Auth(Protocol):
    """Anything that can add credentials to outgoing headers."""

    def apply(self, headers: dict[str, str]) -> dict[str, str]: ...


def _mask(secret: SecretStr) -> str:
    value = secret.get_secret_value()
    return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "***"


class BearerAuth(BaseModel):
    """Bearer token with optional organization and project scoping headers.

    Example:
        >>> auth = BearerAuth(token="sk-...", organization="org_123", project="proj_abc")
        >>> auth.apply({})["Authorization"]
        'Bearer sk-...'
    """

    model_config = ConfigDict(frozen=True, extra="forbid", revalidate_instances="never")
    auth_type: Literal["bearer"] = "bearer"
    token: SecretStr = Field(..., description="Bearer token value")
    organization: str | None = None
    project: str | None = None
    organization_header: str = "OpenAI-Organization"
    project_header: str = "OpenAI-Project"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        headers["Authorization"] = f"Bearer {self.token.get_secret_value()}"
        if self.organization:
            headers[self.organization_header] = self.organization
        if self.project:
            headers[self.project_header] = self.project
        return headers

    @field_serializer("token", when_used="json")
    def _mask_token(self, v: SecretStr) -> str:
        return _mask(v)


class ApiKeyAuth(BaseModel):
    """API key sent in a custom header (market-data style providers)."""

    model_config = ConfigDict(frozen=True, extra="forbid", revalidate_instances="never")
    auth_type: Literal["api_key"] = "api_key"
    key: SecretStr = Field(..., description="API key value")
    header_name: str = "X-API-Key"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        headers[self.header_name] = self.key.get_secret_value()
        return headers

    @field_serializer("key", when_used="json")
    def _mask_key(self, v: SecretStr) -> str:
        return _mask(v)
