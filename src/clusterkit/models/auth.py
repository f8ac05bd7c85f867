"""Authentication descriptor models.

An AuthDescriptor mirrors a kubeconfig user entry. Exactly one credential
source is used per descriptor, picked by a fixed priority scan (see AuthSource).
"""

from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import Field

from .base import Base64Data, ClusterKitBaseModel


class AuthSource(str, Enum):
    """Credential source, in priority order."""

    BASIC = "basic"
    TOKEN = "token"
    TOKEN_FILE = "token_file"
    CLIENT_CERTIFICATE_FILE = "client_certificate_file"
    CLIENT_CERTIFICATE_DATA = "client_certificate_data"
    EXEC = "exec"
    NONE = "none"


class ExecInteractiveMode(str, Enum):
    """Exec plugin interactive mode."""

    NEVER = "Never"
    IF_AVAILABLE = "IfAvailable"
    ALWAYS = "Always"


class ExecEnvVar(ClusterKitBaseModel):
    """Environment variable set for an exec plugin."""

    name: str
    value: str


class ExecPluginConfig(ClusterKitBaseModel):
    """Exec plugin configuration of a kubeconfig user."""

    api_version: str = Field(
        default="client.authentication.k8s.io/v1beta1",
        alias="apiVersion",
    )
    command: str
    args: list[str] = Field(default_factory=list)
    env: list[ExecEnvVar] = Field(default_factory=list)
    interactive_mode: ExecInteractiveMode = Field(
        default=ExecInteractiveMode.IF_AVAILABLE,
        alias="interactiveMode",
    )
    provide_cluster_info: bool = Field(default=False, alias="provideClusterInfo")

    @property
    def is_interactive(self) -> bool:
        """Anything but Never asks for an interactive session."""
        return self.interactive_mode != ExecInteractiveMode.NEVER


class ResolvedAuth(ClusterKitBaseModel):
    """Concrete credential material produced by resolving an AuthDescriptor."""

    source: AuthSource = AuthSource.NONE
    username: str | None = None
    password: str | None = None
    token: str | None = None
    client_certificate_data: Base64Data | None = None
    client_key_data: Base64Data | None = None
    expires_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.source == AuthSource.NONE


class AuthDescriptor(ClusterKitBaseModel):
    """Authentication descriptor (kubeconfig user entry).

    Resolved token and certificate bytes are written back into the token and
    *_data fields after evaluation, see with_resolved().
    """

    # Basic auth
    username: str | None = None
    password: str | None = None
    # Bearer token
    token: str | None = None
    token_file: str | None = None
    # Client certificate
    client_certificate: str | None = None
    client_key: str | None = None
    client_certificate_data: Base64Data | None = None
    client_key_data: Base64Data | None = None
    # Recognized, not implemented
    impersonate: str | None = None
    impersonate_groups: list[str] | None = None
    impersonate_user_extra: dict[str, list[str]] | None = None
    auth_provider: dict[str, Any] | None = None
    # Exec plugin
    exec: ExecPluginConfig | None = None

    @cached_property
    def source(self) -> AuthSource:
        """The credential source that wins the priority scan."""
        if self.username is not None and self.password is not None:
            return AuthSource.BASIC
        if self.token is not None:
            return AuthSource.TOKEN
        if self.token_file:
            return AuthSource.TOKEN_FILE
        if self.client_certificate and self.client_key:
            return AuthSource.CLIENT_CERTIFICATE_FILE
        if self.client_certificate_data and self.client_key_data:
            return AuthSource.CLIENT_CERTIFICATE_DATA
        if self.exec is not None:
            return AuthSource.EXEC
        return AuthSource.NONE

    @property
    def unsupported_fields(self) -> list[str]:
        """Names of set fields that resolution ignores."""
        names = ("impersonate", "impersonate_groups", "impersonate_user_extra", "auth_provider")
        return [name for name in names if getattr(self, name)]

    def with_resolved(self, resolved: ResolvedAuth) -> "AuthDescriptor":
        """Return a copy with resolved token/certificate material written back."""
        update: dict[str, Any] = {}
        if resolved.source in (AuthSource.TOKEN_FILE, AuthSource.EXEC):
            update["token"] = resolved.token
        if resolved.source in (AuthSource.CLIENT_CERTIFICATE_FILE, AuthSource.EXEC):
            update["client_certificate_data"] = resolved.client_certificate_data
            update["client_key_data"] = resolved.client_key_data
        return self.model_copy(update=update)
