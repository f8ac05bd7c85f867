"""Exec credential wire types.

These are exchanged with third-party exec plugins and keep the upstream
client.authentication.k8s.io field names. Request objects are rendered with
to_exec_info(); unset optionals are omitted.
"""

from datetime import datetime

from pydantic import Field

from .base import Base64Data, ClusterKitBaseModel

EXEC_CREDENTIAL_KIND = "ExecCredential"


class ExecCredentialCluster(ClusterKitBaseModel):
    """Cluster connection info handed to the plugin."""

    server: str | None = None
    tls_server_name: str | None = Field(default=None, alias="tlsServerName")
    insecure_skip_tls_verify: bool | None = Field(default=None, alias="insecureSkipTLSVerify")
    certificate_authority_data: Base64Data | None = Field(
        default=None, alias="certificateAuthorityData"
    )
    proxy_url: str | None = Field(default=None, alias="proxyURL")
    disable_compression: bool | None = Field(default=None, alias="disableCompression")


class ExecCredentialSpec(ClusterKitBaseModel):
    interactive: bool | None = None
    cluster: ExecCredentialCluster | None = None


class ExecCredentialStatus(ClusterKitBaseModel):
    """Credentials returned by the plugin."""

    expiration_timestamp: datetime | None = Field(default=None, alias="expirationTimestamp")
    token: str | None = None
    client_certificate_data: Base64Data | None = Field(default=None, alias="clientCertificateData")
    client_key_data: Base64Data | None = Field(default=None, alias="clientKeyData")


class ExecCredential(ClusterKitBaseModel):
    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = EXEC_CREDENTIAL_KIND
    spec: ExecCredentialSpec | None = None
    status: ExecCredentialStatus | None = None

    def to_exec_info(self) -> str:
        """Render as the single JSON value passed in KUBERNETES_EXEC_INFO."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
