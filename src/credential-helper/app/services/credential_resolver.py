"""Credential resolution.

Turns an AuthDescriptor into concrete credential material. The descriptor's
source (see AuthSource) decides which single credential source is used:

1. basic auth (username + password)
2. static bearer token
3. bearer token file
4. client certificate + key files
5. client certificate + key data
6. exec plugin
7. nothing: an empty ResolvedAuth, not an error

Impersonation and auth-provider fields are recognized but not implemented;
their presence is logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from clusterkit.models import (
    AuthDescriptor,
    AuthSource,
    ClusterEndpoint,
    ResolvedAuth,
    ResolvedCluster,
)
from clusterkit.observability import get_logger

from .exec_plugin import ExecPluginRunner
from .trust_store import TrustStore, read_file_bytes

logger = get_logger(__name__)


class CredentialResolver:
    """Resolves authentication descriptors into credentials."""

    def __init__(
        self,
        trust_store: TrustStore | None = None,
        exec_runner: ExecPluginRunner | None = None,
    ):
        self.trust_store = trust_store or TrustStore()
        self.exec_runner = exec_runner or ExecPluginRunner()

    async def resolve(self, endpoint: ClusterEndpoint, auth: AuthDescriptor) -> ResolvedAuth:
        """Resolve the winning credential source of a descriptor.

        Args:
            endpoint: Cluster the credentials are for
            auth: Authentication descriptor

        Returns:
            ResolvedAuth with the produced material and optional expiry

        Raises:
            CredentialIOError: If a token, certificate or key file cannot be read
            ParseError: If the CA material handed to an exec plugin is invalid
            ExecutableNotFoundError, ExecFailedError, NoOutputError: On exec plugin failure
        """
        if unsupported := auth.unsupported_fields:
            logger.info("Ignoring unsupported auth fields", fields=unsupported)

        source = auth.source

        if source == AuthSource.BASIC:
            return ResolvedAuth(source=source, username=auth.username, password=auth.password)

        if source == AuthSource.TOKEN:
            return ResolvedAuth(source=source, token=auth.token)

        if source == AuthSource.TOKEN_FILE:
            data = await asyncio.to_thread(read_file_bytes, auth.token_file, "token")
            return ResolvedAuth(source=source, token=data.decode("utf-8").strip())

        if source == AuthSource.CLIENT_CERTIFICATE_FILE:
            certificate, key = await asyncio.gather(
                asyncio.to_thread(read_file_bytes, auth.client_certificate, "client certificate"),
                asyncio.to_thread(read_file_bytes, auth.client_key, "client key"),
            )
            return ResolvedAuth(
                source=source,
                client_certificate_data=certificate,
                client_key_data=key,
            )

        if source == AuthSource.CLIENT_CERTIFICATE_DATA:
            return ResolvedAuth(
                source=source,
                client_certificate_data=auth.client_certificate_data,
                client_key_data=auth.client_key_data,
            )

        if source == AuthSource.EXEC:
            return await self._resolve_exec(endpoint, auth)

        return ResolvedAuth()

    async def _resolve_exec(self, endpoint: ClusterEndpoint, auth: AuthDescriptor) -> ResolvedAuth:
        if auth.exec.provide_cluster_info and endpoint.certificate_authority:
            endpoint = await self.trust_store.resolve_endpoint(endpoint)

        credential = await self.exec_runner.run(auth.exec, endpoint)
        status = credential.status

        logger.debug(
            "Exec plugin returned credentials",
            command=auth.exec.command,
            expires_at=status.expiration_timestamp.isoformat()
            if status.expiration_timestamp
            else None,
        )
        return ResolvedAuth(
            source=AuthSource.EXEC,
            token=status.token,
            client_certificate_data=status.client_certificate_data,
            client_key_data=status.client_key_data,
            expires_at=status.expiration_timestamp,
        )

    async def evaluate(self, record: ResolvedCluster) -> ResolvedCluster:
        """Evaluate a record and return the updated copy.

        Inlines the endpoint's CA material, resolves the credentials and writes
        them back into the record's auth descriptor. The error is cleared and
        the evaluation timestamp bumped. The input record is left untouched.
        """
        endpoint = await self.trust_store.resolve_endpoint(record.endpoint)
        resolved = await self.resolve(endpoint, record.auth)

        return record.model_copy(
            update={
                "endpoint": endpoint,
                "auth": record.auth.with_resolved(resolved),
                "credentials_expire_at": resolved.expires_at,
                "error": None,
                "last_evaluation": datetime.now(timezone.utc),
            }
        )
