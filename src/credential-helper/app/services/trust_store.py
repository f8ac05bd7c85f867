"""TLS trust material for cluster endpoints.

Builds trust roots from the CA file or inline CA bytes of a ClusterEndpoint.
An endpoint without CA material has no trust roots of its own and callers fall
back to the system roots.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509

from clusterkit.models import ClusterEndpoint
from clusterkit.observability import get_logger

from .errors import CredentialIOError, ParseError

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrustRoots:
    """Parsed CA certificates together with the PEM bytes they came from."""

    certificates: tuple[x509.Certificate, ...]
    pem: bytes


def parse_pem_certificates(data: bytes) -> tuple[x509.Certificate, ...]:
    """Parse a PEM bundle into certificates.

    Raises:
        ParseError: If data holds no valid PEM certificate
    """
    try:
        certificates = x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise ParseError(f"Invalid CA certificate data: {e}") from e
    return tuple(certificates)


def read_file_bytes(path: str | Path, what: str) -> bytes:
    """Read a credential file.

    Raises:
        CredentialIOError: If the file cannot be read
    """
    try:
        return Path(path).expanduser().read_bytes()
    except OSError as e:
        raise CredentialIOError(f"Couldn't read {what} file {path}: {e.strerror or e}") from e


class TrustStore:
    """Builds trust roots for cluster endpoints."""

    def build_trust_roots(self, endpoint: ClusterEndpoint) -> TrustRoots | None:
        """Build trust roots from the endpoint's CA material.

        Inline CA bytes win over a CA file path. Returns None when the
        endpoint has neither.

        Raises:
            ParseError: If the CA material is not valid PEM/X.509
            CredentialIOError: If the CA file cannot be read
        """
        if endpoint.certificate_authority_data:
            pem = endpoint.certificate_authority_data
        elif endpoint.certificate_authority:
            pem = read_file_bytes(endpoint.certificate_authority, "certificate authority")
        else:
            return None

        return TrustRoots(certificates=parse_pem_certificates(pem), pem=pem)

    async def resolve_endpoint(self, endpoint: ClusterEndpoint) -> ClusterEndpoint:
        """Validate the endpoint's CA material and inline it.

        The file read and parse run off the event loop.
        """
        roots = await asyncio.to_thread(self.build_trust_roots, endpoint)
        if roots is None:
            return endpoint

        logger.debug(
            "Loaded certificate authorities",
            server=endpoint.server,
            certificates=len(roots.certificates),
        )
        if endpoint.certificate_authority_data == roots.pem:
            return endpoint
        return endpoint.with_ca_data(roots.pem)
