"""Errors raised while resolving and storing cluster credentials.

Messages are human readable: they end up in ResolvedCluster.error.
"""

from __future__ import annotations


class CredentialHelperError(Exception):
    """Base class for all credential helper errors."""

    pass


class CredentialIOError(CredentialHelperError):
    """Raised when a CA, certificate, key or token file cannot be read."""

    pass


class ParseError(CredentialHelperError):
    """Raised when PEM, X.509 or JSON material cannot be decoded."""

    pass


class ExecutableNotFoundError(CredentialHelperError):
    """Raised when the exec plugin command is not on the user's PATH."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Executable {command} not found in the user's PATH.")


class ExecFailedError(CredentialHelperError):
    """Raised when an exec plugin fails.

    output is the plugin's stderr, or its raw stdout when stdout could not be
    decoded, verbatim.
    """

    def __init__(self, command: str, output: str):
        self.command = command
        self.output = output
        super().__init__(output)


class NoOutputError(CredentialHelperError):
    """Raised when an exec plugin exits without writing to stdout."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Executing {command} yielded no stdout.")


class StorageError(CredentialHelperError):
    """Raised when a secret store backend cannot be read or written."""

    pass


class ClusterNotFoundError(CredentialHelperError):
    """Raised when a cluster is not in the registry."""

    pass


class DescriptorNotFoundError(CredentialHelperError):
    """Raised when a record's kubeconfig context can no longer be found."""

    pass
