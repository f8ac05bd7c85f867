"""Exec plugin runner.

Runs a kubeconfig exec plugin and decodes the ExecCredential it prints.

The plugin is never launched directly. It runs through the user's shell as a
login shell so that PATH entries and shell functions set up by the shell's rc
files (version managers, cloud CLIs installed per user) are visible:

    $SHELL [-i] -l -c "<command> <args...>"

Failure classification, in order:
1. stdout is "<command> not found" (or the shell exited 127): ExecutableNotFoundError
2. stderr is not empty: ExecFailedError carrying stderr
3. stdout is empty: NoOutputError
4. stdout is not an ExecCredential: ExecFailedError carrying stdout
"""

from __future__ import annotations

import asyncio
import os
import shlex
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from clusterkit.config import ExecSettings
from clusterkit.models import (
    ClusterEndpoint,
    ExecCredential,
    ExecCredentialCluster,
    ExecCredentialSpec,
    ExecPluginConfig,
)
from clusterkit.observability import external_call, get_logger

from .errors import ExecFailedError, ExecutableNotFoundError, NoOutputError

logger = get_logger(__name__)

KUBERNETES_EXEC_INFO = "KUBERNETES_EXEC_INFO"
DEFAULT_SHELL = "/bin/sh"
COMMAND_NOT_FOUND_STATUS = 127


@dataclass(frozen=True)
class ExecResult:
    """Captured output of a finished plugin process."""

    stdout: str
    stderr: str
    returncode: int


class ExecPluginRunner:
    """Launches exec plugins through the user's login shell."""

    def __init__(
        self,
        shell: str | None = None,
        login_shell: bool = True,
        non_interactive_shells: Iterable[str] = ("bash",),
        environ: Mapping[str, str] | None = None,
    ):
        """Initialize the runner.

        Args:
            shell: Shell override (defaults to $SHELL, then /bin/sh)
            login_shell: Pass -l to the shell
            non_interactive_shells: Shell names whose -i flag is skipped
            environ: Base environment (defaults to the process environment)
        """
        self._shell = shell
        self.login_shell = login_shell
        self.non_interactive_shells = frozenset(non_interactive_shells)
        self._environ = environ

    @classmethod
    def from_settings(cls, settings: ExecSettings) -> ExecPluginRunner:
        return cls(
            shell=settings.shell,
            login_shell=settings.login_shell,
            non_interactive_shells=settings.non_interactive_shells,
        )

    @property
    def base_environment(self) -> dict[str, str]:
        return dict(os.environ if self._environ is None else self._environ)

    @property
    def shell(self) -> str:
        return self._shell or self.base_environment.get("SHELL") or DEFAULT_SHELL

    def use_interactive_flag(self, exec_config: ExecPluginConfig) -> bool:
        """Whether the shell is started with -i for this plugin."""
        if not exec_config.is_interactive:
            return False
        return Path(self.shell).name not in self.non_interactive_shells

    def command_line(self, exec_config: ExecPluginConfig) -> str:
        # The command stays unquoted so shell functions and aliases resolve.
        return " ".join([exec_config.command, *(shlex.quote(arg) for arg in exec_config.args)])

    def shell_arguments(self, exec_config: ExecPluginConfig) -> list[str]:
        arguments = []
        if self.use_interactive_flag(exec_config):
            arguments.append("-i")
        if self.login_shell:
            arguments.append("-l")
        arguments += ["-c", self.command_line(exec_config)]
        return arguments

    def build_exec_info(
        self,
        exec_config: ExecPluginConfig,
        endpoint: ClusterEndpoint,
    ) -> ExecCredential:
        """Build the ExecCredential request describing the cluster."""
        return ExecCredential(
            api_version=exec_config.api_version,
            spec=ExecCredentialSpec(
                interactive=exec_config.is_interactive,
                cluster=ExecCredentialCluster(
                    server=endpoint.server,
                    tls_server_name=endpoint.tls_server_name,
                    insecure_skip_tls_verify=endpoint.insecure_skip_tls_verify,
                    certificate_authority_data=endpoint.certificate_authority_data,
                    proxy_url=endpoint.proxy_url,
                    disable_compression=endpoint.disable_compression,
                ),
            ),
        )

    def build_environment(
        self,
        exec_config: ExecPluginConfig,
        endpoint: ClusterEndpoint,
    ) -> dict[str, str]:
        """Inherited environment with the plugin's variables applied last."""
        environment = self.base_environment
        for env_var in exec_config.env:
            environment[env_var.name] = env_var.value

        if exec_config.provide_cluster_info:
            environment[KUBERNETES_EXEC_INFO] = self.build_exec_info(
                exec_config, endpoint
            ).to_exec_info()

        return environment

    async def run(
        self,
        exec_config: ExecPluginConfig,
        endpoint: ClusterEndpoint,
    ) -> ExecCredential:
        """Run the plugin and decode its credential.

        Blocks until the plugin exits; interactive plugins may wait on the
        user indefinitely.

        Raises:
            ExecutableNotFoundError: If the command is not on the user's PATH
            ExecFailedError: If the plugin wrote to stderr or printed no credential
            NoOutputError: If the plugin printed nothing
        """
        result = await self._launch(
            self.shell_arguments(exec_config),
            self.build_environment(exec_config, endpoint),
            exec_config.command,
        )
        return self.decode(exec_config, result)

    async def _launch(
        self,
        arguments: list[str],
        environment: dict[str, str],
        command: str,
    ) -> ExecResult:
        with external_call(logger, "exec-plugin", command) as outcome:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                *arguments,
                env=environment,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
            outcome["returncode"] = process.returncode
            if process.returncode:
                outcome["error"] = f"exit status {process.returncode}"

        return ExecResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=process.returncode,
        )

    def decode(self, exec_config: ExecPluginConfig, result: ExecResult) -> ExecCredential:
        """Classify the plugin's output and decode its credential."""
        command = exec_config.command
        output = result.stdout.strip()

        if output == f"{command} not found" or result.returncode == COMMAND_NOT_FOUND_STATUS:
            raise ExecutableNotFoundError(command)
        diagnostics = result.stderr.strip()
        if diagnostics:
            raise ExecFailedError(command, diagnostics)
        if not output:
            raise NoOutputError(command)

        # A decode error is rarely useful; what the plugin printed usually is.
        try:
            credential = ExecCredential.model_validate_json(output)
        except ValidationError:
            raise ExecFailedError(command, output) from None

        status = credential.status
        if status is None or not (
            status.token or (status.client_certificate_data and status.client_key_data)
        ):
            raise ExecFailedError(command, output)

        return credential
