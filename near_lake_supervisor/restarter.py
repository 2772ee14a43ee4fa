from __future__ import annotations

import subprocess
from typing import Callable, List, Optional

RESTART_TIMEOUT = 30

RESTART_COMMANDS = {
    "docker": ["docker", "restart"],
    "systemd": ["systemctl", "restart"],
}


class RestartError(Exception):
    """
    A restart that was not carried out. kind is "config" when nothing was executed
    (no container set, unknown installation type) and "command" when the command failed.
    """

    def __init__(self, message: str, kind: str = "command", returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.kind = kind
        self.returncode = returncode
        self.output = output


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class ContainerRestarter:
    def __init__(
        self,
        installation_type: str = "docker",
        timeout: float = RESTART_TIMEOUT,
        dry_run: bool = False,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.installation_type = installation_type
        self.timeout = timeout
        self.dry_run = dry_run
        self.log = log

    def _log(self, message: str) -> None:
        if self.log:
            self.log(message)

    def build_command(self, container_name: str) -> List[str]:
        if not container_name:
            raise RestartError("container name not specified", kind="config")
        base = RESTART_COMMANDS.get(self.installation_type)
        if base is None:
            raise RestartError(f"unknown installation type: {self.installation_type}", kind="config")
        return base + [container_name]

    def restart(self, container_name: str) -> str:
        """
        Restarts the container (or systemd unit) and returns the combined stdout/stderr.
        Raises RestartError on a configuration problem, a non-zero exit or a timeout.
        """
        command = self.build_command(container_name)
        command_text = " ".join(command)

        if self.dry_run:
            self._log(f"[DRY RUN] Would execute restart command: {command_text}")
            return ""

        self._log(f"Restarting container: {container_name}")
        try:
            r = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = _decode(e.output)
            raise RestartError(
                f"{command_text} timed out after {self.timeout}s, output: {output.strip()}",
                output=output,
            ) from e
        except OSError as e:
            raise RestartError(f"{command_text} could not be started: {e}") from e

        output = r.stdout or ""
        if r.returncode != 0:
            raise RestartError(
                f"{command_text} failed with exit status {r.returncode}, output: {output.strip()}",
                returncode=r.returncode,
                output=output,
            )
        self._log(f"{self.installation_type} restart output: {output.strip()}")
        return output
