"""
Shell provisioner — carry out operations by running configured commands.

Each operation maps to a command template from the settings file::

    provisioner:
      type: shell
      commands:
        PROVISION: kubectl create namespace {environment}
        CREATE: helm upgrade --install {component} ./charts/{component} -n {environment} --set image.tag={version}
        UPDATE: helm upgrade {component} ./charts/{component} -n {environment} --set image.tag={version}
        DESTROY: helm uninstall {component} -n {environment}
        RELEASE: kubectl delete namespace {environment}

Template fields are shell-quoted before substitution. The same values
are exported as ``ENVORCH_*`` variables, together with the credential
from ``ENVORCH_TOKEN``. An operation with no template is skipped.
"""

from __future__ import annotations

import logging
import math
import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path

from envorch.adapters.base import ExecutionContext, Provisioner
from envorch.core.models.action import Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


class ShellProvisioner(Provisioner):
    """Run one shell command per operation and capture its output.

    Args:
        commands: Operation name (``CREATE``, ``PROVISION``...) → template.
        cwd: Working directory for the commands.
        timeout: Per-command ceiling in seconds; the caller's deadline
            shortens it further.
    """

    def __init__(
        self,
        commands: dict[str, str] | None = None,
        cwd: Path | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self._commands = {k.upper(): v for k, v in (commands or {}).items()}
        self._cwd = cwd
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if self._cwd is not None and not self._cwd.is_dir():
            return False, f"Working directory does not exist: {self._cwd}"
        template = self._commands.get(context.operation)
        if template:
            try:
                self.render(template, context)
            except (KeyError, IndexError, ValueError) as e:
                return False, f"Bad command template for {context.operation}: {e}"
        return True, ""

    @staticmethod
    def _fields(context: ExecutionContext) -> dict[str, str]:
        action = context.action
        return {
            "operation": context.operation,
            "environment": context.environment,
            "cluster": context.cluster,
            "account": context.account,
            "component": action.component if action else "",
            "version": action.version if action else "",
            "previous_version": (action.previous_version or "") if action else "",
            "source": action.source if action else "",
        }

    def render(self, template: str, context: ExecutionContext) -> str:
        quoted = {k: shlex.quote(v) if v else "''" for k, v in self._fields(context).items()}
        return template.format(**quoted)

    def _env(self, context: ExecutionContext) -> dict[str, str]:
        env = dict(os.environ)
        for key, value in self._fields(context).items():
            env[f"ENVORCH_{key.upper()}"] = value
        env.update(context.credentials)
        return env

    def execute(self, context: ExecutionContext) -> Receipt:
        template = self._commands.get(context.operation)
        if not template:
            return Receipt.skip(
                provisioner=self.name,
                action_id=context.action_id,
                reason=f"No command configured for {context.operation}",
            )

        command = self.render(template, context)
        timeout = self._timeout
        remaining = context.remaining_seconds
        if remaining is not None:
            timeout = max(1, min(timeout, math.ceil(remaining)))

        logger.debug("Executing: %s (cwd=%s, timeout=%ss)", command, self._cwd, timeout)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self._cwd,
                env=self._env(context),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                provisioner=self.name,
                action_id=context.action_id,
                error=f"Command timed out after {timeout}s",
                metadata={"command": command, "timeout": timeout},
            )
        except Exception as e:
            return Receipt.failure(
                provisioner=self.name,
                action_id=context.action_id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout.strip()
        stderr = result.stderr.strip()

        if result.returncode == 0:
            return Receipt.success(
                provisioner=self.name,
                action_id=context.action_id,
                output=output,
                duration_ms=elapsed_ms,
                metadata={"command": command, "return_code": 0, "stderr": stderr},
            )
        return Receipt.failure(
            provisioner=self.name,
            action_id=context.action_id,
            error=stderr or f"Command exited with code {result.returncode}",
            duration_ms=elapsed_ms,
            metadata={"command": command, "return_code": result.returncode, "stdout": output},
        )
