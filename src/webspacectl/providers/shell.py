"""Subprocess wrapper for the external tools used by ``sync``."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class ShellCommandError(RuntimeError):
    """Raised when an external command fails."""


@dataclass(slots=True)
class ShellRunner:
    """Run argument-list commands, optionally redirecting stdin/stdout to files."""

    dry_run: bool = False

    def run(
        self,
        args: Sequence[str],
        *,
        stdin: Path | None = None,
        stdout: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process.

        ``env`` entries are layered on top of the current environment.
        """
        LOGGER.info("Running %s", " ".join(args))
        if self.dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")

        merged_env = {**os.environ, **env} if env else None
        stdin_handle = stdin.open("r", encoding="utf-8") if stdin is not None else None
        stdout_handle = stdout.open("w", encoding="utf-8") if stdout is not None else None
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                stdin=stdin_handle,
                stdout=stdout_handle if stdout_handle is not None else subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ShellCommandError(f"{args[0]} not found: {exc}") from exc
        finally:
            if stdin_handle is not None:
                stdin_handle.close()
            if stdout_handle is not None:
                stdout_handle.close()

        if check and result.returncode != 0:
            stdout_text = getattr(result, "stdout", "") or ""
            stderr_text = getattr(result, "stderr", "") or ""
            message = stderr_text.strip() or stdout_text.strip() or "no output"
            raise ShellCommandError(f"{args[0]} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ShellCommandError", "ShellRunner"]
