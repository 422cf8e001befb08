"""Process exit codes reported by ``webspacectl`` commands."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit status of a command, grouped by who has to act on the failure.

    ``VALIDATION`` points at the manifest or settings, ``ENVIRONMENT`` at the
    workflow (missing inputs, token, manifest file or shell tools) and
    ``PROVIDER`` at hosting.de (error answers, provisioning timeouts).
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4


__all__ = ["ExitCode"]
