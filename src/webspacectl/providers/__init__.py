"""Provider interfaces for webspacectl."""
from __future__ import annotations

from .hosting_api import (
    AmbiguousResourceError,
    ApiError,
    HostingApiClient,
    HostingApiError,
    UnexpectedResponseError,
)
from .shell import ShellCommandError, ShellRunner

__all__ = [
    "AmbiguousResourceError",
    "ApiError",
    "HostingApiClient",
    "HostingApiError",
    "ShellCommandError",
    "ShellRunner",
    "UnexpectedResponseError",
]
