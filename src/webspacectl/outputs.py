"""GitHub Actions workflow command and output file helpers."""
from __future__ import annotations

import json
import os
import sys
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO


def _stringify(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _file_command(name: str, value: str) -> str:
    if "\n" not in value and "\r" not in value:
        return f"{name}={value}\n"
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"


@dataclass
class ActionOutputs:
    """Write step outputs, environment exports and annotations.

    ``output_file``/``env_file`` point at ``$GITHUB_OUTPUT``/``$GITHUB_ENV``;
    without them everything is printed to *stream* so local runs stay useful.
    """

    output_file: Path | None = None
    env_file: Path | None = None
    stream: TextIO = field(default_factory=lambda: sys.stdout)

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, *, stream: TextIO | None = None
    ) -> ActionOutputs:
        resolved = os.environ if env is None else env
        output_file = resolved.get("GITHUB_OUTPUT")
        env_file = resolved.get("GITHUB_ENV")
        return cls(
            output_file=Path(output_file) if output_file else None,
            env_file=Path(env_file) if env_file else None,
            stream=stream if stream is not None else sys.stdout,
        )

    def set_output(self, name: str, value: object) -> None:
        text = _stringify(value)
        if self.output_file is None:
            self.stream.write(f"{name}={text}\n")
            return
        with self.output_file.open("a", encoding="utf-8") as handle:
            handle.write(_file_command(name, text))

    def set_outputs(self, outputs: Mapping[str, object]) -> None:
        for name, value in outputs.items():
            self.set_output(name, value)

    def export_variable(self, name: str, value: object) -> None:
        text = _stringify(value)
        if self.env_file is None:
            self.stream.write(f"export {name}={text}\n")
            return
        with self.env_file.open("a", encoding="utf-8") as handle:
            handle.write(_file_command(name, text))

    def mask(self, value: str) -> None:
        """Ask the runner to redact *value* from all later log output."""
        if value:
            self.stream.write(f"::add-mask::{_escape_data(value)}\n")

    def error(self, message: str) -> None:
        self.stream.write(f"::error::{_escape_data(message)}\n")

    def warning(self, message: str) -> None:
        self.stream.write(f"::warning::{_escape_data(message)}\n")


__all__ = ["ActionOutputs"]
