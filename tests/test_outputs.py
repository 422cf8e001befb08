"""GitHub Actions output helper tests."""
from __future__ import annotations

import io
from pathlib import Path

from webspacectl.outputs import ActionOutputs


def test_outputs_written_to_output_file(tmp_path: Path) -> None:
    output_file = tmp_path / "output"
    outputs = ActionOutputs.from_env({"GITHUB_OUTPUT": str(output_file)}, stream=io.StringIO())

    outputs.set_outputs(
        {"ssh-user": "u0001", "ssh-port": 2244, "sync-files": True, "env-vars": {"A": "1"}}
    )

    assert output_file.read_text(encoding="utf-8") == (
        "ssh-user=u0001\n"
        "ssh-port=2244\n"
        "sync-files=true\n"
        'env-vars={"A": "1"}\n'
    )


def test_multiline_values_use_a_delimiter(tmp_path: Path) -> None:
    env_file = tmp_path / "env"
    outputs = ActionOutputs(env_file=env_file, stream=io.StringIO())

    outputs.export_variable("CERT", "line one\nline two")

    lines = env_file.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("CERT<<ghadelimiter_")
    assert lines[1:3] == ["line one", "line two"]
    assert lines[3] == lines[0].split("<<", 1)[1]


def test_without_files_everything_is_printed() -> None:
    stream = io.StringIO()
    outputs = ActionOutputs.from_env({}, stream=stream)

    outputs.set_output("public-url", "https://example.com")
    outputs.export_variable("APP_ENV", "prod")

    assert stream.getvalue() == "public-url=https://example.com\nexport APP_ENV=prod\n"


def test_annotations_are_escaped() -> None:
    stream = io.StringIO()
    outputs = ActionOutputs(stream=stream)

    outputs.mask("p%ss\nword")
    outputs.mask("")
    outputs.error("failed\nbadly")
    outputs.warning("careful")

    assert stream.getvalue().splitlines() == [
        "::add-mask::p%25ss%0Aword",
        "::error::failed%0Abadly",
        "::warning::careful",
    ]
