"""Typer-powered command line for ``webspacectl``.

The commands mirror the steps of a deployment workflow:

* ``setup``  converges the webspace, vhosts and databases of one application
  for the current ref and publishes the step outputs the deploy step needs.
* ``prune``  removes resources of branches that no longer exist.
* ``sync``   copies databases and synced directories between environments.

Inputs may be passed as options or through the environment so the tool can
run unchanged as a GitHub Action step.
"""
from __future__ import annotations

import logging
import os
import textwrap
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import CONFIG_ENV_VAR, ConfigError, Settings, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .manifest import Manifest, ValidationError, load_manifest
from .outputs import ActionOutputs
from .providers import HostingApiClient, HostingApiError, ShellCommandError, ShellRunner
from .reconcile import ProvisioningError, Reconciler, SetupRequest, SetupResult
from .reconcile.naming import derive_project_prefix
from .sync import SyncService

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    envvar=CONFIG_ENV_VAR,
    help="Override the path to webspacectl's YAML settings file.",
)
MANIFEST_FILE_OPTION = typer.Option(
    None,
    "--manifest-file",
    dir_okay=False,
    help="Override the path to the .hosting/config.yaml manifest.",
)
AUTH_TOKEN_OPTION = typer.Option(
    "",
    "--auth-token",
    envvar=["HOSTING_AUTH_TOKEN", "INPUT_AUTH-TOKEN"],
    show_envvar=False,
    help="hosting.de API token.",
)
PROJECT_PREFIX_OPTION = typer.Option(
    "",
    "--project-prefix",
    "--webspace-prefix",
    envvar=["INPUT_PROJECT-PREFIX", "INPUT_WEBSPACE-PREFIX"],
    help="Prefix of every resource name. Derived from the repository when empty.",
)
KEEP_BRANCHES_OPTION = typer.Option(
    "",
    "--keep-branches",
    envvar=["REPO_BRANCHES", "INPUT_KEEP-BRANCHES"],
    help="Whitespace separated list of branches whose resources are kept.",
)

RECONCILE_ERRORS = (
    ConfigError,
    ValidationError,
    HostingApiError,
    ProvisioningError,
    ShellCommandError,
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Reconcile hosting.de webspaces, vhosts and databases with the
        .hosting/config.yaml manifest of a repository.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    settings: Settings
    logger: StructuredLogger
    outputs: ActionOutputs
    shell: ShellRunner
    env: Mapping[str, str]
    sleep: Callable[[float], None] = time.sleep


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(RichHandler(console=console, show_path=False))
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    manifest_file: Path | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if manifest_file is not None:
        overrides["manifest_file"] = str(manifest_file)
    try:
        settings = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        settings=settings,
        logger=StructuredLogger(settings.logs_dir),
        outputs=ActionOutputs.from_env(),
        shell=ShellRunner(),
        env=dict(os.environ),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the webspacectl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    manifest_file: Path | None = MANIFEST_FILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _configure_logging(verbose)
    if version:
        runtime = _ensure_runtime(ctx, config_file, manifest_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"webspacectl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, manifest_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    outputs: ActionOutputs | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    if outputs is not None:
        outputs.error(message)
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, (ConfigError, ValidationError)):
        return ExitCode.VALIDATION
    if isinstance(exc, ShellCommandError):
        return ExitCode.ENVIRONMENT
    return ExitCode.PROVIDER


def _fail(op: OperationScope, runtime: RuntimeContext, exc: Exception) -> NoReturn:
    _command_error(op, str(exc), rc=_exit_code_for(exc), outputs=runtime.outputs)


def _build_client(settings: Settings, auth_token: str) -> HostingApiClient:
    return HostingApiClient(settings.api.base_uri, auth_token, timeout=settings.api.timeout)


def _require_token(op: OperationScope, runtime: RuntimeContext, auth_token: str) -> str:
    token = auth_token.strip()
    if not token:
        _command_error(
            op,
            "Missing hosting.de API token (--auth-token or HOSTING_AUTH_TOKEN).",
            rc=ExitCode.ENVIRONMENT,
            outputs=runtime.outputs,
        )
    return token


def _load_manifest(op: OperationScope, runtime: RuntimeContext) -> Manifest:
    path = runtime.settings.manifest_file
    if not path.exists():
        _command_error(
            op,
            f"Manifest file {path} does not exist.",
            rc=ExitCode.ENVIRONMENT,
            outputs=runtime.outputs,
        )
    try:
        manifest = load_manifest(path, env=runtime.env)
    except (ConfigError, ValidationError) as exc:
        _fail(op, runtime, exc)
    op.add_step("manifest.load", detail=str(path))
    return manifest


def _resolve_prefix(op: OperationScope, runtime: RuntimeContext, project_prefix: str) -> str:
    prefix = project_prefix.strip()
    if prefix:
        return prefix
    repository = runtime.env.get("GITHUB_REPOSITORY", "")
    if not repository:
        _command_error(
            op,
            "No project prefix given and GITHUB_REPOSITORY is unset; cannot derive one.",
            rc=ExitCode.ENVIRONMENT,
            outputs=runtime.outputs,
        )
    prefix = derive_project_prefix(repository, runtime.env.get("GITHUB_WORKFLOW", ""))
    op.add_step("prefix.derive", detail=prefix)
    return prefix


def _render_setup(result: SetupResult) -> None:
    table = Table(title="Setup summary", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in result.to_outputs().items():
        if key == "env-vars":
            value = ", ".join(sorted(result.env_vars)) or "-"
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def setup(
    ctx: typer.Context,
    app_key: str = typer.Option(
        ..., "--app", envvar="INPUT_APP", help="Application key under 'applications'."
    ),
    auth_token: str = AUTH_TOKEN_OPTION,
    project_prefix: str = PROJECT_PREFIX_OPTION,
    ssh_public_key: str = typer.Option(
        "",
        "--ssh-public-key",
        envvar="INPUT_SSH-PUBLIC-KEY",
        help="Public key of the deploy user; required when the service user is missing.",
    ),
    default_domain_name: str = typer.Option(
        "",
        "--default-domain-name",
        envvar=["DOMAIN_NAME", "INPUT_DEFAULT-DOMAIN-NAME"],
        help="Domain used for '{default}' in the parent environment.",
    ),
    access_role_ssh: str = typer.Option(
        "",
        "--access-role-ssh",
        envvar="INPUT_ACCESS-ROLE-SSH",
        help="Only grant SSH access to manifest users with this role.",
    ),
    keep_branches: str = KEEP_BRANCHES_OPTION,
    ref: str = typer.Option(
        "na", "--ref", envvar="GITHUB_REF_NAME", help="Environment ref (branch name)."
    ),
) -> None:
    """Converge the hosting resources of one application for the current ref."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "setup",
        args={"app": app_key, "ref": ref, "access_role": access_role_ssh or None},
        target={"kind": "application", "scope": app_key},
    ) as op:
        token = _require_token(op, runtime, auth_token)
        manifest = _load_manifest(op, runtime)
        prefix = _resolve_prefix(op, runtime, project_prefix)
        request = SetupRequest(
            manifest=manifest,
            app_key=app_key,
            ref=ref,
            prefix=prefix,
            ssh_public_key=ssh_public_key,
            default_domain=default_domain_name or None,
            access_role=access_role_ssh or None,
            keep_branches=tuple(keep_branches.split()),
        )
        try:
            with _build_client(runtime.settings, token) as client:
                result = Reconciler(client, runtime.settings, sleep=runtime.sleep).setup(request)
        except RECONCILE_ERRORS as exc:
            _fail(op, runtime, exc)

        for secret in result.secrets:
            runtime.outputs.mask(secret)
        for key, value in result.exported_env.items():
            runtime.outputs.export_variable(key, value)
        runtime.outputs.set_outputs(result.to_outputs())

        for change in result.changes:
            op.add_step(change)
        _render_setup(result)
        context = {
            "webspace": result.webspace.name,
            "new_databases": list(result.new_databases),
            "prune": result.prune.to_dict() if result.prune is not None else None,
        }
        if result.warnings:
            for warning in result.warnings:
                runtime.outputs.warning(warning)
            op.warning(
                "Setup completed with warnings.",
                warnings=list(result.warnings),
                changed=len(result.changes),
                context=context,
            )
        else:
            op.success("Setup completed.", changed=len(result.changes), context=context)
        console.print(
            f"[green]Webspace {result.webspace.name} is ready "
            f"({len(result.changes)} change(s)).[/green]"
        )


@app.command()
def prune(
    ctx: typer.Context,
    auth_token: str = AUTH_TOKEN_OPTION,
    project_prefix: str = PROJECT_PREFIX_OPTION,
    keep_branches: str = KEEP_BRANCHES_OPTION,
    ref: str = typer.Option(
        "", "--ref", envvar="GITHUB_REF_NAME", help="Ref that is always kept."
    ),
) -> None:
    """Delete webspaces, databases and users of branches that no longer exist."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "prune",
        args={"keep_branches": keep_branches.split(), "ref": ref or None},
        target={"kind": "project", "scope": "branches"},
    ) as op:
        token = _require_token(op, runtime, auth_token)
        manifest = _load_manifest(op, runtime)
        prefix = _resolve_prefix(op, runtime, project_prefix)
        try:
            with _build_client(runtime.settings, token) as client:
                result = Reconciler(client, runtime.settings, sleep=runtime.sleep).prune(
                    manifest,
                    prefix=prefix,
                    branches=keep_branches.split(),
                    current_ref=ref or None,
                )
        except RECONCILE_ERRORS as exc:
            _fail(op, runtime, exc)

        if result.skipped:
            for warning in result.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
                runtime.outputs.warning(warning)
            op.warning(
                "Branch pruning skipped.", warnings=list(result.warnings), context=result.to_dict()
            )
            return
        for name in result.deleted_webspaces:
            console.print(f"Deleted webspace {name}")
        op.success("Branch pruning completed.", changed=result.changed, context=result.to_dict())


@app.command()
def sync(
    ctx: typer.Context,
    to_env: str = typer.Option(
        "", "--to", envvar="INPUT_TO", help="Environment whose data is overwritten."
    ),
    from_env: str = typer.Option(
        "", "--from", envvar="INPUT_FROM", help="Source environment (defaults to project.parent)."
    ),
    app_key: str = typer.Option(
        "", "--app", envvar="INPUT_APP", help="Limit the sync to one application."
    ),
    auth_token: str = AUTH_TOKEN_OPTION,
    project_prefix: str = PROJECT_PREFIX_OPTION,
    files: bool = typer.Option(
        False, "--files/--no-files", envvar="INPUT_FILES", help="Sync file mounts."
    ),
    databases: bool = typer.Option(
        False, "--databases/--no-databases", envvar="INPUT_DATABASES", help="Sync databases."
    ),
    limit_database: str = typer.Option(
        "",
        "--limit-database",
        "--only-databases",
        envvar=["INPUT_LIMIT-DATABASE", "INPUT_ONLY-DATABASES"],
        help="Whitespace separated schema (or endpoint, with --app) names to sync.",
    ),
) -> None:
    """Copy databases and synced directories from one environment to another."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "sync",
        args={
            "from": from_env or None,
            "to": to_env,
            "app": app_key or None,
            "files": files,
            "databases": databases,
            "limit_database": limit_database.split(),
        },
        target={"kind": "environment", "scope": to_env or "-"},
    ) as op:
        token = _require_token(op, runtime, auth_token)
        manifest = _load_manifest(op, runtime)
        prefix = _resolve_prefix(op, runtime, project_prefix)
        source = from_env or manifest.project.parent
        if not source or not to_env:
            _command_error(
                op,
                "Sync environments were not specified and cannot be derived. "
                'Check "project.parent" in the manifest or pass --from/--to.',
                rc=ExitCode.ENVIRONMENT,
                outputs=runtime.outputs,
            )
        if source == to_env:
            console.print(f"Source and target are both '{to_env}'; nothing to sync.")
            op.success("Nothing to sync.", changed=0)
            return

        reports: dict[str, object] = {}
        changed = 0
        try:
            with _build_client(runtime.settings, token) as client:
                service = SyncService(
                    client,
                    runtime.shell,
                    runtime.settings,
                    on_secret=runtime.outputs.mask,
                    sleep=runtime.sleep,
                )
                if files:
                    console.print(f"Syncing file mounts from '{source}' to '{to_env}'")
                    report = service.sync_files(
                        manifest,
                        prefix=prefix,
                        from_env=source,
                        to_env=to_env,
                        app_key=app_key or None,
                    )
                    reports["files"] = report.to_dict()
                    changed += len(report.copied)
                    op.add_step("sync.files", detail=report.to_dict())
                if databases:
                    console.print(f"Syncing databases from '{source}' to '{to_env}'")
                    report = service.sync_databases(
                        manifest,
                        prefix=prefix,
                        from_env=source,
                        to_env=to_env,
                        app_key=app_key or None,
                        only=tuple(limit_database.split()),
                    )
                    reports["databases"] = report.to_dict()
                    changed += len(report.copied)
                    op.add_step("sync.databases", detail=report.to_dict())
        except RECONCILE_ERRORS as exc:
            _fail(op, runtime, exc)

        op.success("Sync completed.", changed=changed, context=reports)
        console.print(f"[green]Synced {changed} item(s) from '{source}' to '{to_env}'.[/green]")


def main() -> None:
    """Console script entry point."""
    app()
