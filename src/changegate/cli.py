"""changegate CLI - review pending changes before they leave the machine."""

import logging
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from changegate import __version__
from changegate.errors import ChangeGateError
from changegate.gate.report import render_report, write_report
from changegate.gate.runner import GateReport, open_cache_store, run_gate
from changegate.git.classifier import resolve_repo_root
from changegate.git.exec import ExecError
from changegate.git.hooks import (
    DEFAULT_REMOTE,
    VALID_METHODS,
    install_pre_push_hook,
    parse_push_refs,
    push_ranges,
    resolve_push_base,
)
from changegate.notify import Notifier, Reminder, process_throttle
from changegate.policy.config import ensure_default_config, load_config
from changegate.types import Outcome

DEFAULT_OUT_RELATIVE_PATH = Path(".changegate/out")
OVERRIDE_ENV_VAR = "CHANGEGATE_OVERRIDE"
SUPPORTED_HOOKS = ("pre-push",)

_OUTCOME_RANK = {Outcome.ALLOW: 0, Outcome.WARN: 1, Outcome.BLOCK: 2}

console = Console()

cli = typer.Typer(
    name="changegate",
    help="Change gate: decide whether pending changes may be pushed",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Inspect and clear the findings cache", no_args_is_help=True)
config_app = typer.Typer(help="Manage the configuration document", no_args_is_help=True)
hooks_app = typer.Typer(help="Install git hooks", no_args_is_help=True)
cli.add_typer(cache_app, name="cache")
cli.add_typer(config_app, name="config")
cli.add_typer(hooks_app, name="hooks")


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@cli.callback()
def _cli_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show changegate version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    _ = version
    _configure_logging(verbose)


def _override_requested(flag: bool) -> bool:
    if flag:
        return True
    return os.environ.get(OVERRIDE_ENV_VAR, "").strip().lower() in {"1", "true", "yes"}


def _print_reminder(reminder: Reminder) -> None:
    console.print(f"[cyan]Reminder ({reminder.topic}): {escape(reminder.message)}[/cyan]")


def _read_hook_input() -> str:
    """Ref lines git feeds the pre-push hook; empty when run by hand."""
    stream = sys.stdin
    if stream is None or stream.isatty():
        return ""
    return stream.read()


def _push_targets(root: Path, remote: str) -> list[tuple[str | None, str | None]]:
    refs = parse_push_refs(_read_hook_input())
    if refs:
        return [(item.base, item.head) for item in push_ranges(root, refs, remote=remote)]
    return [(resolve_push_base(root, remote=remote), None)]


def _relative_to_root(path: Path, root: Path) -> tuple[str, ...]:
    try:
        return (path.resolve().relative_to(root).as_posix(),)
    except ValueError:
        return ()


@cli.command()
def check(
    base: str | None = typer.Option(
        None,
        "--base",
        help="Baseline revision (default: HEAD; what the push sends when run from the pre-push hook)",
    ),
    head: str | None = typer.Option(
        None,
        "--head",
        help="Review the committed range BASE..HEAD instead of the working tree",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Configuration file (default: .github/codereview-config.yml)",
    ),
    out: Path | None = typer.Option(
        None,
        "--out",
        help="Directory for GATE_REPORT.json / GATE_REPORT.md (default: .changegate/out)",
    ),
    override: bool = typer.Option(
        False,
        "--override",
        help=f"Exit 0 despite BLOCK when the configuration allows it (or set {OVERRIDE_ENV_VAR}=1)",
    ),
    hook: str | None = typer.Option(
        None,
        "--hook",
        help="Name of the git hook invoking this check",
    ),
    remote: str = typer.Option(
        DEFAULT_REMOTE,
        "--remote",
        help="Remote being pushed to; commits it already has are not reviewed",
    ),
    repo_root: Path = typer.Option(
        Path("."),
        "--repo-root",
        help="Any directory inside the repository",
    ),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode for reports: deterministic or wallclock",
    ),
) -> None:
    """
    Classify pending changes, run the required analyses and decide.

    From the pre-push hook the commits being pushed are reviewed, read from
    the ref lines git passes on stdin.

    Exit codes: 0 ALLOW/WARN, 2 BLOCK, 1 fatal error.
    """
    try:
        root = resolve_repo_root(repo_root)
        cfg = load_config(root, config)

        targets: list[tuple[str | None, str | None]] = [(base, head)]
        if hook is not None:
            if hook not in SUPPORTED_HOOKS:
                console.print(f"[red]Error: unsupported hook: {hook}[/red]")
                raise typer.Exit(1)
            if not cfg.hooks.pre_push_enabled:
                console.print("[dim]Pre-push review disabled in configuration; skipping[/dim]")
                raise typer.Exit(0)
            if base is None and head is None:
                targets = _push_targets(root, remote or DEFAULT_REMOTE)
        if not targets:
            console.print("[dim]Push sends no commits; nothing to review[/dim]")
            raise typer.Exit(0)

        out_dir = (out if out is not None else root / DEFAULT_OUT_RELATIVE_PATH).resolve()
        notifier = Notifier(process_throttle(cfg.notification_interval_seconds), sink=_print_reminder)
        reports: list[GateReport] = [
            run_gate(
                root,
                config=cfg,
                base=target_base,
                head=target_head,
                exclude=_relative_to_root(out_dir, root),
                notifier=notifier,
                timestamp_mode=timestamp_mode,
            )
            for target_base, target_head in targets
        ]
        report = max(reports, key=lambda item: _OUTCOME_RANK[item.outcome])
        _json_path, md_path = write_report(report, out_dir)
    except typer.Exit:
        raise
    except ChangeGateError as exc:
        console.print(f"[red]Error ({exc.reason_code}): {exc}[/red]")
        raise typer.Exit(1) from exc
    except Exception as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc

    for item in reports:
        if item.head is not None:
            console.print(f"[dim]Reviewed {escape(item.base or '')}..{escape(item.head)}[/dim]")
        render_report(item, console)
    console.print(f"[dim]Report: {md_path}[/dim]")

    if report.outcome is not Outcome.BLOCK:
        return
    if _override_requested(override):
        if cfg.hooks.allow_override:
            console.print("[bold yellow]Override accepted: BLOCK recorded, continuing[/bold yellow]")
            return
        console.print("[red]Override is not permitted by configuration[/red]")
    console.print("[dim]To bypass the hook once: git push --no-verify[/dim]")
    raise typer.Exit(2)


@cache_app.command("clear")
def cache_clear(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Any directory inside the repository"),
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
) -> None:
    """Invalidate every cached entry."""
    try:
        root = resolve_repo_root(repo_root)
        cfg = load_config(root, config)
        store = open_cache_store(root, cfg.cache)
        load_errors = len(store.errors)
        removed = store.invalidate_all()
        store.flush()
    except ChangeGateError as exc:
        console.print(f"[red]Error ({exc.reason_code}): {exc}[/red]")
        raise typer.Exit(1) from exc

    for error in store.errors[:load_errors]:
        console.print(f"[yellow]Warning: {error}; replaced with an empty cache[/yellow]")
    if len(store.errors) > load_errors:
        for error in store.errors[load_errors:]:
            console.print(f"[red]Error: {error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Cleared {removed} cache entries[/green]")


@cache_app.command("show")
def cache_show(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Any directory inside the repository"),
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
) -> None:
    """List cached entries."""
    try:
        root = resolve_repo_root(repo_root)
        cfg = load_config(root, config)
        store = open_cache_store(root, cfg.cache)
    except ChangeGateError as exc:
        console.print(f"[red]Error ({exc.reason_code}): {exc}[/red]")
        raise typer.Exit(1) from exc

    if not store.available:
        for error in store.errors:
            console.print(f"[red]Error: {error}[/red]")
        raise typer.Exit(1)

    entries = store.snapshot()
    if not entries:
        console.print("[dim]Cache is empty[/dim]")
        return

    table = Table(title=f"Cache ({len(entries)} entries)")
    table.add_column("Path")
    table.add_column("Fingerprint")
    table.add_column("Analyses")
    table.add_column("Findings", justify="right")
    for path, entry in sorted(entries.items()):
        table.add_row(path, entry.fingerprint[:12], ", ".join(sorted(entry.analyses)), str(len(entry.findings)))
    console.print(table)


@config_app.command("init")
def config_init(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Any directory inside the repository"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file"),
) -> None:
    """Write the default configuration template."""
    try:
        root = resolve_repo_root(repo_root)
        path = ensure_default_config(root, force=force)
    except FileExistsError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(1) from exc
    except ChangeGateError as exc:
        console.print(f"[red]Error ({exc.reason_code}): {exc}[/red]")
        raise typer.Exit(1) from exc

    console.print(f"[green]Wrote {path}[/green]")


@hooks_app.command("install")
def hooks_install(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Any directory inside the repository"),
    method: str = typer.Option(
        "symlink",
        "--method",
        help=f"Install method: {', '.join(VALID_METHODS)}",
    ),
) -> None:
    """Install the pre-push hook."""
    try:
        result = install_pre_push_hook(repo_root, method=method)
    except (ValueError, ExecError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc
    except ChangeGateError as exc:
        console.print(f"[red]Error ({exc.reason_code}): {exc}[/red]")
        raise typer.Exit(1) from exc

    console.print(f"[green]Installed pre-push hook ({result.method}): {result.hook_path}[/green]")
    if result.backup_path is not None:
        console.print(f"[yellow]Existing hook backed up to {result.backup_path}[/yellow]")
    console.print("[dim]Bypass once with: git push --no-verify[/dim]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
