"""CLI entry point: depsentinel.

Subcommands:
    depsentinel run config.json [--dry-run] [--interval 3600] [--json]  (SIGHUP: run now)
    depsentinel scan /path/to/checkout [--json]
    depsentinel validate-config config.json
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from dataclasses import asdict
from pathlib import Path

import click
import structlog

from depsentinel.core.config import Config, load_config
from depsentinel.core.database import create_engine, create_session_factory, init_db
from depsentinel.core.logging import setup_logging
from depsentinel.dao.dependency_cache_key_dao import DependencyCacheKeyDAO
from depsentinel.dao.repository_state_dao import RepositoryStateDAO
from depsentinel.engines.manifest_scanner import scan as scan_repo
from depsentinel.engines.proposal_publisher import GitHubHost
from depsentinel.engines.registry_resolver import (
    HostRuleSet,
    RegistryHttpClient,
    default_clients,
)
from depsentinel.errors import InvalidConfig
from depsentinel.orchestrator import Orchestrator, RunSummary
from depsentinel.progress import STATUS_ICONS
from depsentinel.scheduler import create_scheduler
from depsentinel.services.run_state_service import RunStateService

log = structlog.get_logger("depsentinel.cli")

# Exit code for unusable configuration (before any repository runs).
_EXIT_BAD_CONFIG = 2


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """depsentinel: automated dependency update proposals."""
    setup_logging("DEBUG" if verbose else None)


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Log what would be published without writing")
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Keep running, re-running every SECONDS (default: run once)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the run summary as JSON")
@click.option(
    "-r",
    "--repository",
    "repositories",
    multiple=True,
    help="Only run these repositories (owner/name); repeatable",
)
def run(
    config_path: str,
    dry_run: bool,
    interval: float | None,
    as_json: bool,
    repositories: tuple[str, ...],
) -> None:
    """Run the update pipeline for every configured repository."""
    config = _load_or_exit(config_path)
    if dry_run:
        config = config.model_copy(update={"dry_run": True})

    targets = list(repositories) or config.repositories
    if not targets:
        click.echo(
            "Error: no repositories configured (set 'repositories' or DEPSENTINEL_REPOSITORY)",
            err=True,
        )
        sys.exit(_EXIT_BAD_CONFIG)

    if interval is not None:
        if interval <= 0:
            click.echo("Error: --interval must be positive", err=True)
            sys.exit(_EXIT_BAD_CONFIG)
        try:
            asyncio.run(_serve(config, targets, interval, as_json))
        except KeyboardInterrupt:
            click.echo("Interrupted.", err=True)
        return

    summary = asyncio.run(_run_once(config, targets))
    _echo_summary(summary, as_json)
    sys.exit(summary.exit_code)


@main.command("scan")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print dependencies as JSON")
@click.option("--manager", "managers", multiple=True, help="Limit to these managers; repeatable")
def scan(path: str, as_json: bool, managers: tuple[str, ...]) -> None:
    """Scan a local checkout and list the dependencies found."""
    report = scan_repo(Path(path), list(managers) or None)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "dependencies": [asdict(d) for d in report.dependencies],
                    "failures": [asdict(f) for f in report.failures],
                },
                indent=2,
            )
        )
    else:
        for dep in report.dependencies:
            version = dep.current_version or "-"
            skip = f"  (skipped: {dep.skip_reason})" if dep.skip_reason else ""
            click.echo(
                f"  {dep.manifest_path}:{dep.line}  {dep.manager:16s} "
                f"{dep.name} {version}{skip}"
            )
        for failure in report.failures:
            click.echo(f"  [!] {failure.manifest_path}: {failure.reason}", err=True)
        click.echo(
            f"\n{len(report.dependencies)} dependencies in {len(report.contents)} manifests, "
            f"{len(report.failures)} unparsable"
        )
    if report.failures:
        sys.exit(1)


@main.command("validate-config")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def validate_config(config_path: str) -> None:
    """Load and validate a configuration file."""
    config = _load_or_exit(config_path)
    overlaps = HostRuleSet(list(config.host_rules)).overlaps()
    for a, b in overlaps:
        click.echo(f"Warning: hostRules {a!r} and {b!r} can match the same host", err=True)
    click.echo(
        f"OK: {len(config.repositories)} repositories, {len(config.host_rules)} host rules, "
        f"{len(config.package_rules)} package rules"
    )
    if overlaps:
        sys.exit(1)


# ── helpers ───────────────────────────────────────────────────────────────


def _load_or_exit(config_path: str) -> Config:
    try:
        return load_config(Path(config_path))
    except InvalidConfig as exc:
        click.echo(f"Error: invalid configuration in {config_path}: {exc}", err=True)
        sys.exit(_EXIT_BAD_CONFIG)


async def _build_and_run(
    config: Config, targets: list[str], interval: float | None, as_json: bool
) -> RunSummary | None:
    engine = create_engine()
    await init_db(engine)
    session_factory = create_session_factory(engine)
    state_service = RunStateService(RepositoryStateDAO(), DependencyCacheKeyDAO())
    http = RegistryHttpClient()
    host = GitHubHost(token=config.token, endpoint=config.endpoint)
    orchestrator = Orchestrator(
        config.model_copy(update={"repositories": targets}),
        session_factory,
        state_service,
        host,
        default_clients(http),
    )
    try:
        if interval is None:
            return await orchestrator.run_all()
        scheduler = create_scheduler(
            orchestrator, interval, on_summary=lambda s: _echo_summary(s, as_json)
        )
        await scheduler.start()
        loop = asyncio.get_running_loop()
        if hasattr(signal, "SIGHUP"):
            # SIGHUP starts the next run immediately.
            loop.add_signal_handler(signal.SIGHUP, scheduler.trigger_all)
        try:
            await asyncio.Event().wait()
        finally:
            if hasattr(signal, "SIGHUP"):
                loop.remove_signal_handler(signal.SIGHUP)
            await scheduler.stop()
        return None
    finally:
        await http.close()
        await host.close()
        await engine.dispose()


async def _run_once(config: Config, targets: list[str]) -> RunSummary:
    summary = await _build_and_run(config, targets, None, False)
    if summary is None:
        raise RuntimeError("single run finished without a summary")
    return summary


async def _serve(config: Config, targets: list[str], interval: float, as_json: bool) -> None:
    log.info("cli.serve", interval=interval, repositories=len(targets))
    await _build_and_run(config, targets, interval, as_json)


def _echo_summary(summary: RunSummary, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, default=str))
        return

    for result in summary.results:
        click.echo(f"\n{result.repository}: {result.status} ({result.onboarding_status})")
        for p in result.phases:
            icon = STATUS_ICONS.get(p["status"], "?")
            duration = f" ({p['duration']}s)" if p["duration"] else ""
            detail = f" - {p['detail']}" if p["detail"] else ""
            click.echo(f"  [{icon}] {p['phase']}{duration}{detail}")
        for published in result.proposals:
            ref = f" #{published.proposal.number}" if published.proposal else ""
            click.echo(f"  {published.action:9s} {published.branch}{ref}")
        for unit in result.skipped:
            click.echo(f"  skipped {unit.scope}: {unit.subject} - {unit.reason} [{unit.kind}]")
    click.echo(f"\nexit code: {summary.exit_code}")


if __name__ == "__main__":
    main()
