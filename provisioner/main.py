"""
roestbak provisioner — CLI entrypoint.

Usage:
    provisioner --help
    provisioner run
    provisioner run --host robot --phase kernel_module
    provisioner detect
    provisioner config check
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import resolve_level, setup_logging_from_env

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """roestbak provisioner — bring robot hosts to a known configuration."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging_from_env(resolve_level(debug=debug, verbose=verbose, quiet=quiet))


# ── run ─────────────────────────────────────────────────────────


@cli.command()
@click.option("--host", "-H", "hosts", multiple=True, help="Target specific hosts (default: all).")
@click.option("--phase", "-p", "phases", multiple=True, help="Run specific phases (default: all).")
@click.option("--forks", "-f", type=click.IntRange(min=1), default=None, help="Hosts provisioned in parallel.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    hosts: tuple[str, ...],
    phases: tuple[str, ...],
    forks: int | None,
    as_json: bool,
) -> None:
    """Provision hosts.

    Examples:

        provisioner run

        provisioner run --host robot --phase kernel_module

        provisioner run --forks 8 --json
    """
    from provisioner.core.use_cases.provision import run_provision

    result = run_provision(
        config_path=ctx.obj.get("config_path"),
        hosts=list(hosts) or None,
        phases=list(phases) or None,
        forks=forks,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None and result.config is not None

    click.secho(f"\n⚡ Provision — {result.config.name}", fg="cyan", bold=True)
    click.echo(f"   Operation: {report.operation_id}")
    click.echo(f"   Phases: {', '.join(report.phases)}")
    click.echo()

    for host in report.hosts:
        timing = f" ({host.duration_ms}ms)"
        if host.ok:
            label = "changed" if host.changed else "unchanged"
            click.secho(f"   ✓ {host.host}", fg="green", nl=False)
            click.echo(f" — {label}{timing}")
        else:
            click.secho(f"   ✗ {host.host}", fg="red", nl=False)
            click.echo(f" — {host.error_type}{timing}")
            for line in host.error.split("\n")[:10]:
                click.echo(f"     │ {line}")

        if ctx.obj.get("verbose"):
            for phase in host.phases:
                marker = "●" if phase.changed else "○"
                click.echo(f"     {marker} {phase.phase}")
            if host.source_install:
                states = " → ".join(s.value for s in host.source_install.states)
                click.echo(f"     ⚙ {states}")

    click.echo()
    click.secho(
        f"   Result: {report.succeeded}/{len(report.hosts)} hosts succeeded",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    click.echo()

    if not report.all_ok:
        sys.exit(1)


# ── detect ──────────────────────────────────────────────────────


@cli.command()
@click.option("--host", "-H", "hosts", multiple=True, help="Target specific hosts (default: all).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def detect(ctx: click.Context, hosts: tuple[str, ...], as_json: bool) -> None:
    """Check, without changing anything, whether hosts carry the pinned module."""
    from provisioner.core.use_cases.detect import detect_hosts

    result = detect_hosts(config_path=ctx.obj.get("config_path"), hosts=list(hosts) or None)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"\n🔍 Detection: {result.version}", fg="cyan", bold=True)
    click.echo(f"   Expected tree: {result.expected}")
    click.echo()

    for host in result.hosts:
        if host.error:
            click.secho(f"   ✗ {host.host}", fg="red", nl=False)
            click.echo(f" — {host.error}")
        elif host.converged:
            click.secho(f"   ✓ {host.host}", fg="green", nl=False)
            click.echo(" — installed and verified")
        else:
            reason = "tree absent" if host.reason == "absent" else f"tree {host.status}"
            click.secho(f"   ⊘ {host.host}", fg="yellow", nl=False)
            click.echo(f" — {reason}, module {host.registration or 'unknown'}")
            if host.actual and host.status == "mismatch":
                click.echo(f"     │ actual {host.actual}")

    click.echo()


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show config summary and the last known state of every host."""
    from provisioner.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    config = result.config
    state = result.state
    assert config is not None and state is not None

    if not ctx.obj.get("quiet"):
        click.secho(f"\n📋 {config.name}", fg="cyan", bold=True)
        if config.description:
            click.echo(f"   {config.description}")
        click.echo(f"   Module: {config.kernel_module.registration}")
        click.echo()

    targets = [h.name for h in config.target_hosts]
    click.secho(f"   Hosts: {len(targets)}", fg="white", bold=True)
    for name in targets:
        hs = state.hosts.get(name)
        if hs is None or hs.last_status is None:
            click.echo(f"     • {name}  (never provisioned)")
            continue
        color = "green" if hs.last_status == "ok" else "red"
        click.echo(f"     • {name}  ", nl=False)
        click.secho(hs.last_status, fg=color, nl=False)
        click.echo(f"  {hs.module_state or ''}  at {hs.last_run_at}")

    op = state.last_operation
    if op.operation_id:
        click.echo()
        click.secho("   Last operation:", fg="white", bold=True)
        click.echo(f"     {op.operation_id} — ", nl=False)
        click.secho(op.status, fg=_STATUS_COLORS.get(op.status, "white"))
        click.echo(f"     {op.hosts_succeeded}/{op.hosts_total} hosts ok, at {op.ended_at}")

    click.echo()


# ── adapters ────────────────────────────────────────────────────


@cli.command()
@click.option("--host", "-H", "host_name", default=None, help="Host to inspect (default: first host).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def adapters(ctx: click.Context, host_name: str | None, as_json: bool) -> None:
    """Show which external tools are available on a host."""
    from provisioner.adapters.registry import build_registry
    from provisioner.core.config.loader import ConfigError, find_config_file, load_config
    from provisioner.core.hosts.factory import connect
    from provisioner.core.use_cases.provision import select_hosts

    try:
        config_path = ctx.obj.get("config_path") or find_config_file()
        if config_path is None:
            raise ConfigError("No provision.yml found.")
        config = load_config(config_path)
        host = select_hosts(config, [host_name] if host_name else None)[0]
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    registry = build_registry(connect(host, config.timeouts.command))
    availability = registry.adapter_status()

    if as_json:
        click.echo(json.dumps({"host": host.name, "adapters": availability}, indent=2))
        return

    click.secho(f"\n🔌 Adapters on {host.name}", fg="cyan", bold=True)
    for name, info in availability.items():
        icon = "✅" if info["available"] else "❌"
        click.echo(f"   {icon} {name} ({info['type']})")
    click.echo()


# ── config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Provisioning configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate provision.yml configuration."""
    from provisioner.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Config: {result.config.name}")
        click.echo(f"   Hosts: {len(result.config.hosts)}")
        click.echo(f"   Module: {result.config.kernel_module.registration}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


# ── Sub-groups ──────────────────────────────────────────────────

from provisioner.ui.cli.source import source

cli.add_command(source)


if __name__ == "__main__":
    cli()
