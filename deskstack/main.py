"""
deskstack — CLI entrypoint.

Usage:
    deskstack --help
    deskstack detect
    deskstack plan -s gaming -s office
    deskstack run --dry-run
    deskstack boot preview --mode dual --no-secondary
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from deskstack import __version__
from deskstack.core.models.boot import BootMode
from deskstack.core.observability.logging_config import setup_from_env

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}
_BOOT_MODES = [m.value for m in BootMode]


@click.group()
@click.version_option(version=__version__, prog_name="deskstack")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to deskstack.yml (default: auto-detect).",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    envvar="DESKSTACK_STATE_DIR",
    help="Where run state and the audit log are kept.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    state_dir: str | None,
) -> None:
    """deskstack — provision an Ubuntu desktop from opt-in stacks."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    from deskstack.core.context import set_state_dir

    set_state_dir(Path(state_dir).expanduser() if state_dir else None)

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_env(debug=debug, verbose=verbose, quiet=quiet)


# ── detect ─────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def detect(ctx: click.Context, as_json: bool) -> None:
    """Show the hardware and firmware facts deskstack plans against."""
    from deskstack.core.use_cases.detect import run_detect

    result = run_detect(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    facts = result.facts
    assert facts is not None
    gpus = ", ".join(sorted(v.value for v in facts.gpu_vendors)) or "none"

    click.secho("\n🔍 Environment", fg="cyan", bold=True)
    click.echo(f"   GPU:             {gpus}")
    click.echo(f"   Virtualization:  {facts.virtualization.value}")
    click.echo(f"   Firmware:        {'UEFI' if facts.firmware_is_uefi else 'legacy BIOS'}")
    if facts.firmware_is_uefi:
        click.echo(f"   Secure Boot:     {'on' if facts.secure_boot_enabled else 'off'}")
        mounted = "mounted" if facts.esp_mounted else "not mounted"
        click.echo(f"   ESP:             {result.esp_path} ({mounted})")
    if result.presence is not None:
        click.echo(f"   Ubuntu loader:   {'yes' if result.presence.has_primary_os_loader else 'not found'}")
        click.echo(f"   Windows loader:  {'yes' if result.presence.has_secondary_os_loader else 'not found'}")

    click.echo()
    click.secho("   Tools:", fg="white", bold=True)
    for name, available in result.tools.items():
        if available:
            click.secho(f"     ✓ {name}", fg="green")
        else:
            click.secho(f"     ✗ {name}", fg="red")
    click.echo()


# ── stacks ─────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def stacks(as_json: bool) -> None:
    """List the stacks this build knows about."""
    from deskstack.core.config.stack_loader import bundled_registry

    registry = bundled_registry()

    if as_json:
        click.echo(json.dumps(
            [
                {
                    "id": s.name,
                    "label": s.label,
                    "description": s.description,
                    "default": s.default,
                    "uefi_only": s.uefi_only,
                    "packages": len(s.packages),
                    "apps": len(s.apps),
                    "extensions": len(s.extensions),
                }
                for s in registry.stacks.values()
            ],
            indent=2,
        ))
        return

    click.secho("\n📦 Stacks", fg="cyan", bold=True)
    for stack in registry.stacks.values():
        marker = "●" if stack.default else "○"
        flags = " [UEFI]" if stack.uefi_only else ""
        click.secho(f"   {marker} {stack.name:<12}", fg="white", bold=True, nl=False)
        click.echo(f"{stack.label or stack.name}{flags}")
        if stack.description:
            click.echo(f"     {stack.description}")
    click.echo("\n   ● selected by default")
    click.echo()


# ── plan ───────────────────────────────────────────────────────


@cli.command()
@click.option("--stack", "-s", "selected", multiple=True, help="Stack to include (repeatable).")
@click.option("--boot-mode", type=click.Choice(_BOOT_MODES), default=None, help="Boot menu mode.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, selected: tuple[str, ...], boot_mode: str | None, as_json: bool) -> None:
    """Show what a run would do, without touching the system."""
    from deskstack.core.use_cases.provision import prepare

    result = prepare(
        stacks=list(selected) or None,
        config_path=ctx.obj.get("config_path"),
        boot_mode=BootMode(boot_mode) if boot_mode else None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    p = result.plan
    assert p is not None
    click.secho(f"\n📋 Plan: {', '.join(p.selected) or 'core only'}", fg="cyan", bold=True)

    click.secho(f"\n   Packages ({len(p.packages)}):", fg="white", bold=True)
    _echo_wrapped(p.packages)
    if p.apps:
        click.secho(f"\n   Apps ({len(p.apps)}):", fg="white", bold=True)
        _echo_wrapped(p.apps)
    if p.templates:
        click.secho("\n   Config files:", fg="white", bold=True)
        for action in p.templates:
            click.echo(f"     • {action.target}")
    if p.services:
        click.secho("\n   Services:", fg="white", bold=True)
        _echo_wrapped(p.services)
    if p.extensions:
        click.secho("\n   Extensions:", fg="white", bold=True)
        _echo_wrapped([e.label for e in p.extensions])
    if result.boot_request:
        click.secho("\n   Boot:", fg="white", bold=True)
        click.echo(f"     rEFInd, {result.boot_request.mode.value} mode (may degrade to match installed loaders)")
    for skipped in p.skipped:
        click.secho(f"\n   ⊘ {skipped.source}: {skipped.reason}", fg="yellow")
    click.echo()


def _echo_wrapped(items: list[str], width: int = 72) -> None:
    line = "    "
    for item in items:
        if len(line) + len(item) + 1 > width:
            click.echo(line)
            line = "    "
        line += f" {item}"
    if line.strip():
        click.echo(line)


# ── run ────────────────────────────────────────────────────────


@cli.command()
@click.option("--stack", "-s", "selected", multiple=True, help="Stack to include (repeatable).")
@click.option("--boot-mode", type=click.Choice(_BOOT_MODES), default=None, help="Boot menu mode.")
@click.option("--dry-run", is_flag=True, help="Validate and read, but change nothing.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="No questions; use flags and profile.")
@click.option("--reboot", is_flag=True, help="Reboot when the run completes.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    selected: tuple[str, ...],
    boot_mode: str | None,
    dry_run: bool,
    mock: bool,
    assume_yes: bool,
    reboot: bool,
    as_json: bool,
) -> None:
    """Provision this machine.

    Exit code is 0 when every phase ran, whatever the individual item
    outcomes; 1 when the run could not start.

    Examples:

        deskstack run

        deskstack run -s gaming -s monitoring --yes

        deskstack run --dry-run --json
    """
    from deskstack.core.use_cases.provision import run_provision

    stacks_list = list(selected) or None
    mode = BootMode(boot_mode) if boot_mode else None
    interactive = not assume_yes and not as_json and sys.stdin.isatty()

    if interactive and stacks_list is None:
        stacks_list, mode = _ask_selection(ctx, mode)

    password = ""
    if not mock and not dry_run:
        from deskstack.core.engine.preflight import sudo_cached

        if interactive and not sudo_cached():
            password = click.prompt("[sudo] password", hide_input=True, err=True)

    result = run_provision(
        stacks=stacks_list,
        config_path=ctx.obj.get("config_path"),
        boot_mode=mode,
        dry_run=dry_run,
        mock_mode=mock,
        sudo_password=password,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None
    _print_report(ctx, report, dry_run=dry_run, mock=mock)

    if reboot and not dry_run and not mock:
        from deskstack.adapters.shell.runner import run_command

        click.secho("   Rebooting…", fg="cyan")
        run_command(["systemctl", "reboot"], needs_sudo=True, sudo_password=password)


def _ask_selection(ctx: click.Context, mode: BootMode | None) -> tuple[list[str], BootMode | None]:
    """Checklist of stacks, then the boot mode if the boot stack was picked."""
    from deskstack.core.config.loader import ConfigError, load_profile
    from deskstack.core.config.stack_loader import bundled_registry

    registry = bundled_registry()
    try:
        profile = load_profile(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    defaults = set(profile.stacks if profile.stacks is not None else registry.default_selection)

    click.secho("\nChoose what to install:", fg="cyan", bold=True)
    chosen = []
    for stack in registry.stacks.values():
        label = stack.label or stack.name
        if click.confirm(f"  {label}", default=stack.name in defaults):
            chosen.append(stack.name)

    if mode is None and any(registry.stacks[s].uefi_only for s in chosen):
        mode = BootMode(click.prompt(
            "  Boot menu",
            type=click.Choice(_BOOT_MODES),
            default=profile.boot.mode.value,
        ))
    return chosen, mode


def _print_report(ctx: click.Context, report, *, dry_run: bool, mock: bool) -> None:
    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    verbose = ctx.obj.get("verbose", False)
    click.secho(
        f"\n⚡ {mode_label}deskstack run — {', '.join(report.selected) or 'core only'}",
        fg="cyan",
        bold=True,
    )

    for phase, receipts in report.phase_receipts.items():
        if not receipts:
            continue
        counts = report.phase_counts(phase)
        click.secho(
            f"\n   {phase} ({counts['succeeded']}/{counts['total']})",
            fg="white", bold=True,
        )
        for receipt in receipts:
            item = receipt.action_id.split(":", 1)[-1]
            if receipt.ok:
                if verbose:
                    click.secho(f"     ✓ {item}", fg="green")
            elif receipt.failed:
                click.secho(f"     ✗ {item}", fg="red", nl=False)
                click.echo(f"  {receipt.error}")
            else:
                click.secho(f"     ⊘ {item}", fg="yellow", nl=False)
                click.echo(f"  ({receipt.output})")

    if report.boot is not None:
        boot = report.boot
        click.echo()
        if boot.degraded:
            click.secho(
                f"   Boot mode: {boot.effective.value} (asked for {boot.requested.value})",
                fg="yellow",
            )
        else:
            click.echo(f"   Boot mode: {boot.effective.value}")
    for note in report.notes:
        click.secho(f"   ℹ {note}", fg="cyan")

    click.echo()
    click.secho(
        f"   Result: {report.succeeded}/{report.total} succeeded, "
        f"{report.failed} failed, {report.skipped} skipped",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    click.echo()


# ── status ─────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def status(as_json: bool) -> None:
    """Show the last run and recent history."""
    from deskstack.core.use_cases.status import get_status

    result = get_status()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.has_run:
        click.echo(f"No runs recorded yet (state dir: {result.state_dir}).")
        return

    state = result.state
    assert state is not None
    last = state.last_run
    click.secho("\n📋 Last run", fg="cyan", bold=True)
    click.echo(f"   {last.operation_id} — ", nl=False)
    click.secho(last.status, fg=_STATUS_COLORS.get(last.status, "white"))
    click.echo(f"   at {last.ended_at}")
    click.echo(f"   stacks: {', '.join(last.selected) or 'core only'}")
    if last.effective_boot_mode:
        click.echo(f"   boot mode: {last.effective_boot_mode}")
    for phase in last.phases:
        if phase.total:
            click.echo(
                f"     {phase.name:<18} {phase.succeeded}/{phase.total}"
                + (f"  ✗ {phase.failed}" if phase.failed else "")
            )
    if last.failures:
        click.secho("\n   Failures:", fg="red")
        for failure in last.failures:
            click.echo(f"     • {failure}")

    if result.history:
        click.secho("\n   History:", fg="white", bold=True)
        for entry in reversed(result.history):
            click.echo(f"     {entry.timestamp[:19]}  {entry.operation_type:<8} {entry.status}")
    click.echo()


# ── boot ───────────────────────────────────────────────────────


@cli.group()
def boot() -> None:
    """Boot-manager configuration commands."""


@boot.command("preview")
@click.option("--mode", type=click.Choice(_BOOT_MODES), default=BootMode.DUAL.value, help="Requested mode.")
@click.option("--primary/--no-primary", default=True, help="Assume an Ubuntu loader is on the ESP.")
@click.option("--secondary/--no-secondary", default=True, help="Assume a Windows loader is on the ESP.")
def boot_preview(mode: str, primary: bool, secondary: bool) -> None:
    """Print the refind.conf a run would write."""
    from deskstack.core.engine.bootconf import generate
    from deskstack.core.models.environment import BootLoaderPresence

    requested = BootMode(mode)
    effective, text = generate(
        requested,
        BootLoaderPresence(
            has_primary_os_loader=primary,
            has_secondary_os_loader=secondary,
        ),
    )
    if effective is not requested:
        click.secho(f"# mode degraded: {requested.value} → {effective.value}", fg="yellow", err=True)
    click.echo(text, nl=False)


if __name__ == "__main__":
    cli()
