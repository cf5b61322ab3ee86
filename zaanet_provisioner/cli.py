#!/usr/bin/env python3
"""
ZaaNet router provisioning CLI.

Usage:
    zaanet-provisioner install
    zaanet-provisioner uninstall
    zaanet-provisioner verify
    zaanet-provisioner identity
    zaanet-provisioner whitelist [aa:bb:cc:dd:ee:ff]
    zaanet-provisioner history --limit 10
    zaanet-provisioner job network-info|metrics
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import Config, load_config

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Configure logging."""
    handlers = [
        RichHandler(
            console=console,
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
        )
    ]

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=1024 * 1024,  # flash storage
                backupCount=2,
            ))
        except OSError as e:
            console.print(f"[yellow]File logging disabled: {e}[/yellow]")

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers,
    )


async def _open_history(config: Config):
    from .history import HistoryDatabase

    db = HistoryDatabase(config.logging.db)
    try:
        await db.connect()
    except Exception as e:
        logger.warning(f"Run history unavailable: {e}")
        return None
    return db


async def cmd_install(args, config: Config) -> int:
    """Provision the router."""
    from .installer import Installer
    from .prompts import Prompter

    console.print(f"[bold blue]ZaaNet Router Installation v{__version__}[/bold blue]")

    history = await _open_history(config)
    try:
        installer = Installer(
            config,
            prompter=Prompter(console),
            history=history,
            settings_file=args.config,
            env_file=args.env_file,
        )
        outcome = await installer.run()
    finally:
        if history:
            await history.close()

    if not outcome.success:
        console.print(f"[red]Installation failed during {outcome.phase}: {outcome.error}[/red]")
        if outcome.log_path:
            console.print(f"[dim]Log: {outcome.log_path}[/dim]")
        return outcome.exit_code

    table = Table(title="Installation Complete")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Router ID", outcome.router_id or "")
    if installer.provisioning:
        table.add_row("WiFi SSID", f"{installer.provisioning.wifi_ssid} (open network)")
        table.add_row("Contract ID", installer.provisioning.contract_id)
    table.add_row("Admin MAC", installer.admin.mac if installer.admin and installer.admin.mac else "Not configured")
    table.add_row("Backups", "\n".join(str(p) for p in outcome.backups) or "None")
    table.add_row("Log", str(outcome.log_path or ""))
    console.print(table)

    if outcome.warnings:
        console.print(f"\n[yellow]{len(outcome.warnings)} warning(s):[/yellow]")
        for warning in outcome.warnings:
            console.print(f"  [yellow]- {warning}[/yellow]")
    return 0


async def cmd_uninstall(args, config: Config) -> int:
    """Remove the captive portal."""
    from .installer import Uninstaller
    from .prompts import Prompter

    console.print("[bold blue]ZaaNet Uninstallation[/bold blue]")

    history = await _open_history(config)
    try:
        outcome = await Uninstaller(config, prompter=Prompter(console), history=history).run()
    finally:
        if history:
            await history.close()

    if not outcome.success:
        console.print(f"[red]Uninstallation failed during {outcome.phase}: {outcome.error}[/red]")
        if outcome.log_path:
            console.print(f"[dim]Log: {outcome.log_path}[/dim]")
        return outcome.exit_code

    console.print("[green]Uninstallation complete[/green]")
    if outcome.log_path:
        console.print(f"[dim]Log: {outcome.log_path}[/dim]")
    for warning in outcome.warnings:
        console.print(f"  [yellow]- {warning}[/yellow]")
    return outcome.exit_code


async def cmd_verify(args, config: Config) -> int:
    """Check an existing deployment."""
    from .verifier import DeploymentVerifier

    verifier = DeploymentVerifier(
        Path(config.paths.web_root),
        config.remote.required_files,
        config.paths.credentials_file,
        config.gateway.port,
        entry_point=config.remote.entry_point,
    )
    report = await verifier.verify()

    table = Table(title="Verification")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    for name, ok in report.checks.items():
        table.add_row(name, "[green]ok[/green]" if ok else "[red]FAILED[/red]")
    console.print(table)

    if report.passed:
        console.print("[green]All checks passed[/green]")
    else:
        console.print("[yellow]Some checks failed - installation may be incomplete[/yellow]")
    return 0


async def cmd_identity(args, config: Config) -> int:
    """Show the router identifier."""
    from .credentials import load_router_id
    from .identity import resolve_router_identity

    identity = resolve_router_identity(Path(config.paths.net_class_dir))
    persisted = load_router_id(config.paths.credentials_file)

    table = Table(title="Router Identity")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Derived ID", identity.id)
    table.add_row("Source", f"{identity.source_kind}: {identity.source_address}")
    table.add_row("Persisted ID", persisted or "Not installed")
    console.print(table)
    return 0


async def cmd_whitelist(args, config: Config) -> int:
    """Add a trusted MAC, or list trusted MACs and neighbours."""
    from .commands import run_command
    from .gateway import TRUSTED_MAC_LIST
    from .identity import list_neighbors
    from .installer import add_trusted_mac
    from .store import UciStore

    store = UciStore(config.gateway.package, config.paths.uci_dir)

    if args.mac:
        try:
            result = await add_trusted_mac(config, args.mac, store=store)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            console.print("Expected format: aa:bb:cc:dd:ee:ff")
            return 1
        if result is None:
            console.print("[yellow]MAC is already whitelisted[/yellow]")
            return 0
        if not result.success:
            console.print(f"[red]Failed to whitelist: {result.error}[/red]")
            return 1
        console.print("[green]Device whitelisted; it will bypass the captive portal[/green]")
        return 0

    trusted = await store.get_list(config.gateway.section, TRUSTED_MAC_LIST)
    console.print("[bold]Currently whitelisted MACs:[/bold]")
    for mac in trusted or ["(none)"]:
        console.print(f"  {mac}")

    result = await run_command("ip", "neigh", "show", timeout=10)
    table = Table(title="Connected Devices")
    table.add_column("IP Address", style="cyan")
    table.add_column("MAC Address", style="green")
    for ip, mac in list_neighbors(result.stdout if result.ok else ""):
        table.add_row(ip, mac)
    console.print(table)
    return 0


async def cmd_history(args, config: Config) -> int:
    """Show recent runs."""
    history = await _open_history(config)
    if history is None:
        return 1
    try:
        runs = await history.get_recent_runs(args.limit)
    finally:
        await history.close()

    if not runs:
        console.print("[yellow]No runs recorded[/yellow]")
        return 0

    table = Table(title="Provisioning History")
    table.add_column("ID", style="dim")
    table.add_column("Started", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Router ID", style="green")
    table.add_column("Phase")
    table.add_column("Warnings", justify="right")
    for run in runs:
        status = run.status.value
        style = "red" if status == "failed" else "yellow" if status != "completed" else "green"
        table.add_row(
            str(run.id),
            run.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            run.kind.value,
            f"[{style}]{status}[/{style}]",
            run.router_id or "",
            run.phase or "",
            str(len(run.warnings)),
        )
    console.print(table)
    return 0


async def cmd_job(args, config: Config) -> int:
    """Run one background job (invoked from cron)."""
    from .jobs import run_job

    return await run_job(args.name, config)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="ZaaNet captive portal provisioner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-c", "--config", help="Path to settings file (YAML)")
    parser.add_argument("--env-file", default=".env", help="Path to .env file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("install", help="Provision the router as a captive portal gateway")
    subparsers.add_parser("uninstall", help="Remove the captive portal and restore settings")
    subparsers.add_parser("verify", help="Check the current deployment")
    subparsers.add_parser("identity", help="Show the router identifier")

    whitelist_parser = subparsers.add_parser("whitelist", help="Whitelist a device MAC")
    whitelist_parser.add_argument("mac", nargs="?", help="MAC address (aa:bb:cc:dd:ee:ff)")

    history_parser = subparsers.add_parser("history", help="Show recent runs")
    history_parser.add_argument("--limit", "-n", type=int, default=20, help="Number of runs")

    job_parser = subparsers.add_parser("job", help="Run a background job")
    job_parser.add_argument("name", choices=["network-info", "metrics"], help="Job to run")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(args.config, args.env_file)
    except Exception as e:
        console.print(f"[red]Failed to load configuration: {e}[/red]")
        sys.exit(1)

    setup_logging(config.logging.level, config.logging.file, args.verbose)

    commands = {
        "install": cmd_install,
        "uninstall": cmd_uninstall,
        "verify": cmd_verify,
        "identity": cmd_identity,
        "whitelist": cmd_whitelist,
        "history": cmd_history,
        "job": cmd_job,
    }

    try:
        code = asyncio.run(commands[args.command](args, config))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if args.verbose:
            console.print_exception()
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
