"""
Command line entry point for octo.

Commands:
  logs CONTAINER                     live log viewer (Textual)
  df                                 disk usage and reclaimable space
  rm KIND ID [--force] [--dry-run]   remove one container/image/volume/network
  prune KIND [--all] [--dry-run]     prune containers/images/volumes/networks/build-cache
  prune all [--all] [--volumes]      prune every category, reporting each one's result

Destructive commands print their confirmation descriptor first and ask
before acting unless --yes is given. With --output json or yaml, prune never
prompts: it prints the descriptor on --dry-run and refuses to run without
--yes.
"""

import sys
import json
import argparse
import logging
from logging.handlers import RotatingFileHandler
from dataclasses import asdict
from typing import List, Optional

import yaml
from rich.console import Console
from rich.markup import escape as rich_escape
from rich.prompt import Confirm
from rich.table import Table

from . import __version__, get_log_path
from .backend import DockerService
from .config import config_manager
from .errors import OctoError
from .model import ConfirmationInfo, DiskUsageInfo, PruneResult, SafetyTier, format_bytes

logger = logging.getLogger(__name__)

console = Console()

TIER_STYLES = {
    SafetyTier.INFORMATIONAL: "cyan",
    SafetyTier.LOW_RISK: "green",
    SafetyTier.MODERATE: "yellow",
    SafetyTier.HIGH_RISK: "bold red",
    SafetyTier.BULK_DESTRUCTIVE: "bold white on red",
}

REMOVE_KINDS = ["container", "image", "volume", "network"]
PRUNE_KINDS = ["containers", "images", "volumes", "networks", "build-cache"]


def make_log_handler() -> logging.Handler:
    """
    Rotating file handler for the configured log path.

    A custom path that cannot be opened falls back to the default one; when
    neither opens, log records are discarded.
    """
    for path in filter(None, [config_manager.get_custom_log_path(), get_log_path()]):
        try:
            return RotatingFileHandler(
                path,
                maxBytes=config_manager.get_log_max_bytes(),
                backupCount=config_manager.get_log_backup_count(),
            )
        except OSError as e:
            sys.stderr.write(f"octo: cannot open log file {path}: {e}\n")
    return logging.NullHandler()


def setup_logging() -> None:
    """Rotating file log; level, path and rotation come from the config file."""
    handler = make_log_handler()
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    root = logging.getLogger()
    root.setLevel(getattr(logging, config_manager.get_log_level(), logging.INFO))
    root.addHandler(handler)


def print_confirmation(info: ConfirmationInfo) -> None:
    style = TIER_STYLES.get(info.tier, "")
    console.print(f"[{style}]{info.tier.label}[/]  [bold]{rich_escape(info.title)}[/bold]")
    console.print(rich_escape(info.description))
    for resource in info.resources:
        console.print(f"  â¢ {rich_escape(resource)}")
    for warning in info.warnings:
        console.print(f"[yellow]â  {rich_escape(warning)}[/yellow]")
    if info.reversible:
        console.print(f"[dim]Reversible: {info.undo_instructions}[/dim]")
    else:
        console.print(f"[red]Not reversible:[/red] [dim]{info.undo_instructions}[/dim]")


def confirmation_dict(info: ConfirmationInfo) -> dict:
    data = asdict(info)
    data['tier'] = info.tier.label
    return data


def ask(question: str) -> bool:
    return Confirm.ask(question, default=False, console=console)


def cmd_logs(service: DockerService, args: argparse.Namespace) -> int:
    from .app import run
    from .logviewer import LogViewer

    target = None
    for c in service.list_containers(all=True):
        if args.container in (c.id, c.short_id, c.name):
            target = c
            break
    if target is None:
        console.print(f"[red]No such container: {rich_escape(args.container)}[/red]")
        return 1

    viewer = LogViewer(
        service,
        target.id,
        target.name,
        capacity=config_manager.get_buffer_capacity(),
        tail=args.tail or config_manager.get_initial_tail(),
        export_dir=config_manager.get_export_dir(),
    )
    run(viewer)
    return 0


def disk_usage_table(usage: DiskUsageInfo, title: str = "Disk usage") -> Table:
    table = Table(title=title)
    table.add_column("Category")
    table.add_column("Size", justify="right")
    table.add_row("Images", format_bytes(usage.images_bytes))
    table.add_row("Containers", format_bytes(usage.containers_bytes))
    table.add_row("Volumes", format_bytes(usage.volumes_bytes))
    table.add_row("Build cache", format_bytes(usage.build_cache_bytes))
    table.add_row("[bold]Total[/bold]", f"[bold]{format_bytes(usage.total_bytes)}[/bold]")
    table.add_row("[green]Reclaimable[/green]", f"[green]{format_bytes(usage.reclaimable_bytes)}[/green]")
    return table


def cmd_df(service: DockerService, args: argparse.Namespace) -> int:
    console.print(disk_usage_table(service.disk_usage()))
    return 0


def cmd_rm(service: DockerService, args: argparse.Namespace) -> int:
    dry_runs = {
        "container": service.remove_container_dry_run,
        "image": service.remove_image_dry_run,
        "volume": service.remove_volume_dry_run,
        "network": service.remove_network_dry_run,
    }
    info = dry_runs[args.kind](args.id)
    print_confirmation(info)
    if args.dry_run:
        return 0
    if not args.yes and not ask(f"Remove {args.kind} {args.id}?"):
        console.print("Operation canceled.")
        return 0

    if args.kind == "container":
        service.remove_container(args.id, force=args.force)
    elif args.kind == "image":
        service.remove_image(args.id, force=args.force)
    elif args.kind == "volume":
        service.remove_volume(args.id, force=args.force)
    else:
        service.remove_network(args.id)
    console.print(f"[green]Removed {args.kind} {args.id}[/green]")
    return 0


def _prune_dry_run(service: DockerService, kind: str, all: bool) -> ConfirmationInfo:
    if kind == "containers":
        return service.prune_containers_dry_run()
    if kind == "images":
        return service.prune_images_dry_run(all=all)
    if kind == "volumes":
        return service.prune_volumes_dry_run()
    if kind == "networks":
        return service.prune_networks_dry_run()
    return service.prune_build_cache_dry_run(all=all)


def _prune(service: DockerService, kind: str, all: bool) -> Optional[int]:
    """Bytes reclaimed; None for networks, which report no size."""
    if kind == "containers":
        return service.prune_containers()
    if kind == "images":
        return service.prune_images(all=all)
    if kind == "volumes":
        return service.prune_volumes()
    if kind == "networks":
        service.prune_networks()
        return None
    return service.prune_build_cache(all=all)


def _emit(data: dict, output: str) -> None:
    if output == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), end="")


def _system_prune_targets(all: bool, volumes: bool) -> List[str]:
    targets = ["All stopped containers"]
    targets.append("All unused images (not just dangling)" if all else "All dangling images")
    if volumes:
        targets.append("All unused volumes")
    targets.append("All unused networks")
    targets.append("All unused build cache" if all else "Dangling build cache")
    return targets


def _result_dict(result: PruneResult) -> dict:
    return {k: v for k, v in asdict(result).items() if v is not None}


def cmd_prune_system(service: DockerService, args: argparse.Namespace) -> int:
    """
    Prune every category in one run, reporting each one's outcome.

    A failing category does not stop the others; the command then exits 1.
    """
    before = service.disk_usage()

    if args.output in ("json", "yaml"):
        data = {"dry_run": args.dry_run, "disk_before": asdict(before), "results": [], "total_reclaimed_bytes": 0}
        if args.dry_run:
            _emit(data, args.output)
            return 0
        if not args.yes:
            console.print(f"[red]--yes is required for {args.output} output mode[/red]")
            return 2
        results = service.prune_system(all=args.all, volumes=args.volumes)
        data["results"] = [_result_dict(r) for r in results]
        data["total_reclaimed_bytes"] = sum(r.reclaimed_bytes for r in results if not r.error)
        _emit(data, args.output)
        return 1 if any(r.error for r in results) else 0

    console.print(disk_usage_table(before, title="Current disk usage"))
    console.print("[yellow]This will remove:[/yellow]")
    for target in _system_prune_targets(args.all, args.volumes):
        console.print(f"  • {target}")
    if args.dry_run:
        console.print(f"Would reclaim approximately {format_bytes(before.reclaimable_bytes)}")
        return 0
    if not args.yes and not ask("Are you sure you want to continue?"):
        console.print("Operation canceled.")
        return 0

    results = service.prune_system(all=args.all, volumes=args.volumes)
    for result in results:
        label = result.resource.replace("_", " ")
        if result.error:
            console.print(f"  {label}: [yellow]error: {rich_escape(result.error)}[/yellow]")
        else:
            console.print(f"  {label}: [green]done ({format_bytes(result.reclaimed_bytes)})[/green]")
    total = sum(r.reclaimed_bytes for r in results if not r.error)
    console.print(f"[green]Total space reclaimed: {format_bytes(total)}[/green]")
    return 1 if any(r.error for r in results) else 0


def cmd_prune(service: DockerService, args: argparse.Namespace) -> int:
    if args.kind == "all":
        return cmd_prune_system(service, args)
    if args.output in ("json", "yaml"):
        if args.dry_run:
            info = _prune_dry_run(service, args.kind, args.all)
            _emit({"dry_run": True, "kind": args.kind, "confirmation": confirmation_dict(info)}, args.output)
            return 0
        if not args.yes:
            console.print(f"[red]--yes is required for {args.output} output mode[/red]")
            return 2
        reclaimed = _prune(service, args.kind, args.all)
        _emit({"dry_run": False, "kind": args.kind, "reclaimed_bytes": reclaimed}, args.output)
        return 0

    info = _prune_dry_run(service, args.kind, args.all)
    print_confirmation(info)
    if args.dry_run:
        return 0
    if not args.yes and not ask("Are you sure you want to continue?"):
        console.print("Operation canceled.")
        return 0

    reclaimed = _prune(service, args.kind, args.all)
    if reclaimed is None:
        console.print(f"[green]Pruned {args.kind}[/green]")
    else:
        console.print(f"[green]Pruned {args.kind}, reclaimed {format_bytes(reclaimed)}[/green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="octo", description="Container engine resource manager")
    parser.add_argument("--version", action="version", version=f"octo {__version__}")
    parser.add_argument("--host", help="engine address (default: DOCKER_HOST or local socket)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_logs = sub.add_parser("logs", help="view container logs")
    p_logs.add_argument("container", help="container id, short id or name")
    p_logs.add_argument("--tail", type=int, default=0, help="initial lines to fetch")
    p_logs.set_defaults(func=cmd_logs)

    p_df = sub.add_parser("df", help="show disk usage")
    p_df.set_defaults(func=cmd_df)

    p_rm = sub.add_parser("rm", help="remove one resource")
    p_rm.add_argument("kind", choices=REMOVE_KINDS)
    p_rm.add_argument("id")
    p_rm.add_argument("-f", "--force", action="store_true", help="force removal")
    p_rm.add_argument("--dry-run", action="store_true", help="describe the removal only")
    p_rm.add_argument("-y", "--yes", action="store_true", help="do not prompt")
    p_rm.set_defaults(func=cmd_rm)

    p_prune = sub.add_parser("prune", help="remove unused resources")
    p_prune.add_argument("kind", choices=PRUNE_KINDS + ["all"], help="category, or all of them in turn")
    p_prune.add_argument("-a", "--all", action="store_true",
                         help="images: all unused, not just dangling; build-cache: all entries")
    p_prune.add_argument("--volumes", action="store_true", help="all: also prune unused volumes")
    p_prune.add_argument("--dry-run", action="store_true", help="describe the prune only")
    p_prune.add_argument("-y", "--yes", action="store_true", help="do not prompt")
    p_prune.add_argument("-o", "--output", choices=["text", "json", "yaml"], default="text")
    p_prune.set_defaults(func=cmd_prune)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    logger.info(f"octo {__version__}: {args.command}")

    try:
        service = DockerService.connect(args.host or config_manager.get_engine_host(),
                                        config_manager.get_request_timeout())
    except OctoError as e:
        console.print(f"[red]Error connecting to engine: {rich_escape(str(e))}[/red]")
        return 1

    try:
        return args.func(service, args)
    except OctoError as e:
        logger.error(f"{args.command} failed: {e}")
        console.print(f"[red]Error: {rich_escape(str(e))}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
