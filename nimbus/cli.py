"""``nimbus`` command line.

    nimbus launch-cluster hadoop
    nimbus run-script --role datanode hadoop 'df -h'
    nimbus destroy-cluster hadoop
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.table import Table

from nimbus.api import Cluster, ClusterSpec, ExecResponse, Instance
from nimbus.api.predicate import AnyRoleIn, WithIds
from nimbus.config import build_handlers, load_config, resolve_cluster
from nimbus.controller import ClusterController
from nimbus.core.exceptions import NimbusError
from nimbus.logging import LogConfig, setup_logging, teardown_logging
from nimbus.providers.registry import ComputeCache

PHASE_COMMANDS = {
    "bootstrap-cluster": "bootstrap_cluster",
    "configure-services": "configure_services",
    "start-services": "start_services",
    "stop-services": "stop_services",
    "cleanup-cluster": "cleanup_cluster",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nimbus", description="Manage role-based compute clusters")
    parser.add_argument(
        "--config-dir", type=Path, default=None,
        help="Directory holding nimbus.toml (default: current directory)",
    )
    parser.add_argument(
        "--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("launch-cluster", "Bootstrap, configure and start a cluster"),
        ("bootstrap-cluster", "Create the nodes of a cluster"),
        ("configure-services", "Run the configure phase"),
        ("start-services", "Run the start phase"),
        ("stop-services", "Run the stop phase"),
        ("cleanup-cluster", "Run the cleanup phase"),
        ("destroy-cluster", "Destroy every node of a cluster"),
        ("list-cluster", "List the running instances of a cluster"),
    ):
        commands.add_parser(name, help=help_text).add_argument("cluster")

    destroy_instance = commands.add_parser("destroy-instance", help="Destroy one instance")
    destroy_instance.add_argument("cluster")
    destroy_instance.add_argument("instance_id")

    run_script = commands.add_parser("run-script", help="Run a shell script on cluster instances")
    run_script.add_argument(
        "--role", action="append", default=None, help="Only instances with this role (repeatable)",
    )
    run_script.add_argument("--root", action="store_true", help="Run as root")
    run_script.add_argument("cluster")
    run_script.add_argument("script")

    return parser


def instances_table(title: str, instances: Cluster | Sequence[Instance]) -> Table:
    table = Table(title=title, title_style="bold", show_edge=False)
    table.add_column("Instance")
    table.add_column("Roles", style="cyan")
    table.add_column("Public IP")
    table.add_column("Private IP", style="bright_black")
    for instance in instances:
        table.add_row(
            instance.id,
            ",".join(instance.sorted_roles) or "-",
            instance.public_ip or "-",
            instance.private_ip or "-",
        )
    return table


def responses_table(responses: dict[str, ExecResponse]) -> Table:
    table = Table(show_edge=False)
    table.add_column("Instance")
    table.add_column("Exit", justify="right")
    table.add_column("Output")
    for node_id, response in sorted(responses.items()):
        style = "green" if response.ok else "red"
        output = response.output.strip() or response.error.strip()
        table.add_row(node_id, f"[{style}]{response.exit_status}[/{style}]", output)
    return table


async def _execute(
    args: argparse.Namespace,
    controller: ClusterController,
    spec: ClusterSpec,
    console: Console,
) -> int:
    match args.command:
        case "launch-cluster":
            cluster = await controller.launch_cluster(spec)
            console.print(instances_table(f"Cluster {spec.cluster_name} launched", cluster))
        case command if command in PHASE_COMMANDS:
            cluster = await getattr(controller, PHASE_COMMANDS[command])(spec)
            console.print(instances_table(f"Cluster {spec.cluster_name}", cluster))
        case "destroy-cluster":
            await controller.destroy_cluster(spec)
            console.print(f"Cluster [bold]{spec.cluster_name}[/bold] destroyed")
        case "destroy-instance":
            await controller.destroy_instance(spec, args.instance_id)
            console.print(f"Instance [bold]{args.instance_id}[/bold] destroyed")
        case "list-cluster":
            store = controller.get_cluster_state_store(spec)
            instances = await controller.get_instances(spec, store)
            console.print(instances_table(f"Cluster {spec.cluster_name}", instances))
        case "run-script":
            store = controller.get_cluster_state_store(spec)
            cluster = Cluster(await controller.get_instances(spec, store))
            if args.role:
                cluster = Cluster(cluster.instances_matching(AnyRoleIn(frozenset(args.role))))
            options = controller.default_run_script_options(spec)
            if args.root:
                options = replace(options, run_as_root=True)
            responses = await controller.run_script_on_nodes_matching(
                spec, WithIds(*cluster.ids), args.script, options,
            )
            console.print(responses_table(responses))
            if not all(r.ok for r in responses.values()):
                return 1
    return 0


async def _run(args: argparse.Namespace, console: Console) -> int:
    config = load_config(project_dir=args.config_dir)
    spec = resolve_cluster(args.cluster, config=config)
    compute = ComputeCache()
    controller = ClusterController(get_compute=compute, handlers=build_handlers(config))
    try:
        return await _execute(args, controller, spec, console)
    finally:
        await compute.close_all()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    err_console = Console(stderr=True)

    logger.remove()
    handler_ids = setup_logging(
        LogConfig(level=args.log_level, file=args.log_file),
    )
    try:
        return asyncio.run(_run(args, console))
    except KeyError as e:
        err_console.print(f"[red]{e.args[0]}[/red]")
        return 1
    except NimbusError as e:
        err_console.print(f"[red]error[/red] ({e.kind}): {e}")
        return 1
    except KeyboardInterrupt:
        err_console.print("[yellow]interrupted[/yellow]")
        return 130
    finally:
        teardown_logging(handler_ids)


if __name__ == "__main__":
    raise SystemExit(main())
