"""Command-line interface for chain-deployer."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .checkpoint import CheckpointStore
from .config import AppConfig, load_config
from .errors import ConfigError, DeployerError, PlanError
from .utils.logging import get_logger, set_verbosity
from .workflow import DeploymentRequest, DeploymentWorkflow

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_USAGE = 2


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    store: CheckpointStore
    console: Console


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chain-deployer",
        description="Run resumable contract deployment plans against a ledger.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--deployments-dir",
        type=str,
        default=None,
        help="Directory holding checkpoints and deployment records.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser(
        "deploy", help="Run (or resume) a deployment plan"
    )
    deploy_parser.add_argument("--plan", required=True, help="Plan JSON file")
    deploy_parser.add_argument("--network", "-n", required=True, help="Target network name")
    deploy_parser.add_argument(
        "--param", "-p", action="append", default=[], metavar="KEY=VALUE",
        help="Plan parameter (repeatable)",
    )
    deploy_parser.add_argument(
        "--resume-from", type=str, default=None, metavar="RECORD",
        help="Seed the checkpoint from an archived deployment record",
    )

    # status 子命令 - 查看当前 checkpoint
    status_parser = subparsers.add_parser(
        "status", help="Show the working checkpoint of a network"
    )
    status_parser.add_argument("--network", "-n", required=True)
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    # records 子命令 - 列出历史部署记录
    records_parser = subparsers.add_parser(
        "records", help="List archived deployment records"
    )
    records_parser.add_argument("--network", "-n", default=None)

    # mark 子命令 - 手动对账（远端已提交但本地未记录）
    mark_parser = subparsers.add_parser(
        "mark", help="Manually record a committed step or action"
    )
    mark_parser.add_argument("--network", "-n", required=True)
    target = mark_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--key", help="Step result key")
    target.add_argument("--action", help="Idempotent action description")
    mark_parser.add_argument("--value", help="Value to record under --key")

    return parser


def parse_params(pairs: List[str]) -> Dict[str, Any]:
    """Parse ``KEY=VALUE`` pairs; values that are valid JSON are decoded."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid parameter '{pair}', expected KEY=VALUE")
        try:
            value: Any = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        params[key.strip()] = value
    return params


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if args.deployments_dir:
        config.deployment.deployments_dir = args.deployments_dir
    return CLIContext(
        config=config,
        store=CheckpointStore(Path(config.deployment.deployments_dir)),
        console=Console(),
    )


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    request = DeploymentRequest(
        plan_path=args.plan,
        network=args.network,
        params=parse_params(args.param),
        resume_from=args.resume_from,
    )
    workflow = DeploymentWorkflow(config=context.config, store=context.store)
    report = workflow.run_deploy(request)

    if report.succeeded:
        logger.info(f"📄 Deployment record: {report.record_path}")
    return report.exit_code


def handle_status_command(args: argparse.Namespace, context: CLIContext) -> int:
    path = context.store.path_for(args.network)
    checkpoint = context.store.load(args.network)

    if args.json:
        context.console.print_json(data=checkpoint.to_dict())
        return EXIT_OK

    if checkpoint.is_empty():
        context.console.print(f"📁 No partial deployment for '{args.network}' ({path})")
        return EXIT_OK

    table = Table(title=f"Checkpoint: {path}")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in checkpoint.results.items():
        table.add_row(key, str(value))
    context.console.print(table)

    if checkpoint.actions:
        actions = Table(title="Completed actions")
        actions.add_column("#", justify="right")
        actions.add_column("Description")
        for i, description in enumerate(checkpoint.actions, 1):
            actions.add_row(str(i), description)
        context.console.print(actions)
    return EXIT_OK


def handle_records_command(args: argparse.Namespace, context: CLIContext) -> int:
    records = context.store.list_records(args.network)
    if not records:
        context.console.print("📁 No deployment records found.")
        return EXIT_OK

    table = Table(title=f"Deployment records in {context.store.root}")
    table.add_column("#", justify="right")
    table.add_column("Network")
    table.add_column("Time")
    table.add_column("File")
    for i, record in enumerate(records, 1):
        when = datetime.fromtimestamp(record.timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(str(i), record.environment, when, record.path.name)
    context.console.print(table)
    return EXIT_OK


def handle_mark_command(args: argparse.Namespace, context: CLIContext) -> int:
    checkpoint = context.store.load(args.network)
    if args.key:
        if args.value is None:
            raise ValueError("--value is required with --key")
        checkpoint.record_result(args.key, args.value)
        logger.info(f"✍️  Recorded {args.key} = {args.value}")
    else:
        checkpoint.record_action(args.action)
        logger.info(f"✍️  Marked action done: {args.action}")
    context.store.save(args.network, checkpoint)
    return EXIT_OK


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "deploy":
        return handle_deploy_command(args, context)
    if args.command == "status":
        return handle_status_command(args, context)
    if args.command == "records":
        return handle_records_command(args, context)
    if args.command == "mark":
        return handle_mark_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbosity(args.verbose)
    try:
        return dispatch_command(args)
    except (ConfigError, PlanError, FileNotFoundError, ValueError) as exc:
        logger.error(f"❌ {exc}")
        return EXIT_USAGE
    except DeployerError as exc:
        logger.error(f"❌ {exc}")
        return EXIT_ABORTED
