"""
CLI entry point for chaindelve.

Usage:
    chaindelve dig vault-config.yml
    chaindelve delve vault-config.yml --defaults defaults.yml
    chaindelve table-diff expected.csv actual.csv
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .log import console, setup_logging


def _print_error(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")


def _header(title: str, config) -> None:
    fork = config.fork
    lines = [f"[bold cyan]{config.name}[/bold cyan]", ""]
    lines.append(f"[dim]Seeds: {len(config.seeds)} | Stoppers: {len(config.stoppers)}[/dim]")
    if fork and fork.spawn:
        lines.append(f"[dim]Fork: local anvil on port {fork.rpc_port} (block {fork.fork_block or 'latest'})[/dim]")
    else:
        lines.append(f"[dim]RPC: {config.rpc_url}[/dim]")
    console.print()
    console.print(Panel("\n".join(lines), title=f"[bold]{title}[/bold]", subtitle="chaindelve"))
    console.print()


class Session:
    """The ledger, metadata and fork process of one command."""

    def __init__(self, config):
        from .core.rpc import AnvilManager, EthRpcClient
        from .exceptions import ConfigError
        from .metadata.cache import FileCache
        from .metadata.etherscan import EtherscanClient, MetadataResolver

        if not config.etherscan_api_key:
            raise ConfigError("ETHERSCAN_API_KEY is not set")

        self.config = config
        self.anvil = AnvilManager(config.fork)
        spawned = config.fork is not None and config.fork.spawn
        self.provider = EthRpcClient(self.anvil.rpc_url if spawned else config.rpc_url)
        source = EtherscanClient(
            config.etherscan_api_key,
            cache=FileCache(config.cache_dir),
            base_url=config.etherscan_url,
            chain_id=config.chain_id,
        )
        self.resolver = MetadataResolver(source, self.provider)

    async def __aenter__(self) -> "Session":
        await self.anvil.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.anvil.stop()

    async def discover(self, with_creation: bool = False):
        from .analysis.graph import GraphBuilder

        builder = GraphBuilder(self.provider, self.resolver, with_creation=with_creation)
        return await builder.discover(self.config.seeds, self.config.stoppers)


def _node_table(context) -> Table:
    table = Table(title=f"Discovered Nodes ({len(context.nodes)})")
    table.add_column("Name", style="cyan")
    table.add_column("Contract")
    table.add_column("Address", style="dim")
    table.add_column("Links", justify="right")

    for node in context.sorted_nodes():
        name = f"{node.display_name} [yellow](stopper)[/yellow]" if node.stopper else node.display_name
        table.add_row(name, node.contract_label, node.address, str(len(node.links)))
    return table


def run_dig(args: argparse.Namespace) -> int:
    """Discover the address graph and write it out."""
    from .config import load_config
    from .report import ReportWriter

    try:
        config = load_config(args.config, args.defaults)
    except Exception as e:
        _print_error(e)
        return 1

    _header("Dig", config)

    async def _run():
        async with Session(config) as session:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Discovering address graph...", total=None)
                context = await session.discover(with_creation=args.with_creation)
                progress.update(task, description="Discovery complete!")
            return context

    try:
        context = asyncio.run(_run())
    except Exception as e:
        _print_error(e)
        return 1

    console.print(_node_table(context))

    writer = ReportWriter(config.output_dir)
    for path in writer.write_graph(config.name, context):
        console.print(f"[dim]Wrote {path}[/dim]")

    if args.mermaid:
        console.print("\n[bold]Mermaid Diagram:[/bold]")
        console.print("```mermaid")
        console.print(context.to_mermaid(), markup=False)
        console.print("```")
    return 0


def run_delve(args: argparse.Namespace) -> int:
    """Discover, measure, run the configured actions and write the reports."""
    from .config import load_config
    from .measure.registry import MeasurementRegistry
    from .report import ReportWriter
    from .state.snapshot import ActionRunner, actions_from_config

    try:
        config = load_config(args.config, args.defaults)
    except Exception as e:
        _print_error(e)
        return 1

    _header("Delve", config)
    writer = ReportWriter(config.output_dir, config.format, config.show_format)

    async def _run():
        async with Session(config) as session:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Discovering address graph...", total=None)
                context = await session.discover()

                progress.update(task, description="Registering measurements...")
                registry = MeasurementRegistry()
                registry.register_contract_reads(context)
                actions = actions_from_config([a.to_dict() for a in config.actions], context, config.users,
                                              session.provider)

                progress.update(task, description="Measuring base state...")
                base = await registry.evaluate_all(context)

                progress.update(task, description=f"Running {len(actions)} actions...")
                runner = ActionRunner(session.provider)
                outcomes = await runner.run_sequence(lambda: registry.evaluate_all(context), actions)
                progress.update(task, description="Delve complete!")
            return context, base, outcomes

    try:
        context, base, outcomes = asyncio.run(_run())
    except Exception as e:
        _print_error(e)
        return 1

    writer.write_graph(config.name, context)
    paths = writer.write_run(config.name, base, outcomes)

    console.print(f"[green]✓ {base.success_count} measurements across {len(base.node_entries())} nodes[/green]")
    if outcomes:
        table = Table(title="Actions")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Action", style="cyan")
        table.add_column("Gas", justify="right")
        table.add_column("Result")
        for index, outcome in enumerate(outcomes):
            result = "[green]ok[/green]" if outcome.succeeded else f"[red]{outcome.error}[/red]"
            if outcome.succeeded and outcome.value is not None:
                result = str(outcome.value)
            gas = f"{outcome.gas_used:,}" if outcome.gas_used is not None else "-"
            table.add_row(str(index), outcome.label, gas, result)
        console.print(table)

    console.print(f"\n[dim]{len(paths)} report files written to {config.output_dir}[/dim]")
    return 0


def run_table_diff(args: argparse.Namespace) -> int:
    """Compare two CSV tables; exit status 1 when they differ."""
    from .table import decode_table, diff_tables

    try:
        expected = decode_table(Path(args.expected).read_text())
        actual = decode_table(Path(args.actual).read_text())
    except Exception as e:
        _print_error(e)
        return 1

    messages = diff_tables(expected, actual)
    if not messages:
        console.print("[green]✓ Tables match[/green]")
        return 0

    console.print(f"[red]✗ {len(messages)} differences[/red]")
    for message in messages:
        console.print(f"  {message}", markup=False)
    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="chaindelve",
        description="Discover on-chain contract graphs and measure the effect of actions on them",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    dig_parser = subparsers.add_parser("dig", help="Discover the address graph")
    dig_parser.add_argument("config", type=str, help="Path to YAML run config")
    dig_parser.add_argument("--defaults", type=str, default=None, help="YAML config to overlay the run config on")
    dig_parser.add_argument(
        "--with-creation",
        action="store_true",
        help="Record contract creators and creation times"
    )
    dig_parser.add_argument(
        "--mermaid",
        action="store_true",
        help="Also print the mermaid flowchart"
    )

    delve_parser = subparsers.add_parser("delve", help="Measure the graph before and after each action")
    delve_parser.add_argument("config", type=str, help="Path to YAML run config")
    delve_parser.add_argument("--defaults", type=str, default=None, help="YAML config to overlay the run config on")

    diff_parser = subparsers.add_parser("table-diff", help="Compare two CSV tables")
    diff_parser.add_argument("expected", type=str, help="Expected table")
    diff_parser.add_argument("actual", type=str, help="Actual table")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "dig":
        return run_dig(args)
    elif args.command == "delve":
        return run_delve(args)
    elif args.command == "table-diff":
        return run_table_diff(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
