"""
mapreducer as a CLI application.

Examples:
    mapreducer summarize report.txt --model gpt-4o-mini
    cat articles.json | mapreducer summarize --json --group-size 3
    mapreducer tokens report.txt --encoding cl100k
"""

from __future__ import annotations
from pathlib import Path
from typing import Any
import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mapreducer.config import __version__, load_config
from mapreducer.core.clients.openai.client import OpenAIChatModel
from mapreducer.core.model.tokens import count_tokens
from mapreducer.core.prompt.prompt import Prompt
from mapreducer.domain.exceptions.exceptions import MapReduceError
from mapreducer.strategies.summarize.summarizers.chunker import text_from_items
from mapreducer.strategies.summarize.summarizers.map_reduce import (
    MapReduceSummarizer,
    RunStats,
)
from mapreducer.utils.logs.logging_config import configure_logging, level_from_flag

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

console = Console()
err_console = Console(stderr=True)


def _read_input(source: str | None) -> str:
    if source and source != "-":
        return Path(source).read_text()
    if sys.stdin.isatty():
        raise click.UsageError("Provide an input file or pipe text via stdin.")
    return sys.stdin.read()


def _print_stats(stats: RunStats) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Stat", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Segments", f"{stats.segments_succeeded}/{stats.segments_total}")
    if stats.skipped_segments:
        skipped = ", ".join(str(i + 1) for i in stats.skipped_segments)
        table.add_row("Skipped", f"[yellow]{skipped}[/yellow]")
    table.add_row("Reduce rounds", str(stats.reduce_rounds))
    table.add_row("Model calls", str(stats.model_calls))
    table.add_row("Tokens", f"{stats.tokens_recorded:,}")
    err_console.print(table)


@click.group(invoke_without_command=True)
@click.option("--version", "show_version", is_flag=True)
@click.option("--log", "log_flag", type=str, default=None, help="Log level: d, i or w.")
@click.pass_context
def cli(ctx: click.Context, show_version: bool, log_flag: str | None):
    """mapreducer: rate-limited map-reduce summarization."""
    configure_logging(level_from_flag(log_flag) if log_flag else None)
    if show_version:
        click.echo(__version__)
        ctx.exit()
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("source", required=False)
@click.option("-m", "--model", type=str, default=DEFAULT_MODEL, help="Model to use.")
@click.option("--base-url", type=str, default=None, help="OpenAI-compatible endpoint.")
@click.option(
    "-c", "--config", "config_path", type=click.Path(dir_okay=False), default=None
)
@click.option("--json", "as_json", is_flag=True, help="Input is a JSON array of records.")
@click.option("--map-prompt", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option(
    "--combine-prompt", type=click.Path(exists=True, dir_okay=False), default=None
)
@click.option("--tpm", "tokens_per_minute", type=int, default=None)
@click.option("--rpm", "requests_per_minute", type=int, default=None)
@click.option("--concurrency", "queue_concurrency", type=int, default=None)
@click.option("--group-size", "hierarchy_group_size", type=int, default=None)
@click.option("-t", "--temperature", type=float, default=None)
@click.option("--encoding", type=click.Choice(["o200k", "cl100k"]), default=None)
@click.option("--stats", "show_stats", is_flag=True, help="Print run statistics.")
def summarize(
    source: str | None,
    model: str,
    base_url: str | None,
    config_path: str | None,
    as_json: bool,
    map_prompt: str | None,
    combine_prompt: str | None,
    show_stats: bool,
    **overrides: Any,
):
    """
    Summarize a file (or stdin) with map-reduce.
    """
    try:
        config = load_config(config_path, **overrides)
        text = _read_input(source)
        if as_json:
            text = text_from_items(json.loads(text))

        kwargs: dict[str, Any] = {}
        if map_prompt:
            kwargs["map_prompt"] = Prompt.from_file(map_prompt)
        if combine_prompt:
            kwargs["combine_prompt"] = Prompt.from_file(combine_prompt)

        summarizer = MapReduceSummarizer(
            model=OpenAIChatModel(model, base_url=base_url), config=config, **kwargs
        )
        result = asyncio.run(summarizer(text))
    except (MapReduceError, ValueError, OSError) as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled[/yellow]")
        sys.exit(130)

    console.print(result, markup=False, highlight=False)
    if show_stats:
        _print_stats(summarizer.stats)


@cli.command()
@click.argument("source", required=False)
@click.option("--encoding", type=click.Choice(["o200k", "cl100k"]), default="o200k")
def tokens(source: str | None, encoding: str):
    """
    Count the tokens in a file (or stdin).
    """
    text = _read_input(source)
    console.print(f"{count_tokens(text, encoding):,}")


def main():
    cli()


if __name__ == "__main__":
    main()
