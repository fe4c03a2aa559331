#!/usr/bin/env python3
"""
CLI Script for Episode Ingestion.

Reads episodes from a JSON array or a JSONL file, ingests them in order and
waits for each enrichment to finish before the next one starts.

Each record needs name, content and description; group_id may come from the
record or from --group.

Usage:
    python scripts/ingest.py --file conversation.jsonl --group session-1
    python scripts/ingest.py --file episodes.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from src.ingestion.queue import TaskState, TaskStatus
from src.knowledge.memory_graph import MemoryGraph
from src.knowledge.schemas import EpisodeCreate
from src.utils.logger import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)


def load_records(file_path: Path) -> list[dict[str, Any]]:
    """
    Load episode records from a JSON array or JSON Lines file.

    Args:
        file_path: Path to .json or .jsonl file

    Returns:
        Raw records in file order
    """
    text = file_path.read_text(encoding="utf-8")

    if file_path.suffix == ".jsonl":
        return [json.loads(line) for line in text.splitlines() if line.strip()]

    data = json.loads(text)
    return data if isinstance(data, list) else [data]


async def ingest_records(
    memory: MemoryGraph,
    records: list[dict[str, Any]],
    group_id: str | None,
    timeout: float | None,
) -> list[TaskStatus]:
    """Ingest records one by one, waiting for each enrichment."""
    statuses: list[TaskStatus] = []

    for i, record in enumerate(records, 1):
        if group_id:
            record = {**record, "group_id": group_id}

        try:
            episode_data = EpisodeCreate.model_validate(record)
        except ValidationError as e:
            console.print(f"[red]Skipping record {i}: {e.errors()[0]['msg']}[/red]")
            continue

        with console.status(f"[bold green]Ingesting episode {i}/{len(records)}..."):
            episode = await memory.ingest(episode_data, timeout=timeout)
            task_status = await memory.wait(episode.id)

        if task_status is not None:
            statuses.append(task_status)
            mark = "[bold green]✓[/]" if task_status.state == TaskState.SUCCEEDED else "[bold red]✗[/]"
            console.print(f"{mark} {episode.name}: {episode.content[:60]}")

    return statuses


def _display_results(statuses: list[TaskStatus]) -> None:
    """Display enrichment results in a nice table."""
    table = Table(title="Ingestion Results")
    table.add_column("Episode", style="cyan")
    table.add_column("State", style="green")
    table.add_column("New Nodes", style="yellow")
    table.add_column("Facts", style="yellow")
    table.add_column("Invalidated", style="yellow")
    table.add_column("Error", style="red")

    for task_status in statuses:
        report = task_status.report
        table.add_row(
            task_status.episode_id[:8],
            task_status.state.value,
            str(report.nodes_created) if report else "-",
            str(report.edges_created) if report else "-",
            str(report.edges_invalidated) if report else "-",
            (task_status.error or "")[:60],
        )

    console.print(table)


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Ingest conversation episodes into the memory graph"
    )
    parser.add_argument(
        "--file", "-f",
        type=Path,
        required=True,
        help="Path to a .json or .jsonl file of episodes",
    )
    parser.add_argument(
        "--group", "-g",
        help="Group id applied to every episode (overrides the records)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Enrichment timeout per episode in seconds",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level)

    if not args.file.exists():
        console.print(f"[red]File not found: {args.file}[/red]")
        sys.exit(1)

    console.print("[bold]Temporal Memory Graph - Ingestion[/]")
    console.print("=" * 50)

    try:
        records = load_records(args.file)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {args.file}: {e}[/red]")
        sys.exit(1)

    console.print(f"Found {len(records)} episodes")

    memory = MemoryGraph.from_settings()
    try:
        statuses = await ingest_records(memory, records, args.group, args.timeout)
    finally:
        await memory.close()

    _display_results(statuses)

    if any(s.state != TaskState.SUCCEEDED for s in statuses):
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
