#!/usr/bin/env python3
"""
CLI Script for Memory Search.

Usage:
    python scripts/search.py --group session-1 "Where does Fernando work?"
    python scripts/search.py --group session-1 --top-k 5 "Doxa Code"
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.knowledge.memory_graph import MemoryGraph
from src.utils.embeddings import EmbeddingError
from src.utils.logger import setup_logging

console = Console()


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Search the memory graph")
    parser.add_argument("query", help="Free-text query")
    parser.add_argument("--group", "-g", required=True, help="Group id to search")
    parser.add_argument("--top-k", "-k", type=int, default=None, help="Number of facts")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()
    setup_logging(args.log_level)

    memory = MemoryGraph.from_settings()
    try:
        result = await memory.search(args.query, args.group, args.top_k)
    except (ValueError, EmbeddingError) as e:
        console.print(f"[red]Search failed: {e}[/red]")
        sys.exit(1)
    finally:
        await memory.close()

    if result.facts:
        table = Table(title=f"Top facts for '{args.query}'")
        table.add_column("Score", style="cyan")
        table.add_column("Relation", style="yellow")
        table.add_column("Fact", style="green")
        for ranked in result.facts:
            table.add_row(f"{ranked.score:.3f}", ranked.edge.label, ranked.edge.fact)
        console.print(table)

    console.print(Panel(result.context, title="Context", border_style="blue"))


if __name__ == "__main__":
    asyncio.run(main())
