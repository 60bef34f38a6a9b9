import argparse
import asyncio
import sys

from rich import print as rprint
from rich.console import Console
from rich.panel import Panel as RichPanel
from rich.table import Table

from .config import REACTION_FAILED_MESSAGE, REACTION_TYPES, settings
from .core.exceptions import GenerationError, ValidationError
from .llm.client import TextGenerationClient
from .logging_setup import configure_logging
from .models import Comic, ComicStats
from .service import ComicService
from .storage.kv import KeyValueStore

console = Console()


def render_comic(comic: Comic) -> None:
    """Print a comic as one rich panel per comic panel."""
    rprint(f"\n[bold magenta]{comic.title}[/bold magenta]  [grey50]{comic.id}[/grey50]")
    for index, panel in enumerate(comic.panels, start=1):
        cast = "  ".join(f"{c.emoji} {c.name} [grey50](style {c.style})[/grey50]" for c in panel.characters)
        lines = [f"[italic]{panel.header}[/italic]", cast, ""]
        for line in panel.dialogue:
            if line.type == "thought":
                lines.append(f"[cyan]{line.speaker}[/cyan] [grey50]thinks[/grey50] ({line.text})")
            else:
                lines.append(f"[cyan]{line.speaker}[/cyan]: \"{line.text}\"")
        console.print(RichPanel("\n".join(lines), title=f"Panel {index}", expand=False))
    rprint(f"[grey50]concepts: {', '.join(comic.concepts) or '-'}[/grey50]")


def render_stats(comic_id: str, stats: ComicStats) -> None:
    table = Table(title=f"Reactions for {comic_id}")
    table.add_column("Reaction")
    table.add_column("Count", justify="right")
    for reaction_type in REACTION_TYPES:
        count = stats.counts.get(reaction_type, 0)
        if count:
            table.add_row(reaction_type, str(count))
    console.print(table)
    rprint(
        f"total={stats.total}  score={stats.score:.1f}  "
        f"unique users={stats.unique_users}  engagement={stats.engagement_rate}%"
    )


async def run(args: argparse.Namespace) -> int:
    """
    Execute one CLI command against a freshly connected store.

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    store = KeyValueStore(args.redis_url)
    await store.connect()
    service = ComicService(store, TextGenerationClient())

    try:
        if args.command == "generate":
            try:
                comic = await service.generate(
                    args.user,
                    humor_level=args.humor,
                    panel_count=args.panels,
                    style_refs=args.style_ref,
                )
            except GenerationError as e:
                rprint(f"[bold red]{e.public_message}[/bold red] [grey50](stage: {e.stage})[/grey50]")
                return 1
            render_comic(comic)

        elif args.command == "react":
            try:
                ack = await service.record_reaction(
                    args.comic_id,
                    args.reaction,
                    user_id=args.user,
                    weight=args.weight,
                    action="decrement" if args.remove else "increment",
                )
            except ValidationError as e:
                rprint(f"[bold red]{REACTION_FAILED_MESSAGE}[/bold red] [grey50]({e})[/grey50]")
                return 1
            if ack.degraded_steps:
                rprint(f"[yellow]Degraded steps: {', '.join(ack.degraded_steps)}[/yellow]")
            if ack.stats is not None:
                render_stats(ack.comic_id, ack.stats)

        elif args.command == "stats":
            result = await service.get_comic_stats(args.comic_id)
            if not result.ok:
                rprint(f"[yellow]Stats unavailable: {result.error}[/yellow]")
            render_stats(args.comic_id, result.value)

        elif args.command == "recent":
            result = await service.get_recent_comics(args.limit)
            if not result.value:
                rprint("[grey50]No comics yet[/grey50]")
            for comic in result.value:
                rprint(f"[bold]{comic.id}[/bold]  {comic.title}  [grey50]{comic.created_at:%Y-%m-%d %H:%M}[/grey50]")
        return 0
    finally:
        await store.close()


def main() -> int:
    """
    Command-line interface (CLI) entry point for the nrrds comic generator.
    """
    parser = argparse.ArgumentParser(description="nrrds feedback-guided comic generator")
    parser.add_argument("--redis-url", default=settings.REDIS_URL, help="Redis connection URL")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", help="Commands", required=True)

    # Generate command
    generate_parser = subparsers.add_parser("generate", help="Generate a new comic")
    generate_parser.add_argument("--user", type=str, default=None, help="User id to personalize for")
    generate_parser.add_argument("--humor", type=int, default=settings.DEFAULT_HUMOR_LEVEL, help="Humor level 0-11")
    generate_parser.add_argument(
        "--panels", type=int, choices=(3, 4), default=settings.DEFAULT_PANEL_COUNT, help="Panel count"
    )
    generate_parser.add_argument(
        "--style-ref", action="append", default=[], help="Style reference (repeatable)"
    )

    # React command
    react_parser = subparsers.add_parser("react", help="Record a reaction to a comic")
    react_parser.add_argument("comic_id", type=str, help="Comic id")
    react_parser.add_argument("reaction", type=str, help=f"One of: {', '.join(REACTION_TYPES)}")
    react_parser.add_argument("--user", type=str, default=None, help="Reacting user id")
    react_parser.add_argument("--weight", type=float, default=None, help="Override the reaction weight")
    react_parser.add_argument("--remove", action="store_true", help="Retract a previous reaction")

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show reaction stats for a comic")
    stats_parser.add_argument("comic_id", type=str, help="Comic id")

    # Recent command
    recent_parser = subparsers.add_parser("recent", help="List recent comics")
    recent_parser.add_argument("--limit", type=int, default=10, help="Number of comics (max 50)")

    args = parser.parse_args()
    configure_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
