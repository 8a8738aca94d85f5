#!/usr/bin/env python3
"""Sift: community posts in, marketing insights out.

This CLI polls subreddit listings, analyzes every new post with an AI model,
and publishes the posts and the resulting insights to a SQLite store.

Commands:
    run         Poll continuously (or a single cycle with --once)
    status      Show configuration and store statistics
    recent      Display recent insights from the store
    analyze     Analyze a single post given on the command line

Examples:
    python main.py run                              # Poll until Ctrl+C
    python main.py run --once                       # One cycle
    python main.py run --subreddits Notion,ADHD     # Override partitions
    python main.py run --interval-ms 60000          # One cycle per minute
    python main.py recent --hours 48 --priority high
    python main.py analyze --title "..." --body "..." --subreddit Journaling

Environment:
    ANTHROPIC_API_KEY: Required for anthropic models
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys

from config import Config
from database import Database
from observability.logging import setup_logging


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Run the polling pipeline.

    Returns:
        Exit code (0 for success)
    """
    from pipeline import run_continuous, run_once

    if args.subreddits:
        config.subreddits = [s.strip() for s in args.subreddits.split(",") if s.strip()]
    if args.interval_ms:
        config.poll_interval_ms = args.interval_ms

    logger = logging.getLogger(__name__)

    try:
        if args.once:
            stats = asyncio.run(run_once(config))
            logger.info("Run complete | stats=%s", json.dumps(stats))
        else:
            logger.info("Starting continuous mode...")
            asyncio.run(run_continuous(config, hydrate_hours=args.hydrate_hours))
        return 0
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130  # Standard exit code for SIGINT
    except Exception as e:
        logger.error("Pipeline failed | error=%s type=%s", e, type(e).__name__, exc_info=True)
        return 1


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and store statistics."""
    with Database(config.db_path) as db:
        db_stats = db.stats()

    status = {
        "config": {
            "insight_model": config.insight_model,
            "subreddits": config.subreddits,
            "sort_mode": config.sort_mode,
            "fetch_limit": config.fetch_limit,
            "poll_interval_ms": config.poll_interval_ms,
            "max_workers": config.max_workers,
            "source_base_interval_ms": config.source_throttle.base_interval_ms,
            "inference_base_interval_ms": config.inference_throttle.base_interval_ms,
            "enable_logfire": config.enable_logfire,
        },
        "database": {
            "path": str(config.db_path),
            "items": db_stats["items"],
            "insights": db_stats["insights"],
            "high_priority_insights": db_stats["high_priority"],
        },
    }

    print(json.dumps(status, indent=2))
    return 0


def cmd_recent(args: argparse.Namespace, config: Config) -> int:
    """Display recent insights."""
    with Database(config.db_path) as db:
        insights = db.recent_insights(hours=args.hours, limit=args.limit, priority=args.priority)

    if not insights:
        print(f"No insights in the last {args.hours} hours.")
        return 0

    print(f"\n=== Insights (last {args.hours} hours) ===\n")

    for insight in insights:
        print(f"[{insight.get('priority', '?').upper()}] {insight.get('category', '?')} | r/{insight.get('partition_key', '?')}")
        print(f"   Post: {insight.get('source_title', '')}")
        print(f"   Summary: {insight.get('summary', '')}")
        if insight.get("topics"):
            print(f"   Topics: {', '.join(insight['topics'])}")
        if insight.get("source_url"):
            print(f"   Link: {insight['source_url']}")
        print()

    return 0


def cmd_analyze(args: argparse.Namespace, config: Config) -> int:
    """Analyze one post without touching the store."""
    from agents.insight import InsightAgent
    from generator import InsightGenerator
    from models.item import Item
    from throttle import ThrottledClient

    async def analyze_post():
        item = Item(
            id="manual",
            title=args.title,
            body=args.body or "",
            partition_key=args.subreddit,
        )
        agent = InsightAgent(config.insight_model, config.anthropic_api_key)
        generator = InsightGenerator(agent, ThrottledClient(agent.name, config.inference_throttle))
        return await generator.generate(item)

    insight = asyncio.run(analyze_post())

    print("\n=== Insight ===")
    print(f"Category: {insight.category.value}")
    print(f"Priority: {insight.priority.value}")
    print(f"Sentiment: {insight.sentiment.value}")
    print(f"Topics: {', '.join(insight.topics)}")
    print(f"\nSummary: {insight.summary}")
    if insight.narrative:
        print(f"\n{insight.narrative}")
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        description="Sift: marketing insights from community posts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the polling pipeline")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    run_parser.add_argument(
        "--subreddits",
        help="Comma-separated partitions to poll (default: config SUBREDDITS)",
    )
    run_parser.add_argument(
        "--interval-ms",
        type=int,
        help="Delay between cycles in milliseconds",
    )
    run_parser.add_argument(
        "--hydrate-hours",
        type=int,
        default=24,
        help="Load stored insights from the last N hours at start-up (0 = skip)",
    )

    # status command
    subparsers.add_parser("status", help="Show configuration and statistics")

    # recent command
    recent_parser = subparsers.add_parser("recent", help="Show recent insights")
    recent_parser.add_argument(
        "--hours",
        type=int,
        default=24,
        help="Look back N hours (default: 24)",
    )
    recent_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum insights shown (default: 50)",
    )
    recent_parser.add_argument(
        "--priority",
        choices=["high", "medium", "low"],
        help="Only show insights with this priority",
    )

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Analyze a single post")
    analyze_parser.add_argument(
        "--title",
        required=True,
        help="Post title",
    )
    analyze_parser.add_argument(
        "--body",
        help="Post text",
    )
    analyze_parser.add_argument(
        "--subreddit",
        default="Journaling",
        help="Partition the post belongs to (default: Journaling)",
    )

    args = parser.parse_args()

    config = Config.load()
    setup_logging(config, verbose=args.verbose)

    # Validate configuration for commands that need it
    if args.command in ("run", "analyze"):
        if args.command == "run" and args.interval_ms is not None and args.interval_ms <= 0:
            print("Error: --interval-ms must be positive", file=sys.stderr)
            return 1
        error = config.validate()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "recent": cmd_recent,
        "analyze": cmd_analyze,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except Exception as e:
            logging.getLogger(__name__).error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
