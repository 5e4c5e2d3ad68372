"""
Command-line interface for uiScout.

Provides the ``explore`` command for autonomous exploration of one or more
start URLs.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from .audit import AuditTrail
from .backends import create_decider
from .browser import launch_browser
from .config import RunConfig, load_config
from .events import EventBus, EventType, ProgressEvent
from .executor import ParallelExplorer, RunResult

logger = logging.getLogger(__name__)


def _print_event(event: ProgressEvent):
    data = event.data
    if event.type == EventType.PAGE_START:
        print(f"🌐 [{data['page_index'] + 1}/{data['total_pages']}] {data['url']}")
    elif event.type == EventType.PAGE_COMPLETE:
        icon = {"tested": "✅", "skipped": "⏭️ ", "failed": "❌"}.get(data.get("status"), "•")
        detail = data.get("termination_reason") or data.get("error") or ""
        print(f"{icon} {data['url']} - {data.get('status')} {detail}")
    elif event.type == EventType.STEP_COMPLETE and data.get("status") != "success":
        print(f"   ⚠️  step {data['step_index']}: {data.get('status')} - {data.get('error')}")
    elif event.type == EventType.BACKTRACK:
        print(f"   ↩️  back to {data.get('url')} (depth {data.get('depth')})")


async def _print_progress(bus: EventBus):
    async for event in bus.stream():
        _print_event(event)


async def run_exploration(config: RunConfig, urls) -> RunResult:
    """Run an exploration with real browsers and write the evidence bundle."""
    decider = None
    if config.use_ai:
        decider = create_decider(config.backend, api_key=config.api_key, model=config.model)

    bus = EventBus()
    audit = AuditTrail()
    audit.start_session(urls)

    consumers = [asyncio.create_task(audit.consume(bus)), asyncio.create_task(_print_progress(bus))]
    await asyncio.sleep(0)

    def browser_factory():
        return launch_browser(
            headless=config.headless,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            navigation_timeout_ms=config.navigation_timeout_ms,
        )

    runner = ParallelExplorer(config, browser_factory=browser_factory, decider=decider, events=bus)
    try:
        result = await runner.run(urls)
    finally:
        bus.close()
        await asyncio.gather(*consumers)

    audit.end_session()
    audit.record_run(result, runner.coverage)
    output_dir = config.output_dir or f"exploration_{audit.session_id}"
    audit.save(output_dir)
    result.save(str(Path(output_dir) / "report.txt"))
    return result


def explore_command(args):
    """Run autonomous exploration on one or more URLs."""
    config = load_config(
        mode=args.mode,
        parallel_browsers=args.parallel,
        steps_per_page=args.steps_per_page,
        max_steps=args.max_steps,
        max_states=args.max_states,
        max_depth=args.max_depth,
        max_time_ms=args.max_time * 1000 if args.max_time is not None else None,
        strict_mode=True if args.strict else None,
        backend=args.backend,
        api_key=args.api_key,
        use_ai=False if args.no_ai else None,
        headless=False if args.headed else None,
        output_dir=args.output,
    )

    print("🔍 uiScout Explorer")
    print(f"Targets: {', '.join(args.urls)}")
    print(f"Mode: {config.mode} ({config.parallel_browsers} browsers)")
    print(f"Budget: {config.budget.max_total_steps} steps, {config.budget.max_unique_states} states, "
          f"depth {config.budget.max_depth}, {config.budget.max_time_ms // 1000}s")
    print()

    if config.use_ai and not config.api_key:
        print("❌ Error: No API key provided.")
        print(f"   Set {config.backend.upper()}_API_KEY environment variable, use --api-key, or pass --no-ai")
        sys.exit(1)

    print("🤖 Starting autonomous exploration..." if config.use_ai else "🧭 Starting heuristic exploration...")
    started = datetime.now()
    result = asyncio.run(run_exploration(config, args.urls))

    print(result.summary())
    print(f"⏱️  Finished in {(datetime.now() - started).total_seconds():.1f}s")
    print(f"📊 Evidence saved to: {config.output_dir or 'exploration_<session>'}")

    if result.status == "blocked":
        sys.exit(1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="uiScout - autonomous web UI exploration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Explore a website
  uiscout explore http://localhost:8888

  # Explore several pages in parallel, each with its own small budget
  uiscout explore http://localhost:8888/ http://localhost:8888/pricing \\
      --mode pages --parallel 2 --steps-per-page 8

  # Heuristics only, no AI calls
  uiscout explore http://localhost:8888 --no-ai --max-steps 50
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    explore_parser = subparsers.add_parser("explore", help="Autonomously explore a website")
    explore_parser.add_argument("urls", nargs="+", help="Start URL(s) (e.g., http://localhost:8888)")
    explore_parser.add_argument(
        "--mode", choices=["graph", "pages"], help="graph: one shared budget; pages: a budget per URL"
    )
    explore_parser.add_argument("--parallel", type=int, help="Number of concurrent browsers (default: 3)")
    explore_parser.add_argument("--max-steps", type=int, help="Maximum total steps (default: 500)")
    explore_parser.add_argument("--max-states", type=int, help="Maximum unique states (default: 100)")
    explore_parser.add_argument("--max-depth", type=int, help="Maximum exploration depth (default: 10)")
    explore_parser.add_argument("--max-time", type=int, help="Maximum time in seconds (default: 600)")
    explore_parser.add_argument("--steps-per-page", type=int, help="Steps per URL in pages mode (default: 5)")
    explore_parser.add_argument("--strict", action="store_true", help="Treat every error as blocking")
    explore_parser.add_argument("--backend", choices=["gemini", "openai"], help="AI backend (default: gemini)")
    explore_parser.add_argument(
        "--api-key", help="API key for the backend (or set GEMINI_API_KEY/OPENAI_API_KEY env var)"
    )
    explore_parser.add_argument("--no-ai", action="store_true", help="Use heuristics only")
    explore_parser.add_argument("--headed", action="store_true", help="Show the browser window")
    explore_parser.add_argument("--output", help="Evidence directory (default: exploration_<timestamp>)")
    explore_parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    explore_parser.set_defaults(func=explore_command)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        args.func(args)
    except ValueError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
