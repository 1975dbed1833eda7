"""
Contribution Visualizer command line.

Serve the dashboard API:

    contribviz serve --port 8000

Fetch a snapshot without the server:

    contribviz fetch --repository stellar/stellar-docs --contributors janewang,tomerweller

Drop cached aggregates:

    contribviz clear-cache
"""

import argparse
import asyncio
import logging
import os
import sys

from contribviz.aggregator import ContributionAggregator, set_aggregator
from contribviz.config import Settings
from contribviz.dashboard import rank_contributors
from contribviz.errors import ContributionError


def _contributors(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [c.strip() for c in raw.split(",") if c.strip()]


def print_summary(data, contributors: list[str]) -> None:
    header = f"{'contributor':<24}{'commits':>9}{'PRs':>7}{'issues':>8}{'reviews':>9}{'total':>8}"
    print(header)
    print("-" * len(header))
    for c in rank_contributors(data, contributors):
        s = data.summary[c]
        print(f"{c:<24}{s.commits:>9}{s.pull_requests:>7}{s.issues:>8}{s.reviews:>9}{s.total:>8}")


def cmd_fetch(args, aggregator: ContributionAggregator) -> int:
    repository = args.repository or aggregator.settings.repository
    contributors = _contributors(args.contributors) or aggregator.settings.contributors
    try:
        data = asyncio.run(aggregator.fetch(
            repository, contributors, token=args.token, use_cache=not args.refresh,
        ))
    except (ContributionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.json:
        print(data.model_dump_json(indent=2))
    else:
        print(f"Repository: {repository}")
        print(f"Since: {aggregator.settings.window_start.date().isoformat()}\n")
        print_summary(data, list(data.summary))
    return 0


def cmd_clear_cache(args, aggregator: ContributionAggregator) -> int:
    try:
        removed = aggregator.clear(args.repository, _contributors(args.contributors))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Removed {removed} cached entr{'y' if removed == 1 else 'ies'}")
    return 0


def cmd_serve(args, aggregator: ContributionAggregator) -> int:
    if not aggregator.settings.github_token:
        print("\nNote: GITHUB_TOKEN not set, requests are limited to 60/hour.")
        print("A full refresh makes dozens of calls; add a token for regular use.\n")

    print(f"\nStarting Contribution Visualizer API on http://{args.host}:{args.port}")
    print(f"Repository: {aggregator.settings.repository}\n")

    import uvicorn
    uvicorn.run("contribviz.main:app", host=args.host, port=args.port, reload=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contribviz",
        description="GitHub contribution aggregation for the Contribution Visualizer dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  contribviz serve --port 8000
  contribviz fetch --contributors alice,bob --repository org/repo
  contribviz fetch --refresh --json > snapshot.json
  contribviz clear-cache
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    fetch = sub.add_parser("fetch", help="Fetch contributions and print a summary")
    fetch.add_argument("--repository", "-r", help="owner/name (default: CONTRIBVIZ_REPOSITORY)")
    fetch.add_argument("--contributors", "-c", help="Comma-separated logins")
    fetch.add_argument("--token", help="GitHub token (default: GITHUB_TOKEN)")
    fetch.add_argument("--refresh", action="store_true", help="Bypass the cache")
    fetch.add_argument("--json", action="store_true", help="Print the full contribution set as JSON")

    clear = sub.add_parser("clear-cache", help="Remove cached contribution sets")
    clear.add_argument("--repository", "-r")
    clear.add_argument("--contributors", "-c")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "serve":
        os.environ.setdefault("ENV", "dev")
    aggregator = ContributionAggregator(Settings.from_env())
    set_aggregator(aggregator)

    handlers = {"serve": cmd_serve, "fetch": cmd_fetch, "clear-cache": cmd_clear_cache}
    return handlers[args.command](args, aggregator)


if __name__ == "__main__":
    sys.exit(main())
