#!/usr/bin/env python3
"""
Call Tracker CLI

Run the call-detection pipeline on a scraped posts file, backfill prices in a
saved result, or classify single texts.
"""

import argparse
import datetime as dt
import sys
from pathlib import Path
from typing import Optional
from calltrack.config import ConfigurationError, get_settings
from calltrack.nlp.call_detector import CallDetector
from calltrack.orchestration.tasks import build_analyzer, load_results, save_results
from calltrack.services.types import InfluencerStats, Post
from calltrack.logging_config import setup_logging, get_logger

logger = get_logger(__name__)

EXAMPLES = [
    "Loading up more $SOL here.",
    "Solstice ICO is live, get your flares.",
    "ETH tech is improving",
    "$ETH looking ready to breakout, long targeting 4k.",
    "Harvested my losses on MET.",
    "Farming points on Jupiter.",
]


def print_summary(stats: InfluencerStats) -> None:
    print(f"\n{'='*60}")
    print("ANALYSIS RESULTS")
    print(f"{'='*60}")
    print(f"Account:         @{stats.username}")
    print(f"Posts analyzed:  {stats.total_posts}")
    print(f"Calls detected:  {stats.total_calls}")
    print(f"Resolved:        {stats.successful_calls + stats.failed_calls} "
          f"({stats.successful_calls} up / {stats.failed_calls} down)")
    print(f"Success rate:    {stats.success_rate:.1f}%")
    print(f"Avg ROI:         {stats.avg_roi:+.2f}%")
    print(f"Hypothetical PnL: ${stats.hypothetical_pnl:+.2f}")

    resolved = sorted(
        (c for c in stats.calls if c.roi_percent is not None),
        key=lambda c: c.roi_percent,
        reverse=True,
    )
    if resolved:
        print("\nTop calls:")
        for i, call in enumerate(resolved[:5], 1):
            print(f"  {i}. ${call.ticker}: {call.roi_percent:+.1f}% ROI ({call.post_date.date()})")
    print(f"{'='*60}\n")


def analyze(file_path: str, output: Optional[str] = None) -> None:
    """Run the full pipeline on a posts JSON file."""
    if not Path(file_path).exists():
        logger.error(f"File not found: {file_path}")
        sys.exit(1)

    analyzer = build_analyzer()
    try:
        stats = analyzer.analyze_from_file(file_path)
    finally:
        analyzer.prices.close()

    output = output or str(Path("data") / "analysis" / f"{stats.username or 'unknown'}_calls.json")
    save_results(stats, output)
    print_summary(stats)


def fill_prices(file_path: str) -> None:
    """Backfill missing prices in a saved result file, in place."""
    if not Path(file_path).exists():
        logger.error(f"File not found: {file_path}")
        sys.exit(1)

    stats = load_results(file_path)
    analyzer = build_analyzer()
    try:
        stats = analyzer.fill_missing_prices(stats)
    finally:
        analyzer.prices.close()

    save_results(stats, file_path)
    print_summary(stats)


def classify(texts) -> None:
    """Classify texts as if they were posts from one account."""
    detector = CallDetector()
    now = dt.datetime.now(dt.timezone.utc)
    posts = [Post(id=str(i), text=t, username="cli", created_at=now) for i, t in enumerate(texts, 1)]
    verdicts = detector.classify_batch(posts)

    for post in posts:
        v = verdicts[post.id]
        print(f"\n{'='*60}")
        print(f"Text:       {post.text}")
        print(f"Call:       {'YES' if v.is_call else 'no'} ({v.call_type.value}, {v.confidence}%)")
        print(f"Tickers:    {', '.join(v.tickers) or '-'}")
        print(f"Sentiment:  {v.sentiment.value}")
        if v.reasoning:
            print(f"Reasoning:  {v.reasoning}")
    print(f"{'='*60}\n")


def main():
    parser = argparse.ArgumentParser(
        description="Call Tracker CLI - detect crypto calls in posts and score them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze an account's scraped posts
  calltrack analyze data/posts/someone_tweets.json

  # Retry prices that were missing in a saved result
  calltrack fill-prices data/analysis/someone_calls.json

  # Classify a single text
  calltrack classify --text "Loading up more $SOL here."

  # Classify the built-in examples
  calltrack classify --examples
        """
    )
    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: LOG_LEVEL setting)'
    )
    sub = parser.add_subparsers(dest='command')

    p_analyze = sub.add_parser('analyze', help='Analyze a posts JSON file')
    p_analyze.add_argument('file', help='Scraped posts JSON file')
    p_analyze.add_argument('--output', '-o', help='Where to write the result JSON')

    p_fill = sub.add_parser('fill-prices', help='Backfill missing prices in a result file')
    p_fill.add_argument('file', help='Result JSON written by "analyze"')

    p_classify = sub.add_parser('classify', help='Classify texts without pricing')
    p_classify.add_argument('--text', '-t', action='append', help='Text to classify (repeatable)')
    p_classify.add_argument('--examples', action='store_true', help='Classify built-in examples')

    args = parser.parse_args()
    setup_logging(args.log_level or get_settings().log_level)

    try:
        if args.command == 'analyze':
            analyze(args.file, args.output)
        elif args.command == 'fill-prices':
            fill_prices(args.file)
        elif args.command == 'classify' and (args.text or args.examples):
            classify(args.text or EXAMPLES)
        else:
            parser.print_help()
            sys.exit(1)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
