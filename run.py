"""
Entry point: trigger pipeline runs from a scheduler or the command line.

Usage::

    python run.py ingest                 # fetch signals and re-cluster
    python run.py fatigue                # recompute saturation buckets
    python run.py validate --limit 5     # synthesize drafts for top topics
    python run.py validate "Pushpa 2" "Game Changer" --no-persist
    python run.py trends                 # print trending clusters and metrics
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run")


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def main(argv: Optional[List[str]] = None) -> int:
    from src.agents.orchestrator import build_pipeline
    from src.config import get_settings, validate_env
    from src.exceptions import ConfigurationError, DatabaseError, IntelligenceError, StageTimeoutError

    parser = argparse.ArgumentParser(description="Telugu content intelligence pipeline")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("ingest", help="Run full signal ingestion and clustering")
    sub.add_parser("fatigue", help="Recompute topic saturation")
    validate = sub.add_parser("validate", help="Run a validation batch")
    validate.add_argument("topics", nargs="*", help="Topics (default: top trending clusters)")
    validate.add_argument("--limit", type=int, default=5)
    validate.add_argument("--halt-on-error", action="store_true")
    validate.add_argument("--no-persist", action="store_true")
    validate.add_argument("--verbose", action="store_true")
    sub.add_parser("trends", help="Print trending clusters, fatigue and metrics")
    args = parser.parse_args(argv)

    try:
        validate_env(strict=True)
        settings = get_settings()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        pipeline = await build_pipeline(settings)
    except DatabaseError as e:
        logger.error("Cannot start: %s", e)
        return 1

    try:
        if args.command == "ingest":
            result = await pipeline.run_full_ingestion()
            _print(result.to_dict())
        elif args.command == "fatigue":
            report = await pipeline.run_fatigue()
            _print(report.to_dict())
        elif args.command == "validate":
            run = await pipeline.run_validation_batch(
                topics=args.topics or None,
                limit=args.limit,
                continue_on_error=not args.halt_on_error,
                persist=not args.no_persist,
                verbose=args.verbose,
            )
            _print(run.to_dict())
        elif args.command == "trends":
            clusters = await pipeline.reporting.get_trending_clusters()
            fatigue = await pipeline.reporting.get_fatigue_buckets()
            metrics = await pipeline.reporting.get_performance_metrics()
            _print({
                "clusters": [
                    {
                        "cluster": c.cluster_key,
                        "keyword": c.primary_keyword,
                        "avg_score": round(c.avg_score, 1),
                        "direction": c.trend_direction.value,
                        "signals": c.signal_count,
                        "saturation": c.saturation_score,
                    }
                    for c in clusters
                ],
                "fatigue": fatigue.to_dict(),
                "metrics": metrics.to_dict(),
            })
    except StageTimeoutError as e:
        logger.error("%s", e)
        return 1
    except (IntelligenceError, DatabaseError):
        logger.exception("Run failed")
        return 1
    finally:
        await pipeline.agent_logger.flush()

    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    sys.exit(asyncio.run(main()))
