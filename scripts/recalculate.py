#!/usr/bin/env python3
"""
Rebuild player ratings, tallies and levels from the match history.

Full rebuild (after a rule change or data corruption):
    python scripts/recalculate.py

Levels only (percentile classification from current ratings):
    python scripts/recalculate.py --levels-only

Write a JSON summary for a scheduler:
    python scripts/recalculate.py --metrics-json logs/recalculate.json
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pongrank.config import settings
from pongrank.db import get_session
from pongrank.db.repository import run_transaction
from pongrank.notifications import drain_notifications
from pongrank.rating.levels import recalculate_player_levels
from pongrank.services.tournaments import recalculate_all, recalculation_notice

logging.basicConfig(level=settings.log_level, format=settings.log_format)
logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recalculate player ratings and levels.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--levels-only",
        action="store_true",
        help="Only reclassify levels from the current ratings.",
    )
    parser.add_argument(
        "--metrics-json",
        default=None,
        help="Write a JSON summary to this path on completion.",
    )
    return parser


def main() -> int:
    args = _build_parser().parse_args()

    mode = "levels" if args.levels_only else "full"
    started_at = _utc_now_iso()
    print(f"RECALCULATE  mode={mode}  started={started_at}")
    print("-" * 60)

    t_start = perf_counter()
    payload: dict = {"status": "success", "mode": mode, "started_at": started_at}

    with get_session() as session:
        if args.levels_only:
            changed = run_transaction(session, recalculate_player_levels)
            payload["levels_changed"] = changed
            print(f"Levels changed:         {changed}")
        else:
            stats = recalculate_all(session)
            drain_notifications(session, recalculation_notice(stats))
            print(stats.summary())
            payload.update(
                players_reset=stats.players_reset,
                matches_replayed=stats.matches_replayed,
                walkovers=stats.walkovers,
                tournaments_settled=stats.tournaments_settled,
                levels_changed=stats.levels_changed,
                errors=stats.errors,
            )

    elapsed = perf_counter() - t_start
    print("-" * 60)
    print(f"Elapsed:                {elapsed:.2f}s")

    if args.metrics_json:
        payload["elapsed_s"] = round(elapsed, 3)
        metrics_path = Path(args.metrics_json)
        metrics_path.parent.mkdir(parents=True, exist_ok=True)
        metrics_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
