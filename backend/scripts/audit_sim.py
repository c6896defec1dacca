#!/usr/bin/env python3
"""
Audit simulation for the Abyss slot engine.

Plays whole sessions headlessly with a seeded RNG and writes a one-row CSV
keyed by content_hash, so client/server/ledger copies can compare outcomes.

Usage:
    python -m scripts.audit_sim --sessions 10000 --seed AUDIT_2026 --out out/audit.csv
    python -m scripts.audit_sim --sessions 10000 --seed AUDIT_2026 --items 40:1 --out out/audit_biblia.csv
"""
import argparse
import csv
import hashlib
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from abyss.content_hash import get_content_hash
from abyss.ledger import StaticItemCatalog
from abyss.logic.engine import GameSession
from abyss.logic.models import OwnedItem
from abyss.logic.rng import SeededRNG
from abyss.telemetry import TelemetryService


class _NullSink:
    """Drops telemetry so simulations do not flood the log."""

    def emit(self, event_name, data) -> None:
        pass


@dataclass
class SimulationStats:
    """Statistics accumulated during simulation."""
    sessions: int = 0
    spins: int = 0
    instant_losses: int = 0
    immunity_saves: int = 0
    level_ups: int = 0
    final_scores: list[int] = field(default_factory=list)
    final_levels: list[int] = field(default_factory=list)
    total_scores: list[int] = field(default_factory=list)


def get_git_commit() -> str:
    """Get current git commit hash (short)."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            cwd=Path(__file__).parent.parent.parent,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    return "unknown"


def get_timestamp_iso() -> str:
    """Get ISO 8601 UTC timestamp."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def seed_to_int(seed_str: str) -> int:
    """Convert string seed to integer deterministically."""
    return int(hashlib.sha256(seed_str.encode()).hexdigest(), 16) % (2**31)


def parse_items(specs: list[str], catalog: StaticItemCatalog | None = None) -> list[OwnedItem]:
    """Parse "item_id:quantity" specs into owned items."""
    catalog = catalog or StaticItemCatalog()
    items = []
    for spec in specs:
        item_id, _, quantity = spec.partition(":")
        items.append(catalog.owned(int(item_id), int(quantity or 1)))
    return items


def run_simulation(
    sessions: int,
    seed_str: str,
    items: list[OwnedItem] | None = None,
    max_spins_per_session: int = 10_000,
    verbose: bool = False,
) -> SimulationStats:
    """
    Play `sessions` complete sessions.

    Args:
        sessions: Number of sessions to simulate
        seed_str: Seed string for reproducibility
        items: Items every session starts with
        max_spins_per_session: Safety stop for runaway sessions
        verbose: Print progress

    Returns:
        SimulationStats with aggregated results
    """
    rng = SeededRNG(seed=seed_to_int(seed_str))
    telemetry = TelemetryService(sink=_NullSink())
    stats = SimulationStats()
    progress_interval = max(1, sessions // 100)

    for index in range(sessions):
        if verbose and index % progress_interval == 0:
            print(f"\rProgress: {index / sessions * 100:.1f}%", end="", flush=True)

        game = GameSession.start(
            f"sim-{index}", items or [], rng=rng, telemetry=telemetry
        )
        spins = 0
        while game.state.is_active and spins < max_spins_per_session:
            outcome = game.request_spin()
            spins += 1
            stats.level_ups += outcome.levels_gained
            if outcome.immunity_used:
                stats.immunity_saves += 1
            elif outcome.instant_loss:
                stats.instant_losses += 1

        final = game.state
        stats.sessions += 1
        stats.spins += spins
        stats.final_scores.append(final.score)
        stats.final_levels.append(final.level)
        stats.total_scores.append(final.total_score)

    if verbose:
        print("\rProgress: 100.0%")

    return stats


def _mean(values: list[int]) -> float:
    return sum(values) / len(values) if values else 0.0


def calculate_percentile(values: list[int], percentile: float) -> float:
    """Calculate percentile from sorted list."""
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    idx = min(int(len(sorted_vals) * percentile / 100), len(sorted_vals) - 1)
    return float(sorted_vals[idx])


def build_row(seed_str: str, items: list[str], stats: SimulationStats) -> dict:
    """CSV row for a finished simulation."""
    instant_loss_rate = stats.instant_losses / stats.sessions * 100 if stats.sessions else 0
    immunity_save_rate = stats.immunity_saves / stats.sessions * 100 if stats.sessions else 0
    return {
        "timestamp": get_timestamp_iso(),
        "git_commit": get_git_commit(),
        "content_hash": get_content_hash(),
        "seed": seed_str,
        "items": " ".join(items),
        "sessions": stats.sessions,
        "spins": stats.spins,
        "avg_spins_per_session": f"{stats.spins / stats.sessions if stats.sessions else 0:.4f}",
        "avg_final_score": f"{_mean(stats.final_scores):.4f}",
        "avg_total_score": f"{_mean(stats.total_scores):.4f}",
        "avg_final_level": f"{_mean(stats.final_levels):.4f}",
        "p95_total_score": f"{calculate_percentile(stats.total_scores, 95):.2f}",
        "max_level": max(stats.final_levels, default=0),
        "level_ups": stats.level_ups,
        "instant_loss_rate": f"{instant_loss_rate:.4f}",
        "immunity_saves": stats.immunity_saves,
        "immunity_save_rate": f"{immunity_save_rate:.4f}",
    }


def generate_csv(row: dict, output_path: str) -> None:
    """Write the audit row."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=row.keys())
        writer.writeheader()
        writer.writerow(row)

    print(f"CSV written to: {output_path}")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Abyss engine audit simulation")
    parser.add_argument("--sessions", type=int, required=True, help="Sessions to play")
    parser.add_argument("--seed", type=str, required=True, help="Seed string")
    parser.add_argument(
        "--items",
        nargs="*",
        default=[],
        help="Starting items as item_id:quantity (e.g. 40:1)",
    )
    parser.add_argument("--out", type=str, required=True, help="Output CSV path")
    parser.add_argument("--verbose", action="store_true", help="Print progress")
    args = parser.parse_args()

    if args.sessions <= 0:
        print("Error: --sessions must be positive", file=sys.stderr)
        return 1

    stats = run_simulation(
        sessions=args.sessions,
        seed_str=args.seed,
        items=parse_items(args.items),
        verbose=args.verbose,
    )
    generate_csv(build_row(args.seed, args.items, stats), args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
