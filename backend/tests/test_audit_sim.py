"""Audit simulation script tests."""
import csv

import pytest

from abyss.content_hash import get_content_hash
from scripts.audit_sim import (
    build_row,
    calculate_percentile,
    generate_csv,
    parse_items,
    run_simulation,
    seed_to_int,
)


class TestHelpers:

    def test_seed_to_int_deterministic(self):
        assert seed_to_int("AUDIT_2026") == seed_to_int("AUDIT_2026")
        assert seed_to_int("AUDIT_2026") != seed_to_int("AUDIT_2027")

    def test_parse_items(self):
        items = parse_items(["40:2", "25"])
        assert [(i.item_id, i.quantity) for i in items] == [(40, 2), (25, 1)]

    def test_percentile(self):
        assert calculate_percentile([], 95) == 0.0
        assert calculate_percentile(list(range(1, 101)), 95) == 96.0


class TestRunSimulation:

    def test_deterministic(self):
        a = run_simulation(sessions=20, seed_str="TEST")
        b = run_simulation(sessions=20, seed_str="TEST")
        assert a.final_scores == b.final_scores
        assert a.total_scores == b.total_scores

    def test_stats_shape(self):
        stats = run_simulation(sessions=30, seed_str="SHAPE")
        assert stats.sessions == 30
        assert len(stats.final_levels) == 30
        assert stats.spins >= 30 * 5
        assert all(level >= 1 for level in stats.final_levels)
        assert stats.immunity_saves == 0

    @pytest.mark.slow
    def test_immunity_saves_bounded_by_owned_units(self):
        stats = run_simulation(sessions=300, seed_str="BIBLIA", items=parse_items(["40:3"]))
        assert stats.sessions == 300
        assert stats.immunity_saves <= 300 * 3


class TestCsv:

    def test_row_written(self, tmp_path):
        stats = run_simulation(sessions=5, seed_str="CSV")
        row = build_row("CSV", ["40:1"], stats)
        out = tmp_path / "out" / "audit.csv"

        generate_csv(row, str(out))

        with open(out) as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["content_hash"] == get_content_hash()
        assert rows[0]["seed"] == "CSV"
        assert rows[0]["items"] == "40:1"
        assert rows[0]["sessions"] == "5"
        assert "immunity_save_rate" in rows[0]
