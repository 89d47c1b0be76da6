"""Tests for system-mode and admin-mode outcome selection."""

from collections import Counter
from dataclasses import replace
from decimal import Decimal

import pytest

from models import Color, Size
from core.exceptions import InvalidWinningOption, PolicyBreach
from services.liability_service import ProfitPolicy, calculate_liability
from services.outcome_selector import SelectedRank, select_admin_outcome, select_system_outcome
from factories import ScriptedRng, make_bet


POLICY = ProfitPolicy()


def _spread_report():
    # profits fall as the digit grows: 7 barely breaks even, 8 and 9 lose
    bets = [make_bet("NUMBER", d, 10 + d, f"u{d}") for d in range(10)]
    return calculate_liability(bets, POLICY)


# ---------------------------------------------------------------------------
# System mode
# ---------------------------------------------------------------------------


class TestSystemSelection:
    def test_high_profit_band(self) -> None:
        report = _spread_report()
        sel = select_system_outcome(report, POLICY, ScriptedRng([0.10]))
        assert sel.rank == SelectedRank.HIGH_PROFIT
        assert sel.number == report.candidates[0].number
        assert sel.candidate is report.candidates[0]
        assert sel.report is report

    def test_medium_profit_band_picks_middle_profitable(self) -> None:
        report = _spread_report()
        profitable = [c for c in report.acceptable if c.is_profitable]
        sel = select_system_outcome(report, POLICY, ScriptedRng([0.80]))
        assert sel.rank == SelectedRank.MEDIUM_PROFIT
        assert sel.number == profitable[len(profitable) // 2].number

    def test_medium_band_falls_back_to_top(self) -> None:
        # BIG + SMALL cover every digit at 2.5%; the NUMBER bets leave only 0 profitable
        bets = [make_bet("SIZE", "BIG", 100, "big"), make_bet("SIZE", "SMALL", 100, "small")]
        bets += [make_bet("NUMBER", d, 10, f"u{d}") for d in range(1, 10)]
        report = calculate_liability(bets, POLICY)
        assert [c.number for c in report.acceptable if c.is_profitable] == [0]

        sel = select_system_outcome(report, POLICY, ScriptedRng([0.75]))
        assert sel.rank == SelectedRank.MEDIUM_PROFIT
        assert sel.number == 0

    def test_random_band_stays_acceptable(self) -> None:
        report = calculate_liability([make_bet("NUMBER", 3, 100)], POLICY)
        acceptable = {c.number for c in report.acceptable}
        for seed in range(20):
            sel = select_system_outcome(report, POLICY, ScriptedRng([0.95], seed=seed))
            assert sel.rank == SelectedRank.RANDOM
            assert sel.number in acceptable
            assert sel.number != 3

    def test_least_loss_selected_with_warning(self, caplog) -> None:
        report = calculate_liability(
            [make_bet("NUMBER", 3, 100, "a"), make_bet("COLOR", "RED", 50, "b")], POLICY
        )
        # the house edge always leaves some digit acceptable, so force the bound
        report = replace(
            report, candidates=tuple(replace(c, is_acceptable=False) for c in report.candidates)
        )
        assert report.acceptable == []

        sel = select_system_outcome(report, POLICY, ScriptedRng([0.0]))
        assert sel.rank == SelectedRank.LEAST_LOSS
        assert sel.number == report.candidates[0].number
        assert "least loss" in caplog.text

    def test_scenario_d_no_bets_is_uniform(self) -> None:
        rng = ScriptedRng(seed=1234)
        counts = Counter(select_system_outcome(None, POLICY, rng).number for _ in range(5000))
        assert set(counts) == set(range(10))
        for digit in range(10):
            # expected 500 per digit
            assert 400 < counts[digit] < 600

    def test_no_bets_rank(self) -> None:
        sel = select_system_outcome(None, POLICY, ScriptedRng())
        assert sel.rank == SelectedRank.RANDOM_NO_BETS
        assert sel.candidate is None
        assert sel.report is None

    def test_weights_are_configurable(self) -> None:
        report = _spread_report()
        always_random = ProfitPolicy(high_profit_weight=0.0, medium_profit_weight=0.0)
        sel = select_system_outcome(report, always_random, ScriptedRng([0.01]))
        assert sel.rank == SelectedRank.RANDOM


# ---------------------------------------------------------------------------
# Admin mode
# ---------------------------------------------------------------------------


class TestAdminSelection:
    def test_scenario_e_policy_breach(self) -> None:
        bets = [make_bet("NUMBER", 7, 800, "a"), make_bet("COLOR", "RED", 1000, "b")]
        report = calculate_liability(bets, POLICY)
        assert report.candidate_for(7).profit == Decimal("-5000.00")

        with pytest.raises(PolicyBreach) as exc_info:
            select_admin_outcome(report, 7, POLICY)
        assert exc_info.value.digit == 7
        assert exc_info.value.profit == Decimal("-5000.00")

    def test_unprofitable_but_acceptable_returns_warning(self) -> None:
        report = calculate_liability(
            [make_bet("COLOR", "GREEN", 100, "a"), make_bet("COLOR", "RED", 100, "b")], POLICY
        )
        sel = select_admin_outcome(report, "GREEN", POLICY)
        assert sel.number == 1
        assert sel.rank == SelectedRank.ADMIN_DECLARED
        assert sel.warning is not None
        assert "not profitable" in sel.warning

    def test_profitable_has_no_warning(self) -> None:
        report = calculate_liability([make_bet("NUMBER", 3, 100)], POLICY)
        sel = select_admin_outcome(report, "8", POLICY)
        assert sel.number == 8
        assert sel.color == Color.RED
        assert sel.size == Size.BIG
        assert sel.warning is None

    def test_no_bets(self) -> None:
        sel = select_admin_outcome(None, "VIOLET", POLICY)
        assert sel.number == 0
        assert sel.warning == "No bets placed"

    def test_unknown_target(self) -> None:
        with pytest.raises(InvalidWinningOption):
            select_admin_outcome(None, "PURPLE", POLICY)
