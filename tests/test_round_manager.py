"""Tests for the round lifecycle: creation, admin transitions, declaration, cancellation, retention."""

from decimal import Decimal

import pytest

from models import (
    Bet,
    BetResult,
    DeclaredBy,
    GameRound,
    LedgerTransaction,
    ResultStatus,
    RoundEvent,
    RoundStatus,
    TransactionType,
)
from core.exceptions import (
    InvalidStateTransition,
    InvalidWinningOption,
    PolicyBreach,
    ResultAlreadyDeclared,
    RoundAlreadyCancelled,
    RoundNotFound,
)
import core.round_manager as round_manager_module
import core.settlement as settlement_module
from core.round_manager import RoundManager
from core.state_machine import RoundStateMachine
from core.wallet_ledger import get_balance
from services.outcome_selector import SelectedRank
from factories import fund


def _place(db, bet_manager, round_id, user_id, bet_type, selection, amount, balance=None):
    fund(db, user_id, balance if balance is not None else amount)
    return bet_manager.place_bet(db, user_id, round_id, bet_type, selection, amount)


def _active_count(db):
    return db.query(GameRound).filter(GameRound.active_slot.isnot(None)).count()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateRound:
    def test_first_round_of_day(self, db, round_manager) -> None:
        round_obj = round_manager.create_round(db)
        assert round_obj.period == "202610180001"
        assert round_obj.status == RoundStatus.OPEN
        assert round_obj.result_status == ResultStatus.PENDING
        assert round_obj.active_slot == 1

        event = db.query(RoundEvent).filter(RoundEvent.round_id == round_obj.id).one()
        assert event.event_type == "ROUND_CREATED"

    def test_sequence_increments_after_declaration(self, db, round_manager) -> None:
        first = round_manager.create_round(db)
        round_manager.declare_result(db, first.id, 4, "admin")
        second = round_manager.ensure_active_round(db)
        assert second.period == "202610180002"

    def test_sequence_resets_next_day(self, db, round_manager, clock) -> None:
        first = round_manager.create_round(db)
        round_manager.cancel_round(db, first.id, "admin")
        clock.advance(24 * 3600)
        assert round_manager.create_round(db).period == "202610190001"

    def test_only_one_active_round(self, db, round_manager) -> None:
        first = round_manager.create_round(db)
        # a second create while one is active hits the active_slot constraint
        again = round_manager.create_round(db)
        assert again.id == first.id
        assert _active_count(db) == 1

    def test_ensure_active_round_is_idempotent(self, db, round_manager) -> None:
        first = round_manager.ensure_active_round(db)
        second = round_manager.ensure_active_round(db)
        assert first.id == second.id
        assert db.query(GameRound).count() == 1

    def test_get_round_by_id_missing(self, db, round_manager) -> None:
        with pytest.raises(RoundNotFound):
            round_manager.get_round_by_id(db, "nope")


# ---------------------------------------------------------------------------
# Admin transitions
# ---------------------------------------------------------------------------


class TestAdminTransitions:
    def test_pause_and_resume(self, db, round_manager, open_round) -> None:
        paused = round_manager.pause_round(db, open_round.id, "admin")
        assert paused.status == RoundStatus.PAUSED
        resumed = round_manager.resume_round(db, open_round.id, "admin")
        assert resumed.status == RoundStatus.OPEN

        events = (
            db.query(RoundEvent)
            .filter(RoundEvent.round_id == open_round.id, RoundEvent.event_type == "ROUND_STATE_CHANGED")
            .order_by(RoundEvent.id)
            .all()
        )
        assert [(e.data["from"], e.data["to"]) for e in events] == [("OPEN", "PAUSED"), ("PAUSED", "OPEN")]
        assert events[0].data["admin_id"] == "admin"

    def test_resume_open_round_rejected(self, db, round_manager, open_round) -> None:
        with pytest.raises(InvalidStateTransition):
            round_manager.resume_round(db, open_round.id)

    def test_pause_twice_rejected(self, db, round_manager, open_round) -> None:
        round_manager.pause_round(db, open_round.id)
        with pytest.raises(InvalidStateTransition):
            round_manager.pause_round(db, open_round.id)

    def test_close_then_resume_rejected(self, db, round_manager, open_round) -> None:
        round_manager.close_round(db, open_round.id)
        with pytest.raises(InvalidStateTransition):
            round_manager.resume_round(db, open_round.id)

    def test_transitions_rejected_after_declaration(self, db, round_manager, open_round) -> None:
        round_manager.declare_result(db, open_round.id, "SMALL", "admin")
        for action in (round_manager.pause_round, round_manager.resume_round, round_manager.close_round):
            with pytest.raises(ResultAlreadyDeclared):
                action(db, open_round.id)

    def test_unknown_round(self, db, round_manager) -> None:
        with pytest.raises(RoundNotFound):
            round_manager.pause_round(db, "missing")

    def test_transition_table(self) -> None:
        assert RoundStateMachine.can_transition(RoundStatus.OPEN, RoundStatus.PAUSED)
        assert RoundStateMachine.can_transition(RoundStatus.CLOSED, RoundStatus.RESULT_DECLARED)
        assert not RoundStateMachine.can_transition(RoundStatus.CLOSED, RoundStatus.OPEN)
        assert not RoundStateMachine.can_transition(RoundStatus.CANCELLED, RoundStatus.OPEN)
        assert not RoundStateMachine.can_transition(RoundStatus.RESULT_DECLARED, RoundStatus.CANCELLED)


# ---------------------------------------------------------------------------
# Declaration
# ---------------------------------------------------------------------------


class TestDeclaration:
    def test_admin_declaration_snapshot(self, db, bet_manager, round_manager, open_round) -> None:
        _place(db, bet_manager, open_round.id, "a", "COLOR", "RED", 100)
        _place(db, bet_manager, open_round.id, "b", "NUMBER", 9, 100)

        summary = round_manager.declare_result(db, open_round.id, "GREEN", "admin-1")

        # GREEN resolves to its first digit
        assert summary.number == 1
        assert summary.declared_by == DeclaredBy.ADMIN
        assert summary.rank == SelectedRank.ADMIN_DECLARED
        assert summary.warning is None

        round_obj = round_manager.get_round_by_id(db, open_round.id)
        assert round_obj.status == RoundStatus.RESULT_DECLARED
        assert round_obj.result_status == ResultStatus.DECLARED
        assert round_obj.active_slot is None
        assert round_obj.end_time is not None
        assert round_obj.declared_at is not None
        assert round_obj.result_declared_by == DeclaredBy.ADMIN
        assert round_obj.declared_by_admin_id == "admin-1"
        assert round_obj.total_collection == Decimal("200.00")
        assert round_obj.total_payout == Decimal("0.00")
        assert round_obj.profit == Decimal("200.00")
        assert round_obj.is_profitable is True
        assert round_obj.loss_amount == Decimal("0.00")
        assert round_obj.selected_result_rank == SelectedRank.ADMIN_DECLARED
        assert len(round_obj.calculation_data["candidates"]) == 10

    def test_scenario_e_policy_breach_leaves_round_open(self, db, bet_manager, round_manager,
                                                       open_round) -> None:
        _place(db, bet_manager, open_round.id, "a", "NUMBER", 7, 800)
        _place(db, bet_manager, open_round.id, "b", "COLOR", "RED", 1000)

        with pytest.raises(PolicyBreach):
            round_manager.declare_result(db, open_round.id, 7, "admin")

        round_obj = round_manager.get_round_by_id(db, open_round.id)
        assert round_obj.status == RoundStatus.OPEN
        assert round_obj.result_status == ResultStatus.PENDING
        assert round_obj.number is None
        assert db.query(Bet).filter(Bet.result == BetResult.PENDING).count() == 2

    def test_invalid_target_leaves_round_open(self, db, round_manager, open_round) -> None:
        with pytest.raises(InvalidWinningOption):
            round_manager.declare_result(db, open_round.id, "ORANGE", "admin")
        assert round_manager.get_round_by_id(db, open_round.id).status == RoundStatus.OPEN

    def test_declare_twice_rejected(self, db, round_manager, open_round) -> None:
        round_manager.declare_result(db, open_round.id, 2, "admin")
        with pytest.raises(ResultAlreadyDeclared):
            round_manager.declare_result(db, open_round.id, 3, "admin")
        assert round_manager.get_round_by_id(db, open_round.id).number == 2

    def test_no_bets_declaration(self, db, round_manager, open_round) -> None:
        summary = round_manager.declare_result(db, open_round.id, 6, "admin")
        assert summary.warning == "No bets placed"
        assert summary.is_profitable is True
        assert summary.settled_bets == 0

    def test_auto_declare_uses_weighted_selection(self, db, bet_manager, round_manager,
                                                  open_round, rng) -> None:
        _place(db, bet_manager, open_round.id, "a", "NUMBER", 3, 100)
        rng.push(0.0)

        summary = round_manager.auto_declare(db, open_round.id)

        assert summary.declared_by == DeclaredBy.SYSTEM
        assert summary.rank == SelectedRank.HIGH_PROFIT
        assert summary.number != 3
        assert round_manager.get_round_by_id(db, open_round.id).result_declared_by == DeclaredBy.SYSTEM

    def test_declaring_closed_round(self, db, round_manager, open_round) -> None:
        round_manager.close_round(db, open_round.id)
        summary = round_manager.declare_result(db, open_round.id, 0, "admin")
        assert summary.number == 0

    def test_notifier_receives_declaration(self, db, round_manager, open_round, notifier) -> None:
        round_manager.declare_result(db, open_round.id, 5, "admin")
        assert len(notifier.declared) == 1
        round_id, summary, snapshot = notifier.declared[0]
        assert round_id == open_round.id
        assert summary.number == 5
        assert snapshot["result_status"] == "DECLARED"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_scenario_f_refunds_every_pending_bet(self, db, bet_manager, round_manager,
                                                  open_round, notifier) -> None:
        _place(db, bet_manager, open_round.id, "a", "COLOR", "RED", 50, balance=100)
        _place(db, bet_manager, open_round.id, "b", "NUMBER", 3, 75, balance=100)
        _place(db, bet_manager, open_round.id, "c", "SIZE", "BIG", 20, balance=100)
        assert get_balance(db, "a") == Decimal("50.00")

        summary = round_manager.cancel_round(db, open_round.id, "admin", "stream outage")

        assert summary.refunded_bets == 3
        assert summary.refunded_amount == Decimal("145.00")
        assert summary.complete is True
        for user in ("a", "b", "c"):
            assert get_balance(db, user) == Decimal("100.00")

        bets = db.query(Bet).filter(Bet.round_id == open_round.id).all()
        assert {b.result for b in bets} == {BetResult.CANCELLED}
        assert {b.win_amount for b in bets} == {Decimal("0.00")}

        refunds = db.query(LedgerTransaction).filter(LedgerTransaction.type == TransactionType.REFUND).all()
        assert sorted(r.amount for r in refunds) == [Decimal("20.00"), Decimal("50.00"), Decimal("75.00")]

        round_obj = round_manager.get_round_by_id(db, open_round.id)
        assert round_obj.status == RoundStatus.CANCELLED
        assert round_obj.active_slot is None
        assert len(notifier.cancelled) == 1

    def test_declare_after_cancel_rejected(self, db, round_manager, open_round) -> None:
        round_manager.cancel_round(db, open_round.id, "admin")
        with pytest.raises(RoundAlreadyCancelled):
            round_manager.declare_result(db, open_round.id, 1, "admin")

    def test_cancel_after_declare_rejected(self, db, round_manager, open_round) -> None:
        round_manager.declare_result(db, open_round.id, 1, "admin")
        with pytest.raises(ResultAlreadyDeclared):
            round_manager.cancel_round(db, open_round.id, "admin")

    def test_cancel_twice_rejected(self, db, round_manager, open_round) -> None:
        round_manager.cancel_round(db, open_round.id, "admin")
        with pytest.raises(RoundAlreadyCancelled):
            round_manager.cancel_round(db, open_round.id, "admin")

    def test_cancel_paused_round(self, db, round_manager, open_round) -> None:
        round_manager.pause_round(db, open_round.id)
        summary = round_manager.cancel_round(db, open_round.id)
        assert summary.refunded_bets == 0


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestRetention:
    def test_prunes_oldest_declared_rounds(self, db, settings, services, clock) -> None:
        settings.retention_rounds = 3
        manager = RoundManager(settings, notifier=services.notifier, clock=clock)

        periods = []
        for _ in range(5):
            round_obj = manager.ensure_active_round(db)
            periods.append(round_obj.period)
            manager.declare_result(db, round_obj.id, 1, "admin")
            clock.advance(1)

        remaining = [r.period for r in db.query(GameRound).order_by(GameRound.period).all()]
        assert remaining == periods[-3:]

    def test_prune_removes_bets_and_events(self, db, settings, services, clock) -> None:
        settings.retention_rounds = 1
        manager = RoundManager(settings, notifier=services.notifier, clock=clock)

        first = manager.ensure_active_round(db)
        fund(db, "a", 100)
        fund(db, "b", 100)
        services.bets.place_bet(db, "a", first.id, "SIZE", "BIG", 10)
        services.bets.place_bet(db, "b", first.id, "SIZE", "SMALL", 100)
        first_id = first.id
        manager.declare_result(db, first_id, 9, "admin")
        clock.advance(1)

        second = manager.ensure_active_round(db)
        manager.declare_result(db, second.id, 9, "admin")

        assert db.query(GameRound).filter(GameRound.id == first_id).count() == 0
        assert db.query(Bet).filter(Bet.round_id == first_id).count() == 0
        assert db.query(RoundEvent).filter(RoundEvent.round_id == first_id).count() == 0
        # the win was paid before the round was pruned
        assert get_balance(db, "a") == Decimal("109.50")

    def test_keeps_everything_under_cap(self, db, round_manager, open_round) -> None:
        round_manager.declare_result(db, open_round.id, 1, "admin")
        assert round_manager.cleanup_old_rounds(db) == 0

    def test_unsettled_round_survives_pruning(self, db, settings, services, clock, monkeypatch) -> None:
        settings.retention_rounds = 1
        manager = RoundManager(settings, notifier=services.notifier, clock=clock)

        first = manager.ensure_active_round(db)
        first_id = first.id
        _place(db, services.bets, first_id, "a", "SIZE", "BIG", 100)
        _place(db, services.bets, first_id, "b", "SIZE", "SMALL", 100)
        _place(db, services.bets, first_id, "c", "SIZE", "SMALL", 100)

        def broken_credit(session, user_id, amount):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(settlement_module, "credit_wallet", broken_credit)
        summary = manager.declare_result(db, first_id, 9, "admin")
        assert summary.settlement_complete is False
        monkeypatch.undo()

        clock.advance(1)
        second = manager.ensure_active_round(db)
        manager.declare_result(db, second.id, 4, "admin")

        # still waiting for settlement, so it is kept over the cap
        assert db.query(GameRound).filter(GameRound.id == first_id).count() == 1
        assert db.query(Bet).filter(Bet.round_id == first_id).count() == 3

        manager.resume_pending_settlements(db)
        assert get_balance(db, "a") == Decimal("195.00")

        clock.advance(1)
        third = manager.ensure_active_round(db)
        manager.declare_result(db, third.id, 4, "admin")
        assert db.query(GameRound).filter(GameRound.id == first_id).count() == 0


# ---------------------------------------------------------------------------
# Concurrent changes during declaration
# ---------------------------------------------------------------------------


class TestDeclarationRace:
    def test_bet_placed_after_liability_read_aborts_declaration(
        self, db, session_factory, bet_manager, round_manager, open_round, monkeypatch
    ) -> None:
        _place(db, bet_manager, open_round.id, "a", "SIZE", "BIG", 100)
        _place(db, bet_manager, open_round.id, "b", "SIZE", "SMALL", 100)
        real_liability = round_manager_module.calculate_round_liability

        def liability_then_late_bet(session, round_id, policy):
            report = real_liability(session, round_id, policy)
            other = session_factory()
            try:
                _place(other, bet_manager, round_id, "late", "COLOR", "RED", 50)
            finally:
                other.close()
            return report

        monkeypatch.setattr(round_manager_module, "calculate_round_liability", liability_then_late_bet)
        with pytest.raises(InvalidStateTransition, match="changed concurrently"):
            round_manager.declare_result(db, open_round.id, 9, "admin")

        db.expire_all()
        round_obj = round_manager.get_round_by_id(db, open_round.id)
        assert round_obj.status == RoundStatus.OPEN
        assert round_obj.result_status == ResultStatus.PENDING
        assert round_obj.bet_count == 3

        # the retry sees the late bet and settles it with the others
        monkeypatch.undo()
        summary = round_manager.declare_result(db, open_round.id, 9, "admin")
        assert summary.settled_bets == 3
        assert summary.total_collection == Decimal("250.00")
        late = db.query(Bet).filter(Bet.user_id == "late").one()
        assert late.result == BetResult.LOST

    def test_stale_round_object_rejected(self, db, session_factory, round_manager,
                                         open_round, clock) -> None:
        assert open_round.status == RoundStatus.OPEN

        other = session_factory()
        try:
            round_manager.pause_round(other, open_round.id, "admin")
        finally:
            other.close()

        # db still holds the OPEN copy, so only the guarded UPDATE notices
        with pytest.raises(InvalidStateTransition, match="changed concurrently"):
            RoundStateMachine.transition(db, open_round, RoundStatus.CLOSED, clock())
        db.rollback()

        assert round_manager.get_round_by_id(db, open_round.id).status == RoundStatus.PAUSED


# ---------------------------------------------------------------------------
# Resuming interrupted settlements
# ---------------------------------------------------------------------------


class TestResumePendingSettlements:
    def test_failing_round_does_not_block_others(self, db, services, round_manager, clock,
                                                 monkeypatch) -> None:
        def broken_credit(session, user_id, amount):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(settlement_module, "credit_wallet", broken_credit)

        first = round_manager.ensure_active_round(db)
        first_id = first.id
        _place(db, services.bets, first_id, "a", "SIZE", "BIG", 100)
        _place(db, services.bets, first_id, "b", "SIZE", "SMALL", 100)
        round_manager.declare_result(db, first_id, 9, "admin")

        clock.advance(1)
        second = round_manager.ensure_active_round(db)
        second_id = second.id
        _place(db, services.bets, second_id, "c", "SIZE", "BIG", 100)
        _place(db, services.bets, second_id, "d", "SIZE", "SMALL", 100)
        round_manager.declare_result(db, second_id, 9, "admin")
        monkeypatch.undo()

        real_settle = round_manager.settlement.settle_round

        def settle_except_first(session, round_id, digit):
            if round_id == first_id:
                raise RuntimeError("still broken")
            return real_settle(session, round_id, digit)

        monkeypatch.setattr(round_manager.settlement, "settle_round", settle_except_first)
        results = round_manager.resume_pending_settlements(db)

        assert [r.round_id for r in results] == [second_id]
        assert get_balance(db, "c") == Decimal("195.00")
        assert get_balance(db, "a") == Decimal("0.00")
        pending = db.query(Bet).filter(Bet.result == BetResult.PENDING).all()
        assert {bet.round_id for bet in pending} == {first_id}
