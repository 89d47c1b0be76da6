"""
History service.

Builds the declared-round history and a per-user bet history so the frontend
can render authoritative results directly from the server.
"""
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models import Bet, BetType, GameRound, ResultStatus, RoundStatus
from core.exceptions import RoundNotFound
from services.payoff_service import ZERO, to_money


def _page_bounds(page: int, limit: int) -> Tuple[int, int]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    return (page - 1) * limit, limit


def get_game_history(db: Session, page: int = 1, limit: int = 10) -> Tuple[List[GameRound], int]:
    """Declared rounds, newest first, plus the total declared count."""
    offset, limit = _page_bounds(page, limit)
    query = db.query(GameRound).filter(GameRound.result_status == ResultStatus.DECLARED)
    total = query.count()
    rounds = (
        query.order_by(GameRound.declared_at.desc(), GameRound.period.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rounds, total


def get_user_bet_history(db: Session, user_id: str, page: int = 1,
                         limit: int = 10) -> Tuple[List[Dict[str, Any]], int]:
    """
    Return the user's bets, newest first, each joined with its round outcome.

    Bets on rounds that are not declared yet carry None for the outcome
    fields, so the structure stays the same for pending and settled bets.
    """
    offset, limit = _page_bounds(page, limit)
    query = (
        db.query(Bet, GameRound)
        .join(GameRound, Bet.round_id == GameRound.id)
        .filter(Bet.user_id == user_id)
    )
    total = query.count()
    rows = (
        query.order_by(Bet.created_at.desc(), Bet.id)
        .offset(offset)
        .limit(limit)
        .all()
    )

    history: List[Dict[str, Any]] = []
    for bet, round_obj in rows:
        entry: Dict[str, Any] = {
            "bet_id": bet.id,
            "round_id": round_obj.id,
            "period": round_obj.period,
            "bet_type": bet.bet_type,
            "selection": bet.selection,
            "amount": bet.amount,
            "potential_win": bet.potential_win,
            "result": bet.result,
            "win_amount": bet.win_amount,
            "created_at": bet.created_at,
            "round_status": round_obj.status,
        }

        if round_obj.result_status == ResultStatus.DECLARED:
            entry["winning_number"] = round_obj.number
            entry["winning_color"] = round_obj.winning_color
            entry["winning_size"] = round_obj.winning_size
        else:
            # Outcome not published yet
            entry["winning_number"] = None
            entry["winning_color"] = None
            entry["winning_size"] = None

        history.append(entry)

    return history, total


def get_rounds(db: Session, page: int = 1, limit: int = 10,
               status: Optional[RoundStatus] = None) -> Tuple[List[GameRound], int]:
    """Every round regardless of outcome, newest first, optionally filtered by status."""
    offset, limit = _page_bounds(page, limit)
    query = db.query(GameRound)
    if status is not None:
        query = query.filter(GameRound.status == status)
    total = query.count()
    rounds = (
        query.order_by(GameRound.start_time.desc(), GameRound.period.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rounds, total


def get_round_details(db: Session, round_id: str) -> Dict[str, Any]:
    """
    One round with all of its bets in placement order and per-family counts.

    Raises RoundNotFound for an unknown id.
    """
    round_obj = db.query(GameRound).filter(GameRound.id == round_id).first()
    if not round_obj:
        raise RoundNotFound(round_id)

    bets = (
        db.query(Bet)
        .filter(Bet.round_id == round_id)
        .order_by(Bet.created_at, Bet.id)
        .all()
    )
    stats = {
        "total_bets": len(bets),
        "total_amount": to_money(sum((bet.amount for bet in bets), ZERO)),
        "color_bets": sum(1 for bet in bets if bet.bet_type == BetType.COLOR),
        "number_bets": sum(1 for bet in bets if bet.bet_type == BetType.NUMBER),
        "size_bets": sum(1 for bet in bets if bet.bet_type == BetType.SIZE),
    }
    return {"round": round_obj, "bets": bets, "stats": stats}
