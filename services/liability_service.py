"""
Liability calculator.

For a closed set of bets, compute what the house would owe for each of the
ten possible digits, and the resulting profit. Pure computation: the only
database access is the optional loader in calculate_round_liability().
"""
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from models import Bet, BetType, Color, Size
from services.payoff_service import ZERO, calculate_payout, to_money
from services.taxonomy_service import DIGITS, color_of, size_of


@dataclass(frozen=True)
class ProfitPolicy:
    """Profit floor / loss bound / selection weights used by the profit engine."""
    min_profit_percent: float = 5.0
    max_loss_per_round: Decimal = ZERO
    high_profit_weight: float = 0.70
    medium_profit_weight: float = 0.20

    @classmethod
    def from_settings(cls, settings) -> "ProfitPolicy":
        return cls(
            min_profit_percent=settings.min_profit_percent,
            max_loss_per_round=to_money(settings.max_loss_per_round),
            high_profit_weight=settings.high_profit_weight,
            medium_profit_weight=settings.medium_profit_weight,
        )


@dataclass(frozen=True)
class OutcomeCandidate:
    number: int
    color: Color
    size: Size
    color_payout: Decimal
    size_payout: Decimal
    number_payout: Decimal
    total_liability: Decimal
    total_collection: Decimal
    profit: Decimal
    profit_percent: float
    is_profitable: bool
    is_acceptable: bool

    def to_dict(self) -> dict:
        data = asdict(self)
        data["color"] = self.color.value
        data["size"] = self.size.value
        for key in ("color_payout", "size_payout", "number_payout",
                    "total_liability", "total_collection", "profit"):
            data[key] = str(data[key])
        return data


@dataclass(frozen=True)
class LiabilityReport:
    total_collection: Decimal
    total_bets: int
    # sorted by profit, highest first; ties keep digit order
    candidates: Tuple[OutcomeCandidate, ...]

    def candidate_for(self, digit: int) -> OutcomeCandidate:
        for candidate in self.candidates:
            if candidate.number == digit:
                return candidate
        raise KeyError(digit)

    @property
    def acceptable(self) -> List[OutcomeCandidate]:
        return [c for c in self.candidates if c.is_acceptable]

    def to_payload(self) -> List[dict]:
        return [c.to_dict() for c in self.candidates]


def _build_candidate(digit: int, bets: List[Bet], total_collection: Decimal,
                     policy: ProfitPolicy) -> OutcomeCandidate:
    payouts = {BetType.COLOR: ZERO, BetType.SIZE: ZERO, BetType.NUMBER: ZERO}

    for bet in bets:
        payouts[bet.bet_type] += calculate_payout(bet.target, bet.amount, digit)

    total_liability = payouts[BetType.COLOR] + payouts[BetType.SIZE] + payouts[BetType.NUMBER]
    profit = total_collection - total_liability
    profit_percent = float(profit / total_collection * 100) if total_collection > 0 else 0.0

    return OutcomeCandidate(
        number=digit,
        color=color_of(digit),
        size=size_of(digit),
        color_payout=payouts[BetType.COLOR],
        size_payout=payouts[BetType.SIZE],
        number_payout=payouts[BetType.NUMBER],
        total_liability=total_liability,
        total_collection=total_collection,
        profit=profit,
        profit_percent=profit_percent,
        is_profitable=profit >= 0 and profit_percent >= policy.min_profit_percent,
        is_acceptable=profit >= -policy.max_loss_per_round,
    )


def calculate_liability(bets: Iterable[Bet], policy: ProfitPolicy) -> Optional[LiabilityReport]:
    """
    Compute liability, collection and profit for every digit 0-9.

    Each bet is evaluated once per candidate digit through the shared payout
    rule, so O(bets x 10).

    Returns None when there are no bets.
    """
    bets = list(bets)
    if not bets:
        return None

    total_collection = sum((to_money(bet.amount) for bet in bets), ZERO)
    candidates = [_build_candidate(digit, bets, total_collection, policy) for digit in DIGITS]

    # sorted() is stable, so equal profits stay in ascending digit order
    ranked = sorted(candidates, key=lambda c: c.profit, reverse=True)

    return LiabilityReport(
        total_collection=total_collection,
        total_bets=len(bets),
        candidates=tuple(ranked),
    )


def calculate_round_liability(db: Session, round_id: str, policy: ProfitPolicy) -> Optional[LiabilityReport]:
    """Load every bet of the round (insertion order) and run calculate_liability()."""
    bets = (
        db.query(Bet)
        .filter(Bet.round_id == round_id)
        .order_by(Bet.created_at, Bet.id)
        .all()
    )
    return calculate_liability(bets, policy)
