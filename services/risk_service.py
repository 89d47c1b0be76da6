"""
風控服務：給 Admin 即時面板用的利潤/風險快照

- build_liability_snapshot：回合的下注分佈、每個結果的利潤與風險等級
- build_preview：開獎前預覽（推薦結果 + 完整排名）
- get_profit_stats：已開獎回合的利潤統計

只讀資料庫，不做任何寫入
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Bet, BetType, Color, DeclaredBy, GameRound, ResultStatus, Size
from core.exceptions import RoundNotFound
from services.liability_service import LiabilityReport, ProfitPolicy, calculate_liability
from services.payoff_service import ZERO, calculate_payout, to_money
from services.taxonomy_service import DIGITS, DUAL_COLOR_DIGITS


class RiskLevel:
    HIGH_LOSS = "HIGH_LOSS"
    MEDIUM_RISK = "MEDIUM_RISK"
    SAFE = "SAFE"
    SAFE_PROFIT = "SAFE_PROFIT"


def classify_risk(profit_percent: float) -> str:
    """
    依利潤百分比分級

    < 0%：HIGH_LOSS
    0% ~ 10%：MEDIUM_RISK
    10% ~ 20%：SAFE
    >= 20%：SAFE_PROFIT
    """
    if profit_percent < 0:
        return RiskLevel.HIGH_LOSS
    if profit_percent < 10:
        return RiskLevel.MEDIUM_RISK
    if profit_percent >= 20:
        return RiskLevel.SAFE_PROFIT
    return RiskLevel.SAFE


def calculate_bet_distribution(bets: Iterable[Bet]) -> Dict[str, Any]:
    """各選項的下注總額"""
    distribution: Dict[str, Any] = {
        "colors": {color.value: ZERO for color in Color},
        "sizes": {size.value: ZERO for size in Size},
        "numbers": {str(digit): ZERO for digit in DIGITS},
        "total_amount": ZERO,
        "total_bets": 0,
    }
    buckets = {BetType.COLOR: "colors", BetType.SIZE: "sizes", BetType.NUMBER: "numbers"}

    for bet in bets:
        amount = to_money(bet.amount)
        distribution["total_amount"] += amount
        distribution["total_bets"] += 1
        distribution[buckets[bet.bet_type]][bet.selection] += amount

    return distribution


def build_result_analysis(report: LiabilityReport, bets: List[Bet]) -> List[Dict[str, Any]]:
    """每個結果（已依利潤排序）的賠付、風險等級、中獎注單數"""
    analysis = []
    for candidate in report.candidates:
        winning_bets = [
            bet for bet in bets
            if calculate_payout(bet.target, bet.amount, candidate.number) > 0
        ]
        dual_color = DUAL_COLOR_DIGITS.get(candidate.number)
        analysis.append({
            "number": candidate.number,
            "color": candidate.color.value,
            "size": candidate.size.value,
            "color_payout": candidate.color_payout,
            "size_payout": candidate.size_payout,
            "number_payout": candidate.number_payout,
            "total_payout": candidate.total_liability,
            "total_collection": candidate.total_collection,
            "profit": candidate.profit,
            "profit_percent": candidate.profit_percent,
            "is_profitable": candidate.is_profitable,
            "is_acceptable": candidate.is_acceptable,
            "risk_level": classify_risk(candidate.profit_percent),
            "is_dual_color": dual_color is not None,
            "dual_colors": [dual_color.value, Color.VIOLET.value] if dual_color else None,
            "winning_bets_count": len(winning_bets),
        })
    return analysis


def calculate_risk_indicators(analysis: List[Dict[str, Any]]) -> Dict[str, Any]:
    high_losses = [r for r in analysis if r["risk_level"] == RiskLevel.HIGH_LOSS]
    profits = [r["profit"] for r in analysis]

    if len(high_losses) > 5:
        overall = "HIGH"
    elif len(high_losses) > 2:
        overall = "MEDIUM"
    else:
        overall = "LOW"

    return {
        "safe_profit_count": sum(1 for r in analysis if r["risk_level"] == RiskLevel.SAFE_PROFIT),
        "medium_risk_count": sum(1 for r in analysis if r["risk_level"] == RiskLevel.MEDIUM_RISK),
        "high_loss_count": len(high_losses),
        "max_profit": max(profits),
        "max_loss": min(profits),
        "avg_profit": to_money(sum(profits, ZERO) / len(profits)),
        "overall_risk": overall,
    }


def _summarize(row: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("number", "color", "size", "profit", "profit_percent", "risk_level")
    return {key: row[key] for key in keys}


def build_liability_snapshot(db: Session, round_id: str, policy: ProfitPolicy) -> Dict[str, Any]:
    """
    產生回合的即時風控快照（推播給 Admin 面板用）

    異常：
        RoundNotFound: 回合不存在
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
    report = calculate_liability(bets, policy)

    snapshot: Dict[str, Any] = {
        "round_id": round_obj.id,
        "period": round_obj.period,
        "status": round_obj.status.value,
        "result_status": round_obj.result_status.value,
        "total_bets": len(bets),
        "total_collection": report.total_collection if report else ZERO,
        "distribution": calculate_bet_distribution(bets),
        "results": [],
        "indicators": None,
        "recommended": None,
        "alternatives": [],
    }

    if report is not None:
        analysis = build_result_analysis(report, bets)
        snapshot["results"] = analysis
        snapshot["indicators"] = calculate_risk_indicators(analysis)
        snapshot["recommended"] = _summarize(analysis[0])
        snapshot["alternatives"] = [_summarize(row) for row in analysis[1:4]]

    return snapshot


def build_preview(report: Optional[LiabilityReport]) -> Dict[str, Any]:
    """開獎前預覽：推薦結果（利潤最高）與完整排名"""
    if report is None:
        return {
            "message": "No bets placed yet",
            "total_collection": ZERO,
            "total_bets": 0,
            "recommended": None,
            "results": [],
        }

    top = report.candidates[0]
    return {
        "message": None,
        "total_collection": report.total_collection,
        "total_bets": report.total_bets,
        "recommended": {
            "number": top.number,
            "color": top.color.value,
            "size": top.size.value,
            "profit": top.profit,
            "profit_percent": top.profit_percent,
        },
        "results": [
            {
                "number": c.number,
                "color": c.color.value,
                "size": c.size.value,
                "total_liability": c.total_liability,
                "profit": c.profit,
                "profit_percent": c.profit_percent,
                "is_profitable": c.is_profitable,
                "is_acceptable": c.is_acceptable,
            }
            for c in report.candidates
        ],
    }


def get_profit_stats(db: Session, start: Optional[datetime] = None,
                     end: Optional[datetime] = None) -> Dict[str, Any]:
    """
    已開獎回合的利潤統計

    參數：
        start / end: declared_at 的範圍（可省略）
    """
    filters = [GameRound.result_status == ResultStatus.DECLARED]
    if start is not None:
        filters.append(GameRound.declared_at >= start)
    if end is not None:
        filters.append(GameRound.declared_at <= end)

    totals = (
        db.query(
            func.count(GameRound.id),
            func.sum(GameRound.total_collection),
            func.sum(GameRound.total_payout),
            func.sum(GameRound.profit),
        )
        .filter(*filters)
        .one()
    )
    total_rounds = totals[0] or 0
    total_collection = to_money(totals[1] or 0)
    total_payout = to_money(totals[2] or 0)
    total_profit = to_money(totals[3] or 0)

    def _count(*extra) -> int:
        return db.query(func.count(GameRound.id)).filter(*filters, *extra).scalar() or 0

    profitable_rounds = _count(GameRound.is_profitable.is_(True))

    return {
        "total_rounds": total_rounds,
        "total_collection": total_collection,
        "total_payout": total_payout,
        "total_profit": total_profit,
        "profitable_rounds": profitable_rounds,
        "loss_rounds": total_rounds - profitable_rounds,
        "admin_declared": _count(GameRound.result_declared_by == DeclaredBy.ADMIN),
        "system_declared": _count(GameRound.result_declared_by == DeclaredBy.SYSTEM),
        "average_profit_percent": (
            float(total_profit / total_collection * 100) if total_collection > 0 else 0.0
        ),
    }
