"""
開獎結果選擇器

兩種模式：
- 系統模式（select_system_outcome）：依利潤排名加權隨機選擇
- Admin 模式（select_admin_outcome）：驗證 Admin 指定的結果是否在虧損上限內

純計算邏輯，不寫資料庫；隨機來源由呼叫者注入（方便測試）
"""
import logging
import random
from dataclasses import dataclass
from typing import Optional

from models import Color, Size
from core.exceptions import PolicyBreach
from services.liability_service import LiabilityReport, OutcomeCandidate, ProfitPolicy
from services.taxonomy_service import DIGITS, color_of, resolve_winning_option, size_of

logger = logging.getLogger(__name__)


class SelectedRank:
    """開獎結果來自哪一個加權區間（寫入回合紀錄供稽核）"""
    HIGH_PROFIT = "HIGH_PROFIT"
    MEDIUM_PROFIT = "MEDIUM_PROFIT"
    RANDOM = "RANDOM"
    LEAST_LOSS = "LEAST_LOSS"
    RANDOM_NO_BETS = "RANDOM_NO_BETS"
    ADMIN_DECLARED = "ADMIN_DECLARED"


@dataclass(frozen=True)
class OutcomeSelection:
    number: int
    color: Color
    size: Size
    rank: str
    candidate: Optional[OutcomeCandidate] = None
    report: Optional[LiabilityReport] = None
    warning: Optional[str] = None

    @classmethod
    def for_digit(cls, digit: int, rank: str, report: Optional[LiabilityReport] = None,
                  warning: Optional[str] = None) -> "OutcomeSelection":
        candidate = report.candidate_for(digit) if report is not None else None
        return cls(
            number=digit,
            color=color_of(digit),
            size=size_of(digit),
            rank=rank,
            candidate=candidate,
            report=report,
            warning=warning,
        )


def select_system_outcome(report: Optional[LiabilityReport], policy: ProfitPolicy,
                          rng: random.Random) -> OutcomeSelection:
    """
    系統自動選擇開獎結果

    流程：
    1. 沒有注單：0-9 均勻隨機
    2. 過濾出可接受（虧損不超過上限）的結果
       - 一個都沒有：選虧損最少的（排名第一），並記錄 warning
    3. 加權隨機：
       - 70%：利潤最高的可接受結果
       - 20%：獲利結果中排名居中的那一個（獲利結果少於 2 個時退回最高者）
       - 10%：可接受結果中均勻隨機

    參數：
        report: calculate_liability() 的結果（None 表示沒有注單）
        policy: 利潤政策（權重、虧損上限）
        rng: 隨機來源

    返回：
        OutcomeSelection（含選中的區間與完整排名）
    """
    if report is None:
        return OutcomeSelection.for_digit(rng.randrange(len(DIGITS)), SelectedRank.RANDOM_NO_BETS)

    acceptable = report.acceptable
    if not acceptable:
        least_loss = report.candidates[0]
        logger.warning(
            f"No acceptable result within max loss {policy.max_loss_per_round}; "
            f"selecting least loss option {least_loss.number} (profit {least_loss.profit})"
        )
        return OutcomeSelection.for_digit(least_loss.number, SelectedRank.LEAST_LOSS, report)

    profitable = [c for c in acceptable if c.is_profitable]
    high = acceptable[0]
    medium = profitable[len(profitable) // 2] if len(profitable) >= 2 else high

    roll = rng.random()
    if roll < policy.high_profit_weight:
        selected, rank = high, SelectedRank.HIGH_PROFIT
    elif roll < policy.high_profit_weight + policy.medium_profit_weight:
        selected, rank = medium, SelectedRank.MEDIUM_PROFIT
    else:
        selected, rank = rng.choice(acceptable), SelectedRank.RANDOM

    return OutcomeSelection.for_digit(selected.number, rank, report)


def select_admin_outcome(report: Optional[LiabilityReport], winning_option,
                         policy: ProfitPolicy) -> OutcomeSelection:
    """
    驗證 Admin 指定的開獎結果

    規則：
    - 目標可以是數字、顏色或大小；顏色/大小會取第一個符合的數字作為代表
    - 超過最大虧損上限：PolicyBreach（硬拒絕）
    - 可接受但未達最低利潤：接受，附帶 warning

    異常：
        InvalidWinningOption: 目標無法辨識
        PolicyBreach: 結果超過虧損上限
    """
    digit = resolve_winning_option(winning_option)

    if report is None:
        return OutcomeSelection.for_digit(digit, SelectedRank.ADMIN_DECLARED, warning="No bets placed")

    candidate = report.candidate_for(digit)

    if not candidate.is_acceptable:
        raise PolicyBreach(digit, candidate.profit, policy.max_loss_per_round)

    warning = None
    if not candidate.is_profitable:
        warning = (
            f"Result is not profitable (profit: {candidate.profit_percent:.2f}%). "
            f"Minimum required: {policy.min_profit_percent}%"
        )
        logger.warning(f"[Admin Declare] {warning}")

    return OutcomeSelection.for_digit(digit, SelectedRank.ADMIN_DECLARED, report, warning)
