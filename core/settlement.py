"""
結算引擎：依開獎數字結算回合內每一筆注單

設計：
- 開始前一次讀出所有 PENDING 注單（純資料 tuple，不會在迴圈中重新讀取）
- 每筆注單一個 transaction：
    UPDATE bets SET result, win_amount WHERE id = :id AND result = 'PENDING'
  只有條件成立（rowcount = 1）時才入帳、寫帳務紀錄
- 已結算的注單會被跳過，所以中途失敗後重跑只會處理剩下的注單（冪等）

取消回合的退款也走同樣的流程（CANCELLED + REFUND）
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models import Bet, BetResult, TransactionType, utcnow
from core.wallet_ledger import append_ledger_transaction, credit_wallet
from database import transactional
from services.payoff_service import ZERO, calculate_payout, to_money
from services.taxonomy_service import Selection

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    round_id: str
    processed: int = 0
    won: int = 0
    lost: int = 0
    refunded: int = 0
    skipped: int = 0
    total_paid: Decimal = ZERO


class SettlementEngine:
    """結算引擎（無狀態）"""

    @staticmethod
    def _pending_rows(db: Session, round_id: str) -> List:
        return (
            db.query(Bet.id, Bet.user_id, Bet.bet_type, Bet.selection, Bet.amount)
            .filter(Bet.round_id == round_id, Bet.result == BetResult.PENDING)
            .order_by(Bet.created_at, Bet.id)
            .all()
        )

    def settle_round(self, db: Session, round_id: str, digit: int) -> SettlementResult:
        """
        結算回合內所有 PENDING 注單

        參數：
            db: SQLAlchemy Session
            round_id: 回合 id
            digit: 開獎數字

        返回：
            SettlementResult

        異常：
            任何資料庫錯誤都會往上拋；已完成的注單保持已結算，
            下次呼叫只會處理剩下的注單
        """
        result = SettlementResult(round_id=round_id)
        rows = self._pending_rows(db, round_id)

        for row in rows:
            payout = self._settle_bet(db, row, digit)
            if payout is None:
                result.skipped += 1
                continue
            result.processed += 1
            if payout > 0:
                result.won += 1
                result.total_paid += payout
            else:
                result.lost += 1

        logger.info(
            f"Settled round {round_id} with {digit}: {result.processed} bets "
            f"({result.won} won, {result.lost} lost, {result.skipped} skipped), paid {result.total_paid}"
        )
        return result

    @transactional
    def _settle_bet(self, db: Session, row, digit: int) -> Optional[Decimal]:
        """
        結算單一注單（原子單位）

        返回：
            派彩金額（輸了是 0），注單已經不是 PENDING 時返回 None
        """
        selection = Selection.from_canonical(row.bet_type, row.selection)
        payout = calculate_payout(selection, row.amount, digit)
        won = payout > 0

        updated = (
            db.query(Bet)
            .filter(Bet.id == row.id, Bet.result == BetResult.PENDING)
            .update(
                {
                    Bet.result: BetResult.WON if won else BetResult.LOST,
                    Bet.win_amount: payout,
                    Bet.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            logger.debug(f"Bet {row.id} already settled, skipping")
            return None

        if won:
            credit_wallet(db, row.user_id, payout)
            append_ledger_transaction(
                db,
                row.user_id,
                TransactionType.BET_WON,
                payout,
                reference_id=row.id,
                description=f"Won bet on {selection}",
            )
        return payout

    def refund_round(self, db: Session, round_id: str, period: str = "") -> SettlementResult:
        """
        退還回合內所有 PENDING 注單的本金（取消回合用）

        與 settle_round 相同，可重複呼叫
        """
        result = SettlementResult(round_id=round_id)
        rows = self._pending_rows(db, round_id)

        for row in rows:
            refunded = self._refund_bet(db, row, period or round_id)
            if refunded is None:
                result.skipped += 1
                continue
            result.processed += 1
            result.refunded += 1
            result.total_paid += refunded

        logger.info(f"Refunded {result.refunded} bets ({result.total_paid}) for round {round_id}")
        return result

    @transactional
    def _refund_bet(self, db: Session, row, period: str) -> Optional[Decimal]:
        stake = to_money(row.amount)
        updated = (
            db.query(Bet)
            .filter(Bet.id == row.id, Bet.result == BetResult.PENDING)
            .update(
                {Bet.result: BetResult.CANCELLED, Bet.win_amount: ZERO, Bet.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        if not updated:
            return None

        credit_wallet(db, row.user_id, stake)
        append_ledger_transaction(
            db,
            row.user_id,
            TransactionType.REFUND,
            stake,
            reference_id=row.id,
            description=f"Refund for cancelled round {period}",
        )
        return stake
