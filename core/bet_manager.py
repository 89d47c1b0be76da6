"""
Bet Manager：管理注單的建立與查詢

職責：
1. 下注（回合狀態檢查 + 扣款 + 建立注單 + 帳務紀錄，同一個 transaction）
2. 查詢回合內尚未結算的注單

並發設計：
- 回合狀態：帶條件的 UPDATE（status = OPEN 才會成功），與暫停/開獎互斥
- 餘額：帶條件的 UPDATE（balance >= amount 才會成功）
- 一人一注：資料庫 unique(user_id, round_id)，不先查再寫
"""
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Bet, BetResult, GameRound, ResultStatus, RoundStatus, TransactionType
from core.exceptions import (
    DuplicateBet,
    InvalidBetAmount,
    ResultAlreadyDeclared,
    RoundAlreadyCancelled,
    RoundNotFound,
    RoundNotOpen,
)
from core.locks import with_round_lock
from core.wallet_ledger import append_ledger_transaction, debit_wallet
from database import transactional
from services.liability_service import ProfitPolicy
from services.notifier import RoundNotifier
from services.payoff_service import potential_win, to_money
from services.risk_service import build_liability_snapshot
from services.taxonomy_service import Selection

logger = logging.getLogger(__name__)


def get_open_bets_for_round(db: Session, round_id: str) -> List[Bet]:
    """回合內所有尚未結算（PENDING）的注單，依下注順序"""
    return (
        db.query(Bet)
        .filter(Bet.round_id == round_id, Bet.result == BetResult.PENDING)
        .order_by(Bet.created_at, Bet.id)
        .all()
    )


def ensure_round_open(round_obj: GameRound) -> None:
    """
    檢查回合是否接受下注

    異常：
        ResultAlreadyDeclared / RoundAlreadyCancelled / RoundNotOpen
    """
    if round_obj.result_status == ResultStatus.DECLARED or round_obj.status == RoundStatus.RESULT_DECLARED:
        raise ResultAlreadyDeclared(round_obj.id)
    if round_obj.status == RoundStatus.CANCELLED:
        raise RoundAlreadyCancelled(round_obj.id)
    if round_obj.status != RoundStatus.OPEN:
        raise RoundNotOpen(round_obj.id, round_obj.status.value)


class BetManager:
    """注單管理器"""

    def __init__(self, settings, notifier: Optional[RoundNotifier] = None):
        self.min_bet = to_money(settings.min_bet)
        self.max_bet = to_money(settings.max_bet)
        self.policy = ProfitPolicy.from_settings(settings)
        self.notifier = notifier or RoundNotifier()

    def validate_amount(self, amount) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise InvalidBetAmount(f"Invalid bet amount {amount!r}")

        if not value.is_finite() or value <= 0:
            raise InvalidBetAmount(f"Bet amount must be positive, got {amount!r}")

        value = to_money(value)
        if value < self.min_bet:
            raise InvalidBetAmount(f"Minimum bet is {self.min_bet}")
        if value > self.max_bet:
            raise InvalidBetAmount(f"Maximum bet is {self.max_bet}")
        return value

    def place_bet(self, db: Session, user_id: str, round_id: str, bet_type, selection, amount) -> Bet:
        """
        下注，成功後通知即時風控面板

        參數：
            db: SQLAlchemy Session
            user_id: 玩家 id
            round_id: 回合 id
            bet_type: COLOR / NUMBER / SIZE
            selection: 顏色、大小或數字（不分大小寫）
            amount: 下注金額

        返回：
            新建立的 Bet

        異常：
            ValidationRejection: 類型/選項/金額不合法
            RoundNotFound: 回合不存在
            StateConflict: 回合不接受下注、重複下注、餘額不足
        """
        bet = self._insert_bet(db, user_id, round_id, bet_type, selection, amount)
        logger.info(f"Bet placed: {bet.id} by user {user_id} on round {round_id} ({bet.bet_type.value}:{bet.selection} {bet.amount})")

        try:
            snapshot = build_liability_snapshot(db, round_id, self.policy)
            self.notifier.bet_placed(round_id, snapshot)
        except Exception as e:
            logger.error(f"Error notifying bet placement for round {round_id}: {e}", exc_info=True)

        return bet

    @transactional
    def _insert_bet(self, db: Session, user_id: str, round_id: str, bet_type, selection, amount) -> Bet:
        """
        建立注單（原子單位）

        流程：
        1. 解析選項與金額（不合法直接拒絕，不寫任何東西）
        2. 鎖定回合並檢查狀態
        3. 帶條件的 UPDATE 再確認一次 OPEN（bet_count + 1）
        4. 扣款
        5. 建立注單（unique 衝突 = 重複下注）
        6. 帳務紀錄 BET_PLACED
        """
        target = Selection.parse(bet_type, selection)
        stake = self.validate_amount(amount)

        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        ensure_round_open(round_obj)

        still_open = (
            db.query(GameRound)
            .filter(
                GameRound.id == round_id,
                GameRound.status == RoundStatus.OPEN,
                GameRound.result_status == ResultStatus.PENDING,
            )
            .update({GameRound.bet_count: GameRound.bet_count + 1}, synchronize_session=False)
        )
        if not still_open:
            raise RoundNotOpen(round_id, "CHANGED")

        debit_wallet(db, user_id, stake)

        bet = Bet(
            user_id=user_id,
            round_id=round_id,
            bet_type=target.bet_type,
            selection=target.canonical,
            amount=stake,
            potential_win=potential_win(target, stake),
            result=BetResult.PENDING,
        )
        db.add(bet)
        try:
            db.flush()
        except IntegrityError:
            raise DuplicateBet(user_id, round_id)

        append_ledger_transaction(
            db,
            user_id,
            TransactionType.BET_PLACED,
            stake,
            reference_id=bet.id,
            description=f"Bet placed on {target}",
        )
        return bet

    def get_user_round_bet(self, db: Session, user_id: str, round_id: str) -> Optional[Bet]:
        """玩家在回合內的注單，沒有下注時返回 None"""
        return (
            db.query(Bet)
            .filter(Bet.user_id == user_id, Bet.round_id == round_id)
            .first()
        )
