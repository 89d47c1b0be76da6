"""
Round Manager：管理回合的完整生命週期

職責：
1. 建立回合（期號唯一、同時只有一個進行中回合）
2. 暫停 / 恢復 / 停止下注（Admin）
3. 開獎（Admin 指定或系統自動）+ 結算
4. 取消回合 + 退款
5. 排程器用的批次操作：到期開獎、續跑未完成的結算、清理舊回合

原則：
- 所有狀態變更經過 RoundStateMachine
- 開獎分兩段：先以一個 transaction 翻轉狀態並寫入利潤快照，
  再逐筆結算（每筆注單各自一個 transaction）
- 結算中途失敗不回滾開獎結果，由排程器下一個 tick 續跑
"""
from dataclasses import dataclass
from decimal import Decimal
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import logging
import random

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    Bet,
    BetResult,
    Color,
    DeclaredBy,
    GameRound,
    ResultStatus,
    RoundEvent,
    RoundStatus,
    Size,
    utcnow,
)
from core.exceptions import RoundNotFound, StateConflict
from core.locks import with_round_lock
from core.settlement import SettlementEngine, SettlementResult
from core.state_machine import RoundStateMachine
from database import transactional
from services.liability_service import LiabilityReport, ProfitPolicy, calculate_round_liability
from services.naming_service import generate_period_code
from services.notifier import RoundNotifier
from services.outcome_selector import OutcomeSelection, select_admin_outcome, select_system_outcome
from services.payoff_service import ZERO
from services.risk_service import build_liability_snapshot
from services.round_phase_service import AUTO_EXPIRING_STATUSES, expiry_cutoff

logger = logging.getLogger(__name__)


@dataclass
class DeclarationSummary:
    round_id: str
    period: str
    number: int
    color: Color
    size: Size
    declared_by: DeclaredBy
    rank: str
    total_collection: Decimal
    total_payout: Decimal
    profit: Decimal
    profit_percent: float
    is_profitable: bool
    settled_bets: int
    won_bets: int
    total_paid: Decimal
    warning: Optional[str] = None
    settlement_complete: bool = True


@dataclass
class CancellationSummary:
    round_id: str
    period: str
    refunded_bets: int
    refunded_amount: Decimal
    complete: bool = True


class RoundManager:
    """回合生命週期管理器"""

    def __init__(
        self,
        settings,
        settlement: Optional[SettlementEngine] = None,
        notifier: Optional[RoundNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.round_duration_seconds = settings.round_duration_seconds
        self.retention_rounds = settings.retention_rounds
        self.policy = ProfitPolicy.from_settings(settings)
        self.settlement = settlement or SettlementEngine()
        self.notifier = notifier or RoundNotifier()
        self.clock = clock
        self.rng = rng or random.Random()

    # ============ 查詢 ============

    @staticmethod
    def get_round_by_id(db: Session, round_id: str) -> GameRound:
        """
        透過 id 取得回合

        異常：
            RoundNotFound: 回合不存在
        """
        round_obj = db.query(GameRound).filter(GameRound.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    @staticmethod
    def get_current_round(db: Session) -> Optional[GameRound]:
        """目前進行中（OPEN / PAUSED / CLOSED）的回合，沒有時返回 None"""
        return db.query(GameRound).filter(GameRound.active_slot.isnot(None)).first()

    def _lock_round(self, db: Session, round_id: str) -> GameRound:
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    # ============ 建立回合 ============

    def create_round(self, db: Session, now: Optional[datetime] = None) -> GameRound:
        """
        建立新的 OPEN 回合

        流程：
        1. 生成當日下一個期號
        2. 新增回合（active_slot = 1）與 ROUND_CREATED 事件
        3. commit

        冪等：
        - 同一期號已存在：直接返回既有回合
        - 違反唯一約束（期號撞號或已有進行中回合）：rollback 後返回既有回合

        返回：
            新建立或既有的 GameRound
        """
        now = now or self.clock()
        period = generate_period_code(db, now)

        existing = db.query(GameRound).filter(GameRound.period == period).first()
        if existing:
            return existing

        round_obj = GameRound(
            period=period,
            status=RoundStatus.OPEN,
            result_status=ResultStatus.PENDING,
            active_slot=1,
            start_time=now,
            created_at=now,
            updated_at=now,
        )
        try:
            db.add(round_obj)
            db.flush()
            db.add(RoundEvent(
                round_id=round_obj.id,
                event_type="ROUND_CREATED",
                data={"period": period},
                created_at=now,
            ))
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Round creation for period {period} lost a race, reusing existing round")
            existing = (
                db.query(GameRound).filter(GameRound.period == period).first()
                or self.get_current_round(db)
            )
            if existing is None:
                raise
            return existing

        logger.info(f"Created round {round_obj.id} with period {period}")
        return round_obj

    def ensure_active_round(self, db: Session, now: Optional[datetime] = None) -> GameRound:
        """沒有進行中回合時建立一個新的；有的話直接返回"""
        current = self.get_current_round(db)
        if current:
            return current
        return self.create_round(db, now)

    # ============ Admin 狀態操作 ============

    @transactional
    def _change_status(self, db: Session, round_id: str, target: RoundStatus,
                       admin_id: Optional[str] = None) -> GameRound:
        round_obj = self._lock_round(db, round_id)
        return RoundStateMachine.transition(
            db, round_obj, target, self.clock(), event_data={"admin_id": admin_id}
        )

    def pause_round(self, db: Session, round_id: str, admin_id: Optional[str] = None) -> GameRound:
        """
        暫停下注（OPEN -> PAUSED）

        暫停中的回合不接受下注，也不會被排程器自動開獎

        異常：
            RoundNotFound / StateConflict
        """
        return self._change_status(db, round_id, RoundStatus.PAUSED, admin_id)

    def resume_round(self, db: Session, round_id: str, admin_id: Optional[str] = None) -> GameRound:
        """
        恢復下注（PAUSED -> OPEN）

        start_time 不變：已超過下注時間窗的回合會在下一個 tick 自動開獎
        """
        return self._change_status(db, round_id, RoundStatus.OPEN, admin_id)

    def close_round(self, db: Session, round_id: str, admin_id: Optional[str] = None) -> GameRound:
        """停止下注（OPEN / PAUSED -> CLOSED），等待開獎"""
        return self._change_status(db, round_id, RoundStatus.CLOSED, admin_id)

    # ============ 開獎 ============

    def declare_result(self, db: Session, round_id: str, winning_option,
                       admin_id: Optional[str] = None) -> DeclarationSummary:
        """
        Admin 指定開獎結果

        參數：
            db: SQLAlchemy Session
            round_id: 回合 id
            winning_option: 數字 0-9、顏色或大小（顏色/大小取第一個符合的數字）
            admin_id: 開獎的 Admin

        返回：
            DeclarationSummary（可能帶有未達最低利潤的 warning）

        異常：
            RoundNotFound: 回合不存在
            InvalidWinningOption: 目標無法辨識
            PolicyBreach: 結果超過最大虧損上限（不做任何寫入）
            StateConflict: 已開獎 / 已取消
        """
        round_obj, selection = self._declare(
            db,
            round_id,
            lambda report: select_admin_outcome(report, winning_option, self.policy),
            DeclaredBy.ADMIN,
            admin_id,
        )
        logger.info(f"[Admin Declare] Round {round_obj.period} declared {selection.number} by admin {admin_id}")
        return self._finish_declaration(db, round_obj, selection, DeclaredBy.ADMIN)

    def auto_declare(self, db: Session, round_id: str) -> DeclarationSummary:
        """系統自動開獎（加權隨機，見 select_system_outcome）"""
        round_obj, selection = self._declare(
            db,
            round_id,
            lambda report: select_system_outcome(report, self.policy, self.rng),
            DeclaredBy.SYSTEM,
            None,
        )
        logger.info(
            f"[Auto Declare] Round {round_obj.period} declared {selection.number} "
            f"({selection.rank})"
        )
        return self._finish_declaration(db, round_obj, selection, DeclaredBy.SYSTEM)

    @transactional
    def _declare(
        self,
        db: Session,
        round_id: str,
        choose: Callable[[Optional[LiabilityReport]], OutcomeSelection],
        declared_by: DeclaredBy,
        admin_id: Optional[str],
    ) -> Tuple[GameRound, OutcomeSelection]:
        """
        開獎的第一段（原子單位）

        流程：
        1. 鎖定回合並檢查可以開獎
        2. 重新計算利潤排名並選出結果
        3. 帶條件的 UPDATE：翻轉到 RESULT_DECLARED 並寫入利潤快照
           （注單數必須與第 2 步讀到的相同，否則視為衝突）
        """
        round_obj = self._lock_round(db, round_id)
        RoundStateMachine.validate(round_obj, RoundStatus.RESULT_DECLARED)

        bet_count = round_obj.bet_count
        report = calculate_round_liability(db, round_id, self.policy)
        selection = choose(report)

        self._apply_declaration(db, round_obj, selection, declared_by, admin_id, bet_count)
        return round_obj, selection

    def _apply_declaration(self, db: Session, round_obj: GameRound, selection: OutcomeSelection,
                           declared_by: DeclaredBy, admin_id: Optional[str], bet_count: int) -> None:
        candidate = selection.candidate
        if candidate is not None:
            total_collection = candidate.total_collection
            total_payout = candidate.total_liability
            profit = candidate.profit
            profit_percent = candidate.profit_percent
            is_profitable = candidate.is_profitable
        else:
            # 沒有注單
            total_collection = total_payout = profit = ZERO
            profit_percent = 0.0
            is_profitable = True

        values = {
            "number": selection.number,
            "winning_color": selection.color,
            "winning_size": selection.size,
            "result_declared_by": declared_by,
            "declared_by_admin_id": admin_id,
            "total_collection": total_collection,
            "total_payout": total_payout,
            "profit": profit,
            "profit_percent": profit_percent,
            "is_profitable": is_profitable,
            "loss_amount": -profit if profit < 0 else ZERO,
            "selected_result_rank": selection.rank,
            "calculation_data": {
                "selected_rank": selection.rank,
                "warning": selection.warning,
                "candidates": selection.report.to_payload() if selection.report else [],
            },
        }
        RoundStateMachine.transition(
            db,
            round_obj,
            RoundStatus.RESULT_DECLARED,
            self.clock(),
            values=values,
            event_data={"number": selection.number, "declared_by": declared_by.value, "admin_id": admin_id},
            expected_bet_count=bet_count,
        )

    def _finish_declaration(self, db: Session, round_obj: GameRound, selection: OutcomeSelection,
                            declared_by: DeclaredBy) -> DeclarationSummary:
        """開獎的第二段：結算、清理舊回合、通知"""
        round_id = round_obj.id
        settlement_complete = True
        try:
            settled = self.settlement.settle_round(db, round_id, selection.number)
        except Exception as e:
            logger.error(
                f"Settlement interrupted for round {round_obj.id}, will resume on next tick: {e}",
                exc_info=True,
            )
            settled = SettlementResult(round_id=round_obj.id)
            settlement_complete = False

        candidate = selection.candidate
        summary = DeclarationSummary(
            round_id=round_obj.id,
            period=round_obj.period,
            number=selection.number,
            color=selection.color,
            size=selection.size,
            declared_by=declared_by,
            rank=selection.rank,
            total_collection=candidate.total_collection if candidate else ZERO,
            total_payout=candidate.total_liability if candidate else ZERO,
            profit=candidate.profit if candidate else ZERO,
            profit_percent=candidate.profit_percent if candidate else 0.0,
            is_profitable=candidate.is_profitable if candidate else True,
            settled_bets=settled.processed,
            won_bets=settled.won,
            total_paid=settled.total_paid,
            warning=selection.warning,
            settlement_complete=settlement_complete,
        )

        try:
            self.cleanup_old_rounds(db)
        except Exception as e:
            logger.error(f"Error pruning old rounds: {e}", exc_info=True)

        try:
            snapshot = build_liability_snapshot(db, round_id, self.policy)
            self.notifier.round_declared(round_id, summary, snapshot)
        except Exception as e:
            logger.error(f"Error notifying declaration for round {round_id}: {e}", exc_info=True)

        return summary

    # ============ 取消 ============

    def cancel_round(self, db: Session, round_id: str, admin_id: Optional[str] = None,
                     reason: Optional[str] = None) -> CancellationSummary:
        """
        取消回合並退還所有未結算注單的本金

        異常：
            RoundNotFound: 回合不存在
            ResultAlreadyDeclared: 已開獎的回合不能取消
            RoundAlreadyCancelled: 重複取消
        """
        round_obj = self._cancel(db, round_id, admin_id, reason)

        complete = True
        try:
            refunded = self.settlement.refund_round(db, round_obj.id, round_obj.period)
        except Exception as e:
            logger.error(
                f"Refund interrupted for round {round_obj.id}, will resume on next tick: {e}",
                exc_info=True,
            )
            refunded = SettlementResult(round_id=round_obj.id)
            complete = False

        summary = CancellationSummary(
            round_id=round_obj.id,
            period=round_obj.period,
            refunded_bets=refunded.refunded,
            refunded_amount=refunded.total_paid,
            complete=complete,
        )
        logger.info(f"Round {round_obj.period} cancelled by admin {admin_id}, {summary.refunded_bets} bets refunded")

        try:
            self.notifier.round_cancelled(round_obj.id, summary)
        except Exception as e:
            logger.error(f"Error notifying cancellation for round {round_obj.id}: {e}", exc_info=True)

        return summary

    @transactional
    def _cancel(self, db: Session, round_id: str, admin_id: Optional[str],
                reason: Optional[str]) -> GameRound:
        round_obj = self._lock_round(db, round_id)
        return RoundStateMachine.transition(
            db,
            round_obj,
            RoundStatus.CANCELLED,
            self.clock(),
            event_data={"admin_id": admin_id, "reason": reason},
        )

    # ============ 排程器用 ============

    def expire_rounds(self, db: Session, now: Optional[datetime] = None) -> List[DeclarationSummary]:
        """
        自動開獎所有超過下注時間窗的回合（OPEN / CLOSED，PAUSED 除外）

        與 Admin 操作衝突（例如同時被暫停）的回合略過，下一個 tick 再看
        """
        now = now or self.clock()
        cutoff = expiry_cutoff(now, self.round_duration_seconds)
        expired_ids = [
            row.id for row in (
                db.query(GameRound.id)
                .filter(
                    GameRound.result_status == ResultStatus.PENDING,
                    GameRound.status.in_(AUTO_EXPIRING_STATUSES),
                    GameRound.start_time <= cutoff,
                )
                .order_by(GameRound.start_time)
                .all()
            )
        ]

        summaries = []
        for round_id in expired_ids:
            try:
                summaries.append(self.auto_declare(db, round_id))
            except StateConflict as e:
                logger.warning(f"Skipping expiry of round {round_id}: {e}")
        return summaries

    def resume_pending_settlements(self, db: Session) -> List[SettlementResult]:
        """
        續跑中斷的結算 / 退款

        已開獎或已取消、但還有 PENDING 注單的回合，重新結算或退款
        （兩者都是冪等的，已處理的注單會被略過）
        """
        rounds = (
            db.query(GameRound.id, GameRound.period, GameRound.status, GameRound.number)
            .join(Bet, Bet.round_id == GameRound.id)
            .filter(
                Bet.result == BetResult.PENDING,
                GameRound.status.in_((RoundStatus.RESULT_DECLARED, RoundStatus.CANCELLED)),
            )
            .distinct()
            .all()
        )

        results = []
        for round_id, period, status, number in rounds:
            try:
                if status == RoundStatus.RESULT_DECLARED:
                    logger.warning(f"Resuming settlement of round {period}")
                    results.append(self.settlement.settle_round(db, round_id, number))
                else:
                    logger.warning(f"Resuming refunds of cancelled round {period}")
                    results.append(self.settlement.refund_round(db, round_id, period))
            except Exception as e:
                # 這個回合留到下一個 tick，其他回合照常續跑
                logger.error(f"Failed to resume round {period}: {e}", exc_info=True)
                db.rollback()
        return results

    @transactional
    def cleanup_old_rounds(self, db: Session) -> int:
        """
        只保留最近 retention_rounds 個已開獎回合

        依 declared_at 由舊到新刪除超出的回合（連同注單與事件）
        還有 PENDING 注單的回合（結算中斷，等待續跑）這次先保留，結算完成後再刪

        返回：
            刪除的回合數
        """
        declared = db.query(GameRound).filter(GameRound.result_status == ResultStatus.DECLARED)
        excess = declared.count() - self.retention_rounds
        if excess <= 0:
            return 0

        oldest = [
            row.id for row in (
                db.query(GameRound.id)
                .filter(GameRound.result_status == ResultStatus.DECLARED)
                .order_by(GameRound.declared_at, GameRound.period)
                .limit(excess)
                .all()
            )
        ]
        unsettled = {
            row.round_id for row in (
                db.query(Bet.round_id)
                .filter(Bet.round_id.in_(oldest), Bet.result == BetResult.PENDING)
                .distinct()
                .all()
            )
        }
        if unsettled:
            logger.warning(f"Keeping {len(unsettled)} old rounds until their settlement finishes")
        old_ids = [round_id for round_id in oldest if round_id not in unsettled]
        if not old_ids:
            return 0

        db.query(Bet).filter(Bet.round_id.in_(old_ids)).delete(synchronize_session=False)
        db.query(RoundEvent).filter(RoundEvent.round_id.in_(old_ids)).delete(synchronize_session=False)
        deleted = db.query(GameRound).filter(GameRound.id.in_(old_ids)).delete(synchronize_session=False)

        logger.info(f"Pruned {deleted} old rounds (keeping {self.retention_rounds})")
        return deleted
