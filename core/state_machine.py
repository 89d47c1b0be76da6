"""
回合狀態機：集中管理所有回合狀態轉換

合法轉換：
    OPEN    -> PAUSED, CLOSED, RESULT_DECLARED, CANCELLED
    PAUSED  -> OPEN, CLOSED, RESULT_DECLARED, CANCELLED
    CLOSED  -> RESULT_DECLARED, CANCELLED
    CANCELLED, RESULT_DECLARED：終態，不能再轉換

所有轉換都是「帶條件的 UPDATE」：
    UPDATE game_rounds SET status = :to
    WHERE id = :id AND status = :from AND result_status = 'PENDING'
rowcount 為 0 代表有別的 transaction 先改了狀態，視為衝突
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from models import (
    GameRound,
    ResultStatus,
    RoundEvent,
    RoundStatus,
    TERMINAL_ROUND_STATUSES,
)
from core.exceptions import (
    InvalidStateTransition,
    ResultAlreadyDeclared,
    RoundAlreadyCancelled,
)

logger = logging.getLogger(__name__)


class RoundStateMachine:
    """回合狀態機（無狀態，只有規則）"""

    TRANSITIONS = {
        RoundStatus.OPEN: {
            RoundStatus.PAUSED,
            RoundStatus.CLOSED,
            RoundStatus.RESULT_DECLARED,
            RoundStatus.CANCELLED,
        },
        RoundStatus.PAUSED: {
            RoundStatus.OPEN,
            RoundStatus.CLOSED,
            RoundStatus.RESULT_DECLARED,
            RoundStatus.CANCELLED,
        },
        RoundStatus.CLOSED: {
            RoundStatus.RESULT_DECLARED,
            RoundStatus.CANCELLED,
        },
        RoundStatus.CANCELLED: set(),
        RoundStatus.RESULT_DECLARED: set(),
    }

    @classmethod
    def can_transition(cls, current: RoundStatus, target: RoundStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def validate(cls, round_obj: GameRound, target: RoundStatus) -> None:
        """
        檢查轉換是否合法

        異常：
            ResultAlreadyDeclared: 已經開獎
            RoundAlreadyCancelled: 已經取消
            InvalidStateTransition: 其他非法轉換
        """
        if round_obj.result_status == ResultStatus.DECLARED:
            raise ResultAlreadyDeclared(round_obj.id)

        if round_obj.status == RoundStatus.CANCELLED:
            raise RoundAlreadyCancelled(round_obj.id)

        if not cls.can_transition(round_obj.status, target):
            raise InvalidStateTransition(
                f"Cannot transition round {round_obj.id} from "
                f"{round_obj.status.value} to {target.value}"
            )

    @classmethod
    def transition(
        cls,
        db: Session,
        round_obj: GameRound,
        target: RoundStatus,
        now: datetime,
        values: Optional[Dict[str, Any]] = None,
        event_data: Optional[Dict[str, Any]] = None,
        expected_bet_count: Optional[int] = None,
    ) -> GameRound:
        """
        執行狀態轉換（不 commit，由呼叫者的 @transactional 處理）

        流程：
        1. 驗證轉換規則
        2. 帶條件的 UPDATE（同時寫入 values 中的其他欄位）
        3. 進入終態時清除 active_slot、寫入 end_time
        4. 記錄 ROUND_STATE_CHANGED 事件

        參數：
            db: SQLAlchemy Session
            round_obj: 已鎖定的 GameRound
            target: 目標狀態
            now: 目前時間
            values: 同一個 UPDATE 內要寫入的其他欄位
            event_data: 額外記錄到事件的資料
            expected_bet_count: 指定時，注單數必須與讀取時相同（開獎用，避免漏算剛下的注）

        返回：
            更新後的 GameRound
        """
        cls.validate(round_obj, target)

        current = round_obj.status
        updates: Dict[Any, Any] = {GameRound.status: target, GameRound.updated_at: now}
        for key, value in (values or {}).items():
            updates[getattr(GameRound, key)] = value

        if target in TERMINAL_ROUND_STATUSES:
            updates[GameRound.active_slot] = None
            updates[GameRound.end_time] = now

        if target == RoundStatus.RESULT_DECLARED:
            updates[GameRound.result_status] = ResultStatus.DECLARED
            updates[GameRound.declared_at] = now

        guards = [
            GameRound.id == round_obj.id,
            GameRound.status == current,
            GameRound.result_status == ResultStatus.PENDING,
        ]
        if expected_bet_count is not None:
            guards.append(GameRound.bet_count == expected_bet_count)

        updated = (
            db.query(GameRound)
            .filter(*guards)
            .update(updates, synchronize_session=False)
        )
        if not updated:
            raise InvalidStateTransition(
                f"Round {round_obj.id} changed concurrently; "
                f"cannot transition from {current.value} to {target.value}"
            )

        db.add(RoundEvent(
            round_id=round_obj.id,
            event_type="ROUND_STATE_CHANGED",
            data={"from": current.value, "to": target.value, **(event_data or {})},
            created_at=now,
        ))
        db.flush()
        db.refresh(round_obj)

        logger.info(f"Round {round_obj.period} transitioned {current.value} -> {target.value}")
        return round_obj
