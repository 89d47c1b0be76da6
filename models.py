"""
ORM 模型與列舉

- GameRound：一個下注回合（唯一的「進行中回合」由 active_slot 唯一索引保證）
- Bet：玩家在回合中的單一注單（每個 (user, round) 最多一筆）
- Wallet / LedgerTransaction：餘額與只增不改的帳務紀錄
- RoundEvent：回合狀態變更的稽核紀錄
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """naive UTC 時間（SQLite 不保存時區，統一存 naive UTC）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


# ============ 列舉 ============

class RoundStatus(str, enum.Enum):
    OPEN = "OPEN"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"
    RESULT_DECLARED = "RESULT_DECLARED"


ACTIVE_ROUND_STATUSES = (RoundStatus.OPEN, RoundStatus.PAUSED, RoundStatus.CLOSED)
TERMINAL_ROUND_STATUSES = (RoundStatus.CANCELLED, RoundStatus.RESULT_DECLARED)


class ResultStatus(str, enum.Enum):
    PENDING = "PENDING"
    DECLARED = "DECLARED"


class DeclaredBy(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class BetType(str, enum.Enum):
    COLOR = "COLOR"
    NUMBER = "NUMBER"
    SIZE = "SIZE"


class BetResult(str, enum.Enum):
    PENDING = "PENDING"
    WON = "WON"
    LOST = "LOST"
    CANCELLED = "CANCELLED"


class Color(str, enum.Enum):
    GREEN = "GREEN"
    RED = "RED"
    VIOLET = "VIOLET"


class Size(str, enum.Enum):
    BIG = "BIG"
    SMALL = "SMALL"


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    BET_PLACED = "BET_PLACED"
    BET_WON = "BET_WON"
    REFUND = "REFUND"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ============ 模型 ============

class GameRound(Base):
    __tablename__ = "game_rounds"

    id = Column(String(36), primary_key=True, default=_uuid)
    period = Column(String(12), unique=True, nullable=False, index=True)
    status = Column(SAEnum(RoundStatus), nullable=False, default=RoundStatus.OPEN, index=True)
    result_status = Column(SAEnum(ResultStatus), nullable=False, default=ResultStatus.PENDING)

    # 進行中 = 1，終態 = NULL；唯一索引保證同時最多一個進行中回合
    active_slot = Column(Integer, unique=True, nullable=True, default=1)

    start_time = Column(DateTime, nullable=False, default=utcnow)
    end_time = Column(DateTime, nullable=True)

    number = Column(Integer, nullable=True)
    winning_color = Column(SAEnum(Color), nullable=True)
    winning_size = Column(SAEnum(Size), nullable=True)
    result_declared_by = Column(SAEnum(DeclaredBy), nullable=True)
    declared_by_admin_id = Column(String(64), nullable=True)
    declared_at = Column(DateTime, nullable=True, index=True)

    bet_count = Column(Integer, nullable=False, default=0)

    # 開獎時的利潤快照
    total_collection = Column(Numeric(15, 2), nullable=True)
    total_payout = Column(Numeric(15, 2), nullable=True)
    profit = Column(Numeric(15, 2), nullable=True)
    profit_percent = Column(Float, nullable=True)
    is_profitable = Column(Boolean, nullable=False, default=False)
    loss_amount = Column(Numeric(15, 2), nullable=True)
    selected_result_rank = Column(String(32), nullable=True)
    calculation_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bets = relationship("Bet", back_populates="round", passive_deletes=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_ROUND_STATUSES and self.result_status == ResultStatus.PENDING


class Bet(Base):
    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("user_id", "round_id", name="uq_bets_user_round"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    bet_type = Column(SAEnum(BetType), nullable=False)
    selection = Column(String(8), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    potential_win = Column(Numeric(15, 2), nullable=False)
    result = Column(SAEnum(BetResult), nullable=False, default=BetResult.PENDING, index=True)
    win_amount = Column(Numeric(15, 2), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    round = relationship("GameRound", back_populates="bets")

    @property
    def target(self):
        """已正規化的下注目標（Selection），不重新驗證"""
        from services.taxonomy_service import Selection  # 避免 circular import

        return Selection.from_canonical(self.bet_type, self.selection)


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), unique=True, nullable=False, index=True)
    balance = Column(Numeric(15, 2), nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class LedgerTransaction(Base):
    """帳務紀錄：只新增，不修改"""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(SAEnum(TransactionType), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    status = Column(SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED)
    reference_id = Column(String(36), nullable=True, index=True)
    description = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)


class RoundEvent(Base):
    __tablename__ = "round_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(32), nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
