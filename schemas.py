"""
API request / response 模型（pydantic）
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import (
    BetResult,
    BetType,
    Color,
    DeclaredBy,
    ResultStatus,
    RoundStatus,
    Size,
    TransactionType,
)


# ============ Round ============

class RoundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    period: str
    status: RoundStatus
    result_status: ResultStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    remaining_seconds: int = 0
    bet_count: int = 0
    number: Optional[int] = None
    winning_color: Optional[Color] = None
    winning_size: Optional[Size] = None
    declared_at: Optional[datetime] = None


class RoundHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    period: str
    number: int
    winning_color: Color
    winning_size: Size
    result_declared_by: DeclaredBy
    declared_at: datetime


class RoundHistoryResponse(BaseModel):
    items: List[RoundHistoryItem]
    total: int
    page: int
    limit: int


# ============ Bet ============

class BetCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    bet_type: str
    selection: Union[int, str]
    amount: Decimal


class BetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    round_id: str
    bet_type: BetType
    selection: str
    amount: Decimal
    potential_win: Decimal
    result: BetResult
    win_amount: Optional[Decimal] = None
    created_at: datetime


class UserBetHistoryItem(BaseModel):
    bet_id: str
    round_id: str
    period: str
    bet_type: BetType
    selection: str
    amount: Decimal
    potential_win: Decimal
    result: BetResult
    win_amount: Optional[Decimal] = None
    created_at: datetime
    round_status: RoundStatus
    winning_number: Optional[int] = None
    winning_color: Optional[Color] = None
    winning_size: Optional[Size] = None


class UserBetHistoryResponse(BaseModel):
    items: List[UserBetHistoryItem]
    total: int
    page: int
    limit: int


# ============ Wallet ============

class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: TransactionType
    amount: Decimal
    reference_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class WalletResponse(BaseModel):
    user_id: str
    balance: Decimal
    transactions: List[TransactionResponse] = []


# ============ Admin ============

class AdminAction(BaseModel):
    admin_id: Optional[str] = None


class DeclareRequest(AdminAction):
    winning_option: Union[int, str]


class CancelRequest(AdminAction):
    reason: Optional[str] = None


class DepositRequest(AdminAction):
    amount: Decimal
    description: Optional[str] = None


class RoundStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    period: str
    status: RoundStatus


class DeclarationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    settlement_complete: bool


class CancellationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    round_id: str
    period: str
    refunded_bets: int
    refunded_amount: Decimal
    complete: bool


class AdminRoundItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    period: str
    status: RoundStatus
    result_status: ResultStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    bet_count: int = 0
    number: Optional[int] = None
    winning_color: Optional[Color] = None
    winning_size: Optional[Size] = None
    result_declared_by: Optional[DeclaredBy] = None
    declared_at: Optional[datetime] = None
    total_collection: Optional[Decimal] = None
    total_payout: Optional[Decimal] = None
    profit: Optional[Decimal] = None
    profit_percent: Optional[float] = None
    is_profitable: bool = False


class AdminRoundListResponse(BaseModel):
    items: List[AdminRoundItem]
    total: int
    page: int
    limit: int


class RoundBetStats(BaseModel):
    total_bets: int
    total_amount: Decimal
    color_bets: int
    number_bets: int
    size_bets: int


class RoundDetailResponse(BaseModel):
    round: AdminRoundItem
    bets: List[BetResponse]
    stats: RoundBetStats


class ProfitStatsResponse(BaseModel):
    total_rounds: int
    total_collection: Decimal
    total_payout: Decimal
    total_profit: Decimal
    profitable_rounds: int
    loss_rounds: int
    admin_declared: int
    system_declared: int
    average_profit_percent: float


# preview / risk 是巢狀的分析資料，直接以 dict 回傳
AnalysisResponse = Dict[str, Any]
