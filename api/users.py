"""
User API Endpoints

職責：
1. 查詢玩家的下注紀錄（全部，或單一回合的注單）
2. 查詢錢包餘額與帳務紀錄

身分驗證不在這個服務內：user_id 直接放在路徑上
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import LedgerTransaction
from schemas import BetResponse, TransactionResponse, UserBetHistoryItem, UserBetHistoryResponse, WalletResponse
from core.container import GameServices
from core.wallet_ledger import get_balance
from api.deps import get_services
from services.history_service import get_user_bet_history

router = APIRouter(prefix="/api/users", tags=["users"])
logger = logging.getLogger(__name__)


@router.get("/{user_id}/bets", response_model=UserBetHistoryResponse)
def get_user_bets(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """玩家的下注紀錄（新到舊），已開獎的回合附帶開獎結果"""
    try:
        entries, total = get_user_bet_history(db, user_id, page, limit)
        return UserBetHistoryResponse(
            items=[UserBetHistoryItem(**entry) for entry in entries],
            total=total,
            page=page,
            limit=limit
        )

    except Exception as e:
        logger.error(f"Failed to get bets for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{user_id}/wallet", response_model=WalletResponse)
def get_wallet(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """
    錢包餘額與最近的帳務紀錄

    沒有錢包的玩家返回餘額 0
    """
    try:
        transactions = (
            db.query(LedgerTransaction)
            .filter(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id)
            .limit(limit)
            .all()
        )
        return WalletResponse(
            user_id=user_id,
            balance=get_balance(db, user_id),
            transactions=[TransactionResponse.model_validate(t) for t in transactions]
        )

    except Exception as e:
        logger.error(f"Failed to get wallet for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{user_id}/rounds/{round_id}/bet", response_model=BetResponse)
def get_user_round_bet(
    user_id: str,
    round_id: str,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """
    玩家在某個回合的注單（每個回合最多一張）

    錯誤：
        404: 這個回合沒有下注
    """
    try:
        bet = services.bets.get_user_round_bet(db, user_id, round_id)
        if not bet:
            raise HTTPException(status_code=404, detail="No bet for this round")
        return BetResponse.model_validate(bet)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get bet of user {user_id} for round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
