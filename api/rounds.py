"""
Round API Endpoints

重點：
1. 前端靠短輪詢 /current 取得目前回合與剩餘秒數
2. 下注的所有業務邏輯集中在 BetManager
3. 歷史只列出已開獎的回合
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import BetCreate, BetResponse, RoundHistoryItem, RoundHistoryResponse, RoundResponse
from core.container import GameServices
from core.exceptions import GameException
from api.deps import get_services, to_http_exception
from services.history_service import get_game_history
from services.round_phase_service import get_remaining_seconds

router = APIRouter(prefix="/api/rounds", tags=["rounds"])
logger = logging.getLogger(__name__)


@router.get("/current", response_model=RoundResponse)
def get_current_round(db: Session = Depends(get_db), services: GameServices = Depends(get_services)):
    """
    取得目前進行中的回合

    返回：
        - period: 期號
        - status: OPEN / PAUSED / CLOSED
        - remaining_seconds: 剩餘下注秒數
    """
    try:
        current_round = services.rounds.get_current_round(db)
        if not current_round:
            raise HTTPException(status_code=404, detail="No active round")

        response = RoundResponse.model_validate(current_round)
        response.remaining_seconds = get_remaining_seconds(
            current_round, services.clock(), services.settings.round_duration_seconds
        )
        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get current round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/history", response_model=RoundHistoryResponse)
def get_round_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """已開獎的回合（新到舊，分頁）"""
    try:
        rounds, total = get_game_history(db, page, limit)
        return RoundHistoryResponse(
            items=[RoundHistoryItem.model_validate(r) for r in rounds],
            total=total,
            page=page,
            limit=limit
        )

    except Exception as e:
        logger.error(f"Failed to get round history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{round_id}/bets", response_model=BetResponse, status_code=201)
def place_bet(
    round_id: str,
    bet_data: BetCreate,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """
    下注

    錯誤：
        422: 類型 / 選項 / 金額不合法
        404: 回合不存在
        409: 回合不接受下注、重複下注、餘額不足
    """
    try:
        bet = services.bets.place_bet(
            db,
            bet_data.user_id,
            round_id,
            bet_data.bet_type,
            bet_data.selection,
            bet_data.amount
        )
        return BetResponse.model_validate(bet)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to place bet: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")
