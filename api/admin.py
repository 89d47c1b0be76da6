"""
Admin API Endpoints

職責：
1. 回合控制：暫停 / 恢復 / 停止下注 / 取消 / 指定開獎 / 觸發系統開獎
2. 風控：回合列表與明細、開獎前預覽、即時風險快照、利潤統計
3. 入帳：已核准的儲值

身分驗證不在這個服務內：admin_id 放在 request body，只做紀錄
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db, transactional
from models import RoundStatus
from schemas import (
    AdminAction,
    AdminRoundItem,
    AdminRoundListResponse,
    AnalysisResponse,
    BetResponse,
    CancelRequest,
    CancellationResponse,
    DeclarationResponse,
    DeclareRequest,
    DepositRequest,
    ProfitStatsResponse,
    RoundBetStats,
    RoundDetailResponse,
    RoundStatusResponse,
    TransactionResponse,
)
from core.container import GameServices
from core.exceptions import GameException
from core.wallet_ledger import deposit
from api.deps import get_services, to_http_exception
from services.history_service import get_round_details, get_rounds
from services.liability_service import calculate_round_liability
from services.risk_service import build_liability_snapshot, build_preview, get_profit_stats

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/rounds/{round_id}/declare", response_model=DeclarationResponse)
def declare_result(
    round_id: str,
    body: DeclareRequest,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """
    指定開獎結果並結算

    winning_option：0-9、GREEN / RED / VIOLET、BIG / SMALL
    （顏色 / 大小以第一個符合的數字開獎）

    錯誤：
        422: 目標無法辨識
        404: 回合不存在
        409: 已開獎 / 已取消 / 超過最大虧損上限
    """
    try:
        summary = services.rounds.declare_result(db, round_id, body.winning_option, body.admin_id)
        return DeclarationResponse.model_validate(summary)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to declare result for round {round_id}: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/auto-declare", response_model=DeclarationResponse)
def auto_declare(
    round_id: str,
    body: AdminAction,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """
    立即以系統模式開獎（與到期自動開獎相同的加權選擇）

    錯誤：
        404: 回合不存在
        409: 已開獎 / 已取消
    """
    try:
        logger.info(f"Admin {body.admin_id} requested system declaration of round {round_id}")
        summary = services.rounds.auto_declare(db, round_id)
        return DeclarationResponse.model_validate(summary)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to auto-declare round {round_id}: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds", response_model=AdminRoundListResponse)
def list_rounds(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[RoundStatus] = Query(None),
    db: Session = Depends(get_db)
):
    """所有回合（新到舊，分頁），可用 status 過濾"""
    try:
        rounds, total = get_rounds(db, page, limit, status)
        return AdminRoundListResponse(
            items=[AdminRoundItem.model_validate(r) for r in rounds],
            total=total,
            page=page,
            limit=limit
        )

    except Exception as e:
        logger.error(f"Failed to list rounds: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}", response_model=RoundDetailResponse)
def get_round_detail(round_id: str, db: Session = Depends(get_db)):
    """回合明細：回合資料、所有注單與下注統計"""
    try:
        details = get_round_details(db, round_id)
        return RoundDetailResponse(
            round=AdminRoundItem.model_validate(details["round"]),
            bets=[BetResponse.model_validate(b) for b in details["bets"]],
            stats=RoundBetStats(**details["stats"])
        )

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")

def _change_status(action, round_id: str, body: AdminAction, db: Session):
    try:
        round_obj = action(db, round_id, body.admin_id)
        return RoundStatusResponse.model_validate(round_obj)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to change status of round {round_id}: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/pause", response_model=RoundStatusResponse)
def pause_round(
    round_id: str,
    body: AdminAction,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """暫停下注（OPEN -> PAUSED）"""
    return _change_status(services.rounds.pause_round, round_id, body, db)


@router.post("/rounds/{round_id}/resume", response_model=RoundStatusResponse)
def resume_round(
    round_id: str,
    body: AdminAction,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """恢復下注（PAUSED -> OPEN）"""
    return _change_status(services.rounds.resume_round, round_id, body, db)


@router.post("/rounds/{round_id}/close", response_model=RoundStatusResponse)
def close_round(
    round_id: str,
    body: AdminAction,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """停止下注（OPEN / PAUSED -> CLOSED），到期時由系統開獎"""
    return _change_status(services.rounds.close_round, round_id, body, db)


@router.post("/rounds/{round_id}/cancel", response_model=CancellationResponse)
def cancel_round(
    round_id: str,
    body: CancelRequest,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """取消回合，所有未結算注單全額退款"""
    try:
        summary = services.rounds.cancel_round(db, round_id, body.admin_id, body.reason)
        return CancellationResponse.model_validate(summary)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to cancel round {round_id}: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}/preview", response_model=AnalysisResponse)
def preview_round(
    round_id: str,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """開獎前預覽：十個結果的利潤排名與推薦結果"""
    try:
        services.rounds.get_round_by_id(db, round_id)
        report = calculate_round_liability(db, round_id, services.policy)
        return build_preview(report)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to preview round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}/risk", response_model=AnalysisResponse)
def get_round_risk(
    round_id: str,
    db: Session = Depends(get_db),
    services: GameServices = Depends(get_services)
):
    """即時風控快照：下注分佈、每個結果的風險等級、整體風險指標"""
    try:
        return build_liability_snapshot(db, round_id, services.policy)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to build risk snapshot for round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/stats/profit", response_model=ProfitStatsResponse)
def get_profit_statistics(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db)
):
    """已開獎回合的利潤統計（可用 declared_at 範圍過濾）"""
    try:
        return ProfitStatsResponse(**get_profit_stats(db, start, end))

    except Exception as e:
        logger.error(f"Failed to get profit stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@transactional
def _credit_deposit(db: Session, user_id: str, body: DepositRequest):
    return deposit(db, user_id, body.amount, body.description or f"Deposit approved by {body.admin_id}")


@router.post("/users/{user_id}/deposit", response_model=TransactionResponse, status_code=201)
def credit_deposit(user_id: str, body: DepositRequest, db: Session = Depends(get_db)):
    """
    入帳一筆已核准的儲值

    核准流程本身不在這個服務內
    """
    try:
        record = _credit_deposit(db, user_id, body)
        logger.info(f"Deposit of {body.amount} credited to user {user_id} by admin {body.admin_id}")
        return TransactionResponse.model_validate(record)

    except GameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to credit deposit for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
