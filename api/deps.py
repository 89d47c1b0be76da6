"""
Router 共用的 dependency 與異常轉換
"""
from fastapi import HTTPException, Request

from core.container import GameServices
from core.exceptions import (
    GameException,
    PolicyBreach,
    RoundNotFound,
    StateConflict,
    ValidationRejection,
)


def get_services(request: Request) -> GameServices:
    """FastAPI dependency：app 啟動時建立的 GameServices"""
    return request.app.state.services


def to_http_exception(exc: GameException) -> HTTPException:
    """
    業務異常 -> HTTP 狀態碼

    ValidationRejection -> 422
    RoundNotFound       -> 404
    StateConflict       -> 409
    PolicyBreach        -> 409
    """
    if isinstance(exc, ValidationRejection):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, RoundNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (StateConflict, PolicyBreach)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
