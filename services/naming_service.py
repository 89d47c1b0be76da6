"""
命名服務：生成回合期號（period）

格式：YYYYMMDD + 4 位當日流水號
範例：202610180001, 202610180002, ...
"""
from datetime import datetime

from sqlalchemy.orm import Session

from models import GameRound

SEQUENCE_DIGITS = 4


def period_prefix(now: datetime) -> str:
    return now.strftime("%Y%m%d")


def format_period(now: datetime, sequence: int) -> str:
    return f"{period_prefix(now)}{sequence:0{SEQUENCE_DIGITS}d}"


def generate_period_code(db: Session, now: datetime) -> str:
    """
    生成下一個期號

    邏輯：
    - 找出當日最後一個期號，流水號 +1
    - 當日沒有回合時從 0001 開始

    參數：
        db: SQLAlchemy Session
        now: 目前時間（由注入的 clock 提供）

    返回：
        期號字串

    注意：
    - 不保證唯一（兩個 tick 同時生成會撞號），由呼叫者以 unique 約束處理
    """
    prefix = period_prefix(now)
    last_round = (
        db.query(GameRound)
        .filter(GameRound.period.like(f"{prefix}%"))
        .order_by(GameRound.period.desc())
        .first()
    )

    sequence = 1
    if last_round:
        sequence = int(last_round.period[-SEQUENCE_DIGITS:]) + 1

    return format_period(now, sequence)
