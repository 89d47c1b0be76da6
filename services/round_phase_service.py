"""
回合時間服務：下注時間窗的計算

一個回合的下注時間窗從 start_time 起算 round_duration_seconds 秒：
- OPEN / CLOSED 且超過時間窗：由排程器自動開獎
- PAUSED：不會自動到期，必須由 Admin 恢復或直接開獎
"""
from datetime import datetime, timedelta

from models import GameRound, RoundStatus

# 到期後會被排程器自動開獎的狀態
AUTO_EXPIRING_STATUSES = (RoundStatus.OPEN, RoundStatus.CLOSED)


def betting_deadline(round_obj: GameRound, duration_seconds: int) -> datetime:
    return round_obj.start_time + timedelta(seconds=duration_seconds)


def expiry_cutoff(now: datetime, duration_seconds: int) -> datetime:
    """start_time <= cutoff 的回合視為已到期"""
    return now - timedelta(seconds=duration_seconds)


def get_remaining_seconds(round_obj: GameRound, now: datetime, duration_seconds: int) -> int:
    """
    計算回合剩餘的下注秒數

    範例：
        start=12:00:00, duration=30, now=12:00:10 -> 20
        start=12:00:00, duration=30, now=12:00:45 -> 0
    """
    remaining = (betting_deadline(round_obj, duration_seconds) - now).total_seconds()
    return max(0, int(remaining))

