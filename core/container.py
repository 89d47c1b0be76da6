"""
Service container：組裝遊戲引擎的所有元件

不使用 module-level singleton：app 啟動時呼叫 build_services() 一次，
結果放在 app.state.services；測試可以注入自己的 clock / rng / notifier
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import random

from models import utcnow
from core.bet_manager import BetManager
from core.round_manager import RoundManager
from core.scheduler import RoundScheduler
from core.settlement import SettlementEngine
from database import SessionLocal
from services.liability_service import ProfitPolicy
from services.notifier import LoggingNotifier, RoundNotifier


@dataclass
class GameServices:
    settings: object
    policy: ProfitPolicy
    clock: Callable[[], datetime]
    notifier: RoundNotifier
    settlement: SettlementEngine
    bets: BetManager
    rounds: RoundManager
    scheduler: RoundScheduler


def build_services(
    settings,
    session_factory=SessionLocal,
    clock: Callable[[], datetime] = utcnow,
    rng: Optional[random.Random] = None,
    notifier: Optional[RoundNotifier] = None,
) -> GameServices:
    """
    建立並連接所有元件

    參數：
        settings: Settings
        session_factory: 排程器每個 tick 用來開新 Session
        clock: 目前時間（naive UTC）
        rng: 系統開獎用的隨機來源
        notifier: 推播介面，預設寫 log
    """
    notifier = notifier or LoggingNotifier()
    settlement = SettlementEngine()
    rounds = RoundManager(settings, settlement=settlement, notifier=notifier, clock=clock, rng=rng)

    return GameServices(
        settings=settings,
        policy=ProfitPolicy.from_settings(settings),
        clock=clock,
        notifier=notifier,
        settlement=settlement,
        bets=BetManager(settings, notifier=notifier),
        rounds=rounds,
        scheduler=RoundScheduler(
            session_factory,
            rounds,
            interval_seconds=settings.tick_interval_seconds,
            clock=clock,
        ),
    )
