from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./color_prediction.db"

    # 回合設定
    round_duration_seconds: int = 30
    tick_interval_seconds: float = 1.0
    scheduler_enabled: bool = True

    # 利潤引擎設定
    min_profit_percent: float = 5.0
    max_loss_per_round: float = 0.0
    high_profit_weight: float = 0.70
    medium_profit_weight: float = 0.20

    # 下注限制
    min_bet: float = 10.0
    max_bet: float = 10000.0

    # 保留最近 N 個已開獎回合
    retention_rounds: int = 500

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite 需要特殊設定：connect_args={"check_same_thread": False}
# 這允許多執行緒存取同一個 SQLite 連線（排程器在背景執行緒跑 tick）
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _find_session(args, kwargs):
    if isinstance(kwargs.get('db'), Session):
        return kwargs['db']
    for arg in args:
        if isinstance(arg, Session):
            return arg
    return None


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(self, db: Session, ...):
            # 所有 DB 操作都在一個 transaction 內
            round_obj = GameRound(...)
            db.add(round_obj)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 參數中必須有一個 db: Session（位置參數或 keyword 皆可，
          方法的 self 會被略過）
        - 不要在函式內手動 commit（decorator 會處理）
        - 業務異常（GameException）只記 warning，不記 stack trace
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _find_session(args, kwargs)

        if db is None:
            raise ValueError(
                f"@transactional requires a 'db: Session' argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            from core.exceptions import GameException  # 避免 circular import

            if isinstance(e, GameException):
                logger.warning(f"Transaction rejected in {func.__name__}: {e}")
            else:
                logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
