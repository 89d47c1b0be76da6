"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）。
SQLite 不支援 FOR UPDATE（會被忽略），所以真正決定勝負的寫入
（下注、開獎、結算）另外使用「帶條件的 UPDATE + 檢查 rowcount」：
只有一個 transaction 能讓條件成立
"""
from sqlalchemy.orm import Session, Query

from models import GameRound, Wallet


def with_round_lock(round_id: str, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 檢查並修改 Round 狀態時（暫停、恢復、開獎、取消）
    - 下注時檢查 Round 是否 OPEN

    範例：
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)

    參數：
        round_id: Round id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(GameRound).filter(
        GameRound.id == round_id
    ).with_for_update(nowait=False)


def with_wallet_lock(user_id: str, db: Session) -> Query:
    """
    鎖定一個 Wallet（行級鎖）

    使用場景：
    - 讀取餘額後要依餘額做判斷時，避免與其他扣款/入帳交錯
    """
    return db.query(Wallet).filter(
        Wallet.user_id == user_id
    ).with_for_update(nowait=False)
