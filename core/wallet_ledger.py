"""
錢包與帳務紀錄

- credit_wallet / debit_wallet：原子性的餘額異動（UPDATE ... SET balance = balance ± x）
- append_ledger_transaction：只新增的帳務紀錄

這些函式都不 commit，必須在呼叫者的 transaction 內使用，
讓「改狀態 + 改餘額 + 寫帳」成為同一個原子單位
"""
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy.orm import Session

from models import LedgerTransaction, TransactionStatus, TransactionType, Wallet, utcnow
from core.exceptions import InsufficientBalance, InvalidBetAmount
from core.locks import with_wallet_lock
from services.payoff_service import ZERO, to_money

logger = logging.getLogger(__name__)


def get_or_create_wallet(db: Session, user_id: str) -> Wallet:
    wallet = with_wallet_lock(user_id, db).first()
    if wallet is None:
        wallet = Wallet(user_id=user_id, balance=ZERO)
        db.add(wallet)
        db.flush()
        logger.info(f"Created wallet for user {user_id}")
    return wallet


def get_balance(db: Session, user_id: str) -> Decimal:
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
    return to_money(wallet.balance) if wallet else ZERO


def _positive(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidBetAmount(f"Amount must be positive, got {amount}")
    return amount


def credit_wallet(db: Session, user_id: str, amount) -> None:
    """
    入帳（派彩、退款、儲值）

    錢包不存在時自動建立
    """
    amount = _positive(amount)
    wallet = get_or_create_wallet(db, user_id)
    db.query(Wallet).filter(Wallet.user_id == user_id).update(
        {Wallet.balance: Wallet.balance + amount, Wallet.updated_at: utcnow()},
        synchronize_session=False,
    )
    # 餘額由 SQL 計算，讓下次讀取重新載入
    db.expire(wallet)


def debit_wallet(db: Session, user_id: str, amount) -> None:
    """
    扣款（下注）

    餘額檢查與扣款在同一個 UPDATE 內完成：
        UPDATE wallets SET balance = balance - :x
        WHERE user_id = :u AND balance >= :x

    異常：
        InsufficientBalance: 錢包不存在或餘額不足
    """
    amount = _positive(amount)
    updated = (
        db.query(Wallet)
        .filter(Wallet.user_id == user_id, Wallet.balance >= amount)
        .update(
            {Wallet.balance: Wallet.balance - amount, Wallet.updated_at: utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        raise InsufficientBalance(user_id, amount)


def append_ledger_transaction(
    db: Session,
    user_id: str,
    kind: TransactionType,
    amount,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
) -> LedgerTransaction:
    record = LedgerTransaction(
        user_id=user_id,
        type=kind,
        amount=to_money(amount),
        status=TransactionStatus.COMPLETED,
        reference_id=reference_id,
        description=description,
    )
    db.add(record)
    db.flush()
    return record


def deposit(db: Session, user_id: str, amount, description: str = "Deposit") -> LedgerTransaction:
    """已核准的儲值入帳（核准流程不在這個服務內）"""
    credit_wallet(db, user_id, amount)
    return append_ledger_transaction(db, user_id, TransactionType.DEPOSIT, amount, None, description)
