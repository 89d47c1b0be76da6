"""
賠付服務：單一注單在某個開獎數字下的賠付金額

純計算邏輯。利潤試算、預覽、結算全部呼叫這裡，確保三者的賠率規則一致
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from models import BetType, Color
from services.taxonomy_service import (
    COLOR_MULTIPLIERS,
    DUAL_COLOR_DIGITS,
    DUAL_COLOR_MULTIPLIER,
    NUMBER_MULTIPLIER,
    SIZE_MULTIPLIERS,
    Selection,
    color_of,
    size_of,
)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """轉成兩位小數的 Decimal（四捨五入）"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def win_multiplier(selection: Selection, digit: int) -> Optional[Decimal]:
    """
    計算注單在開出 digit 時的賠率

    規則：
    ┌─────────┬────────────────────────────────────────────┬────────┐
    │ 類型     │ 中獎條件                                    │ 賠率    │
    ├─────────┼────────────────────────────────────────────┼────────┤
    │ NUMBER  │ 數字相同                                    │ 8.5    │
    │ SIZE    │ 大小相同                                    │ 1.95   │
    │ COLOR   │ GREEN/RED 顏色相同                          │ 1.95   │
    │ COLOR   │ VIOLET 且開出 0 或 5                         │ 4.5    │
    │ COLOR   │ GREEN 開出 0、RED 開出 5（雙色數字）          │ 1.45   │
    └─────────┴────────────────────────────────────────────┴────────┘

    參數：
        selection: 已解析的下注目標
        digit: 開獎數字（0-9）

    返回：
        賠率（Decimal），沒中獎返回 None
    """
    if selection.bet_type == BetType.NUMBER:
        return NUMBER_MULTIPLIER if selection.value == digit else None

    if selection.bet_type == BetType.SIZE:
        return SIZE_MULTIPLIERS[selection.value] if size_of(digit) == selection.value else None

    if color_of(digit) == selection.value:
        return COLOR_MULTIPLIERS[selection.value]

    if selection.value != Color.VIOLET and DUAL_COLOR_DIGITS.get(digit) == selection.value:
        return DUAL_COLOR_MULTIPLIER

    return None


def calculate_payout(selection: Selection, amount, digit: int) -> Decimal:
    """
    計算賠付金額（本金 × 賠率，取到分）

    沒中獎返回 0.00
    """
    multiplier = win_multiplier(selection, digit)
    if multiplier is None:
        return ZERO
    return to_money(to_money(amount) * multiplier)


def potential_win(selection: Selection, amount) -> Decimal:
    """
    下注當下顯示的可能獲利（使用該選項的標準賠率）

    雙色數字的折扣賠率只在開獎時才會套用
    """
    if selection.bet_type == BetType.NUMBER:
        multiplier = NUMBER_MULTIPLIER
    elif selection.bet_type == BetType.SIZE:
        multiplier = SIZE_MULTIPLIERS[selection.value]
    else:
        multiplier = COLOR_MULTIPLIERS[selection.value]
    return to_money(to_money(amount) * multiplier)


def calculate_total_payout(bets: Iterable, digit: int) -> Decimal:
    """一組注單在開出 digit 時的總賠付"""
    return sum((calculate_payout(bet.target, bet.amount, digit) for bet in bets), ZERO)
