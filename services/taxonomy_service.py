"""
結果分類：數字 0-9 對應的顏色、大小，以及下注選項的解析

純計算邏輯，沒有狀態
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple, Union

from models import BetType, Color, Size
from core.exceptions import InvalidSelection, InvalidWinningOption, ValidationRejection

DIGITS: Tuple[int, ...] = tuple(range(10))

NUMBER_COLORS = {
    0: Color.VIOLET,
    1: Color.GREEN,
    2: Color.RED,
    3: Color.GREEN,
    4: Color.RED,
    5: Color.VIOLET,
    6: Color.RED,
    7: Color.GREEN,
    8: Color.RED,
    9: Color.GREEN,
}

NUMBER_SIZES = {digit: (Size.SMALL if digit <= 4 else Size.BIG) for digit in DIGITS}

# 雙色數字：0 同時是 VIOLET + GREEN，5 同時是 VIOLET + RED
DUAL_COLOR_DIGITS = {
    0: Color.GREEN,
    5: Color.RED,
}

COLOR_MULTIPLIERS = {
    Color.GREEN: Decimal("1.95"),
    Color.RED: Decimal("1.95"),
    Color.VIOLET: Decimal("4.5"),
}
NUMBER_MULTIPLIER = Decimal("8.5")
SIZE_MULTIPLIERS = {
    Size.BIG: Decimal("1.95"),
    Size.SMALL: Decimal("1.95"),
}
# GREEN 押中 0、RED 押中 5 時的折扣賠率
DUAL_COLOR_MULTIPLIER = Decimal("1.45")


def color_of(digit: int) -> Color:
    return NUMBER_COLORS[digit]


def size_of(digit: int) -> Size:
    return NUMBER_SIZES[digit]


def parse_bet_type(raw) -> BetType:
    if isinstance(raw, BetType):
        return raw
    try:
        return BetType(str(raw).strip().upper())
    except ValueError:
        raise ValidationRejection(f"Invalid bet type {raw!r}. Must be COLOR, NUMBER, or SIZE")


@dataclass(frozen=True)
class Selection:
    """
    下注目標（tagged union）

    - NUMBER：value 是 int（0-9）
    - COLOR：value 是 Color
    - SIZE：value 是 Size

    下注時用 parse() 解析一次，之後以 canonical 字串存進資料庫；
    結算時用 from_canonical() 還原，不再做驗證
    """
    bet_type: BetType
    value: Union[int, Color, Size]

    @classmethod
    def parse(cls, bet_type, raw) -> "Selection":
        bet_type = parse_bet_type(bet_type)
        text = str(raw).strip().upper() if raw is not None else ""

        if bet_type == BetType.NUMBER:
            if isinstance(raw, int) and not isinstance(raw, bool) and raw in DIGITS:
                return cls(bet_type, raw)
            if len(text) == 1 and text.isdigit():
                return cls(bet_type, int(text))
            raise InvalidSelection(bet_type.value, raw)

        enum_cls = Color if bet_type == BetType.COLOR else Size
        try:
            return cls(bet_type, enum_cls(text))
        except ValueError:
            raise InvalidSelection(bet_type.value, raw)

    @classmethod
    def from_canonical(cls, bet_type: BetType, canonical: str) -> "Selection":
        if bet_type == BetType.NUMBER:
            return cls(bet_type, int(canonical))
        if bet_type == BetType.COLOR:
            return cls(bet_type, Color(canonical))
        return cls(bet_type, Size(canonical))

    @property
    def canonical(self) -> str:
        if self.bet_type == BetType.NUMBER:
            return str(self.value)
        return self.value.value

    def __str__(self) -> str:
        return f"{self.bet_type.value}:{self.canonical}"


def resolve_winning_option(option) -> int:
    """
    把 Admin 指定的開獎目標轉成代表數字

    規則：
    - "0"-"9"：直接使用該數字
    - 顏色（GREEN/RED/VIOLET）：取該顏色的第一個數字（由小到大）
    - 大小（BIG/SMALL）：取該大小的第一個數字（由小到大）

    範例：
        resolve_winning_option("7") -> 7
        resolve_winning_option("red") -> 2
        resolve_winning_option("GREEN") -> 1
        resolve_winning_option("BIG") -> 5

    異常：
        InvalidWinningOption: 無法辨識的目標
    """
    if isinstance(option, int) and not isinstance(option, bool):
        if option in DIGITS:
            return option
        raise InvalidWinningOption(option)

    text = str(option).strip().upper() if option is not None else ""

    if len(text) == 1 and text.isdigit():
        return int(text)

    if text in Color.__members__:
        color = Color(text)
        return next(d for d in DIGITS if NUMBER_COLORS[d] == color)

    if text in Size.__members__:
        size = Size(text)
        return next(d for d in DIGITS if NUMBER_SIZES[d] == size)

    raise InvalidWinningOption(option)
