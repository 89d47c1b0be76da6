"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- ValidationRejection：輸入不合法（422），不做任何寫入
- StateConflict：狀態衝突（409），不可重試的業務拒絕
- PolicyBreach：結果超過最大虧損限制（409，僅 Admin 指定開獎會拋出）
"""


class GameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ 驗證異常 ============

class ValidationRejection(GameException):
    """下注類型 / 選項 / 金額 或 Admin 指定結果不合法"""
    pass


class InvalidSelection(ValidationRejection):
    def __init__(self, bet_type, selection):
        self.bet_type = bet_type
        self.selection = selection
        super().__init__(f"Invalid selection {selection!r} for bet type {bet_type}")


class InvalidBetAmount(ValidationRejection):
    pass


class InvalidWinningOption(ValidationRejection):
    def __init__(self, option):
        self.option = option
        super().__init__(
            f"Invalid winning option {option!r}. Must be 0-9, GREEN, RED, VIOLET, BIG, or SMALL"
        )


# ============ Round 相關異常 ============

class RoundNotFound(GameException):
    """回合不存在"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class StateConflict(GameException):
    """狀態衝突的基類（呼叫者不應重試）"""
    pass


class RoundNotOpen(StateConflict):
    """回合不在 OPEN 狀態，不接受下注"""
    def __init__(self, round_id, status):
        self.round_id = round_id
        self.status = status
        super().__init__(f"Round {round_id} is not accepting bets (status: {status})")


class ResultAlreadyDeclared(StateConflict):
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Result already declared for round {round_id}")


class RoundAlreadyCancelled(StateConflict):
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} has been cancelled")


class InvalidStateTransition(StateConflict):
    """非法的狀態轉換"""
    pass


# ============ Bet / Wallet 相關異常 ============

class DuplicateBet(StateConflict):
    """玩家在此回合已經下過注了"""
    def __init__(self, user_id, round_id):
        self.user_id = user_id
        self.round_id = round_id
        super().__init__(f"User {user_id} has already placed a bet on round {round_id}")


class InsufficientBalance(StateConflict):
    def __init__(self, user_id, amount):
        self.user_id = user_id
        self.amount = amount
        super().__init__(f"Insufficient balance for user {user_id} (requested {amount})")


# ============ 利潤引擎異常 ============

class PolicyBreach(GameException):
    """指定的結果超過最大虧損限制"""
    def __init__(self, digit, profit, max_loss):
        self.digit = digit
        self.profit = profit
        self.max_loss = max_loss
        super().__init__(
            f"Result {digit} causes loss of {abs(profit):.2f} "
            f"which exceeds max allowed loss of {max_loss}"
        )
