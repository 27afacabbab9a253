"""Domain errors raised by the ledger, badge and escrow services.

Routers translate these into HTTP responses; services never raise HTTPException.
"""

from __future__ import annotations


class StudyHubError(Exception):
    """Base class for domain errors."""


class AccountNotFoundError(StudyHubError, LookupError):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class InvalidAmountError(StudyHubError, ValueError):
    """Point amounts must be positive integers."""


class InsufficientPointsError(StudyHubError, ValueError):
    def __init__(self, account_id: int, required: int) -> None:
        super().__init__(f"Not enough XP: {required} required")
        self.account_id = account_id
        self.required = required


class LedgerConflictError(StudyHubError):
    """Balance kept changing underneath a grant; retries were exhausted."""


class BountyValidationError(StudyHubError, ValueError):
    pass


class BountyNotFoundError(StudyHubError, LookupError):
    def __init__(self, bounty_id: int) -> None:
        super().__init__("Bounty not found")
        self.bounty_id = bounty_id


class BountyNotOpenError(StudyHubError, ValueError):
    def __init__(self, bounty_id: int) -> None:
        super().__init__("Bounty is no longer open")
        self.bounty_id = bounty_id


class AnswerNotFoundError(StudyHubError, LookupError):
    def __init__(self, answer_id: int) -> None:
        super().__init__("Answer not found")
        self.answer_id = answer_id


class NotBountyOwnerError(StudyHubError, PermissionError):
    def __init__(self, bounty_id: int, action: str = "modify") -> None:
        super().__init__(f"Only the bounty poster can {action} this bounty")
        self.bounty_id = bounty_id
