"""Error kinds returned by the task lifecycle, shop and ledger.

``DomainError`` subclasses are expected, caller-recoverable outcomes and map to
an HTTP status and a structured payload. ``LedgerIntegrityError`` is different:
it means the balance invariant was broken and the operation must be aborted.
"""

from typing import Any, Optional


class DomainError(Exception):
    status_code = 400

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.kind
        super().__init__(self.detail)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def payload(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.detail}


class NotFound(DomainError):
    status_code = 404


class Forbidden(DomainError):
    status_code = 403


class InvalidState(DomainError):
    status_code = 409


class Conflict(DomainError):
    """A concurrent write won; the caller may retry."""

    status_code = 409


class InsufficientBalance(DomainError):
    status_code = 409

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"requires {required} points, {available} available")

    def payload(self) -> dict[str, Any]:
        data = super().payload()
        data.update(required=self.required, available=self.available)
        return data


class BalanceOverflow(DomainError):
    status_code = 409

    def __init__(self, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(f"crediting {amount} to {balance} exceeds the balance limit")


class LedgerIntegrityError(RuntimeError):
    pass


__all__ = [
    "DomainError",
    "NotFound",
    "Forbidden",
    "InvalidState",
    "Conflict",
    "InsufficientBalance",
    "BalanceOverflow",
    "LedgerIntegrityError",
]
