from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    transactions: Dict[str, int]
    rejections: Dict[str, int]
    session_codes: Dict[str, int]
    checkouts: Dict[str, int]
    notifications: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "transactions": dict(self.transactions),
            "rejections": dict(self.rejections),
            "sessionCodes": dict(self.session_codes),
            "checkouts": dict(self.checkouts),
            "notifications": dict(self.notifications),
        }


class LedgerObservabilityStore:
    """In-process counters for ledger writes, rejections and session codes."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._session_codes: Dict[str, int] = defaultdict(int)
        self._checkouts: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)

    def record_transaction(self, transaction_type: str, *, points_earned: int, points_spent: int) -> None:
        with self._lock:
            self._transactions[transaction_type] += 1
            self._transactions["points_earned"] += points_earned
            self._transactions["points_spent"] += points_spent

    def record_rejection(self, kind: str) -> None:
        with self._lock:
            self._rejections[kind] += 1

    def record_session_code(self, outcome: str) -> None:
        with self._lock:
            self._session_codes[outcome] += 1

    def record_checkout(self, outcome: str) -> None:
        with self._lock:
            self._checkouts[outcome] += 1

    def record_notification(self, outcome: str) -> None:
        with self._lock:
            self._notifications[outcome] += 1

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                transactions=dict(self._transactions),
                rejections=dict(self._rejections),
                session_codes=dict(self._session_codes),
                checkouts=dict(self._checkouts),
                notifications=dict(self._notifications),
            )

    def reset(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._rejections.clear()
            self._session_codes.clear()
            self._checkouts.clear()
            self._notifications.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
