"""
auth/lockout.py -- Failed-login lockout as a pure state machine.

States over (failed_login_attempts, account_locked_until):
  Normal -- account_locked_until is None or not in the future.
  Locked -- account_locked_until is in the future.

The counter and the lock are mutually exclusive phases: whenever a lock is
set the counter goes back to 0. Expiry is lazy. An expired lock is only
cleared by the next failure (which then counts as the first of a fresh
window) or by a success; nothing sweeps in the background.

LockoutPolicy never touches storage. CredentialStore.apply_lockout_transition
feeds it the stored state and writes the result back with a compare-and-set,
so the policy stays the single source of truth for the rules.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LockoutState:
    failed_login_attempts: int = 0
    account_locked_until: datetime | None = None
    last_login: datetime | None = None


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=15)

    def is_locked(self, state: LockoutState, now: datetime) -> bool:
        return state.account_locked_until is not None and state.account_locked_until > now

    def on_failure(self, state: LockoutState, now: datetime) -> LockoutState:
        """Record one failed attempt; lock once the threshold is reached.

        A failure while the lock is in force changes nothing: the counter
        only runs between locks.
        """
        if self.is_locked(state, now):
            return state
        # Past this point any stored lock has expired; the failure opens a fresh window.
        lock_expired = state.account_locked_until is not None
        attempts = 1 if lock_expired else state.failed_login_attempts + 1

        if attempts >= self.max_attempts:
            return replace(state, failed_login_attempts=0, account_locked_until=now + self.lock_duration)
        return replace(state, failed_login_attempts=attempts, account_locked_until=None)

    def on_success(self, state: LockoutState, now: datetime) -> LockoutState:
        return LockoutState(failed_login_attempts=0, account_locked_until=None, last_login=now)
