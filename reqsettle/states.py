"""Settlement workflow states and transitions.

    CREATED -> FUNDING_CHECKED -> [APPROVAL_PENDING ->] APPROVED
            -> PAYMENT_SUBMITTED -> PAYMENT_CONFIRMED -> POLLING
            -> SETTLED | TIMED_OUT

FAILED is reachable from every non-terminal state up to PAYMENT_SUBMITTED.
A watch-only run goes straight from CREATED to POLLING.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransition
from .types import FundingStatus, OutcomeStatus, SettlementOutcome


class SettlementState(Enum):
    CREATED = "created"
    FUNDING_CHECKED = "funding_checked"
    APPROVAL_PENDING = "approval_pending"
    APPROVED = "approved"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_CONFIRMED = "payment_confirmed"
    POLLING = "polling"
    SETTLED = "settled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


S = SettlementState

ALLOWED = {
    S.CREATED: {S.FUNDING_CHECKED, S.POLLING, S.FAILED},
    S.FUNDING_CHECKED: {S.APPROVAL_PENDING, S.APPROVED, S.FAILED},
    S.APPROVAL_PENDING: {S.APPROVED, S.FAILED},
    S.APPROVED: {S.PAYMENT_SUBMITTED, S.FAILED},
    # The transfer is in flight; only its confirmation can fail now
    S.PAYMENT_SUBMITTED: {S.PAYMENT_CONFIRMED, S.FAILED},
    # Cancelled after submission: skip polling
    S.PAYMENT_CONFIRMED: {S.POLLING, S.TIMED_OUT},
    S.POLLING: {S.SETTLED, S.TIMED_OUT},
    S.SETTLED: set(),
    S.TIMED_OUT: set(),
    S.FAILED: set(),
}

TERMINAL = frozenset({S.SETTLED, S.TIMED_OUT, S.FAILED})


def is_terminal(state: SettlementState) -> bool:
    return state in TERMINAL


def assert_transition(old: SettlementState, new: SettlementState) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(old, new)


def after_funding_check(funding: FundingStatus) -> SettlementState:
    """Where a successful funding check leads."""
    return S.APPROVED if funding.approved else S.APPROVAL_PENDING


def after_poll(outcome: SettlementOutcome) -> SettlementState:
    if outcome.status is OutcomeStatus.SETTLED:
        return S.SETTLED
    if outcome.status is OutcomeStatus.TIMED_OUT:
        return S.TIMED_OUT
    return S.FAILED
