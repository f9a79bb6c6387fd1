# Overview: Purchase order state machine as an explicit status type plus one transition function.

"""
Purchase order lifecycle

    draft   --edit-->            draft
    draft   --send-->            sent
    draft   --cancel-->          cancelled
    sent    --cancel-->          cancelled
    sent    --receive_partial--> partial
    sent    --receive_full-->    received
    partial --receive_partial--> partial
    partial --receive_full-->    received

received and cancelled are terminal. Any pair not in TRANSITIONS raises
InvalidTransition; status changes happen nowhere else.
"""

from __future__ import annotations

import enum

from .errors import InvalidTransition


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PurchaseOrderAction(str, enum.Enum):
    EDIT = "edit"
    SEND = "send"
    CANCEL = "cancel"
    RECEIVE_PARTIAL = "receive_partial"
    RECEIVE_FULL = "receive_full"


S = PurchaseOrderStatus
A = PurchaseOrderAction

TRANSITIONS: dict[tuple[PurchaseOrderStatus, PurchaseOrderAction], PurchaseOrderStatus] = {
    (S.DRAFT, A.EDIT): S.DRAFT,
    (S.DRAFT, A.SEND): S.SENT,
    (S.DRAFT, A.CANCEL): S.CANCELLED,
    (S.SENT, A.CANCEL): S.CANCELLED,
    (S.SENT, A.RECEIVE_PARTIAL): S.PARTIAL,
    (S.SENT, A.RECEIVE_FULL): S.RECEIVED,
    (S.PARTIAL, A.RECEIVE_PARTIAL): S.PARTIAL,
    (S.PARTIAL, A.RECEIVE_FULL): S.RECEIVED,
}

TERMINAL_STATUSES = frozenset({S.RECEIVED, S.CANCELLED})


def transition(status, action) -> PurchaseOrderStatus:
    """Return the status reached by applying action in status."""
    try:
        current = PurchaseOrderStatus(status)
        act = PurchaseOrderAction(action)
    except ValueError:
        raise InvalidTransition(
            f"Unknown purchase order status or action: {status!r}, {action!r}",
            details={"status": str(status), "action": str(action)},
        )

    target = TRANSITIONS.get((current, act))
    if target is None:
        raise InvalidTransition(
            f"Cannot {act.value} a purchase order in status {current.value}",
            details={"status": current.value, "action": act.value},
        )
    return target


def allowed_actions(status) -> list[PurchaseOrderAction]:
    current = PurchaseOrderStatus(status)
    return [action for (state, action) in TRANSITIONS if state is current]


def is_terminal(status) -> bool:
    return PurchaseOrderStatus(status) in TERMINAL_STATUSES
