# Overview: Status rules for waybills and stock movements.

"""
FleetLedger Document Lifecycle Service

================================================================================
PURPOSE: One place that answers "may this document move to that status?"
================================================================================

WAYBILL STATE MACHINE:
    DRAFT -> SUBMITTED -> POSTED
    DRAFT | SUBMITTED -> POSTED
    POSTED -> DRAFT            (correction / revert)
    DRAFT | SUBMITTED -> CANCELLED

    DRAFT:     editable, recalculated by the chain recalculator
    SUBMITTED: handed in, still editable, no longer recalculated
    POSTED:    immutable ground truth, charges the driver's fuel card
    CANCELLED: terminal, ignored by numbering and balances

STOCK MOVEMENT STATE MACHINE:
    DRAFT -> POSTED -> DRAFT, DRAFT -> (deleted)

RULES:
1. POSTED documents are never edited or deleted directly.
2. Only POSTED documents affect balances, snapshots and period hashes.
3. CANCELLED is terminal.
================================================================================
"""

from __future__ import annotations
from typing import Literal


WAYBILL_STATUSES = {"DRAFT", "SUBMITTED", "POSTED", "CANCELLED"}
MOVEMENT_STATUSES = {"DRAFT", "POSTED"}
WaybillStatus = Literal["DRAFT", "SUBMITTED", "POSTED", "CANCELLED"]
MovementStatus = Literal["DRAFT", "POSTED"]

_WAYBILL_TRANSITIONS = {
    ("DRAFT", "SUBMITTED"),
    ("DRAFT", "POSTED"),
    ("SUBMITTED", "POSTED"),
    ("SUBMITTED", "DRAFT"),
    ("POSTED", "DRAFT"),
    ("DRAFT", "CANCELLED"),
    ("SUBMITTED", "CANCELLED"),
}

_MOVEMENT_TRANSITIONS = {
    ("DRAFT", "POSTED"),
    ("POSTED", "DRAFT"),
}


class LifecycleError(ValueError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error. It indicates
    that the user attempted an operation that violates business rules.
    """
    pass


def validate_status(status: str, *, allowed: set[str] = WAYBILL_STATUSES) -> None:
    if status not in allowed:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(allowed))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """Waybill transitions; a same-status move is a no-op and allowed."""
    validate_status(from_status)
    validate_status(to_status)
    if from_status == to_status:
        return True
    return (from_status, to_status) in _WAYBILL_TRANSITIONS


def can_transition_movement(from_status: str, to_status: str) -> bool:
    validate_status(from_status, allowed=MOVEMENT_STATUSES)
    validate_status(to_status, allowed=MOVEMENT_STATUSES)
    return (from_status, to_status) in _MOVEMENT_TRANSITIONS


def require_transition(doc_label: str, from_status: str, to_status: str) -> None:
    if not can_transition(from_status, to_status):
        raise LifecycleError(
            f"Cannot move {doc_label} from '{from_status}' to '{to_status}'"
        )


def can_edit_waybill(status: str) -> bool:
    return status in ("DRAFT", "SUBMITTED")


def can_delete_waybill(status: str) -> bool:
    """POSTED must be reverted first; CANCELLED stays for numbering history."""
    return status in ("DRAFT", "SUBMITTED")


def is_recalculable(status: str) -> bool:
    """Only drafts are rewritten by chain recalculation."""
    return status == "DRAFT"


def can_edit_movement(status: str) -> bool:
    return status == "DRAFT"


def can_delete_movement(status: str) -> bool:
    return status == "DRAFT"
