# Overview: Monthly document numbering for waybills and stock movements.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from fleetledger.time_utils import DateLike, parse_iso_date


# document type -> (prefix, zero padding)
SEQUENCE_FORMATS = {
    "waybill": ("WL", 6),
    "stock_income": ("IN", 5),
    "stock_expense": ("OUT", 5),
    "fuel_card": ("FC", 5),
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _period_key(value: DateLike) -> str:
    d = parse_iso_date(value) or date.today()
    return f"{d.year:04d}{d.month:02d}"


def _current_number(document_type: str, period_key: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period_key=period_key)
        .scalar()
    )


def next_document_number(document_type: str, doc_date: DateLike) -> str:
    """
    Allocate the next number of a monthly series, e.g. "WL-202405-000001".

    The counter row is bumped with a single UPDATE so two allocations never
    hand out the same number; a missing row is created at 2 (1 is returned).
    """
    if document_type not in SEQUENCE_FORMATS:
        raise DocumentSequenceError(f"Unknown document type '{document_type}'")
    prefix, pad = SEQUENCE_FORMATS[document_type]
    period_key = _period_key(doc_date)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period_key == period_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_number(document_type, period_key) - 1
    else:
        seq = DocumentSequence(document_type=document_type, period_key=period_key, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            next_num = _current_number(document_type, period_key) - 1

    return f"{prefix}-{period_key}-{next_num:0{pad}d}"


def movement_sequence_type(movement_type: str, expense_reason: str | None) -> str:
    if expense_reason in ("FUEL_CARD_TOP_UP", "INVENTORY_ADJUSTMENT"):
        return "fuel_card"
    if movement_type == "INCOME":
        return "stock_income"
    return "stock_expense"
