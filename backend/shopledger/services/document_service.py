# Overview: Allocation of human-facing document numbers (order ids, PO numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_TYPE_SALE = "SALE"
DOC_TYPE_PURCHASE_ORDER = "PURCHASE_ORDER"

PREFIXES = {
    DOC_TYPE_SALE: "ORD",
    DOC_TYPE_PURCHASE_ORDER: "PO",
}


def _bump(shop_id: int, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.shop_id == shop_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(shop_id=shop_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(*, shop_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next number for (shop, type) inside the caller's transaction.

    The counter row is bumped with a single UPDATE so the number is reserved
    by whichever transaction commits; a rolled back sale gives its number
    back. The first allocation for a shop inserts the row under a savepoint
    so a concurrent first insert only costs a second UPDATE.
    """
    prefix = PREFIXES[document_type]

    next_num = _bump(shop_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(shop_id=shop_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(shop_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{shop_id:03d}-{next_num:0{pad}d}"
