# Overview: Per-branch sale number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SaleSequence
from ..errors import ValidationError

SALE_NUMBER_PREFIX = "S"
SALE_NUMBER_PAD = 6


def format_sale_number(number: int, *, prefix: str = SALE_NUMBER_PREFIX, pad: int = SALE_NUMBER_PAD) -> str:
    return f"{prefix}{number:0{pad}d}"


def _advance(branch_id: int) -> int | None:
    """Bump the branch counter and return the number it handed out, or None if no row yet."""
    stmt = (
        update(SaleSequence)
        .where(SaleSequence.branch_id == branch_id)
        .values(next_number=SaleSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(SaleSequence.next_number)
        .filter_by(branch_id=branch_id)
        .scalar()
    )
    return current - 1


def next_sale_number(branch_id: int) -> str:
    """
    Atomically allocate the next sale number for a branch ("S000123").

    Runs inside the caller's transaction: the UPDATE holds the counter row
    until commit, so concurrent checkouts on the same branch serialize here,
    and a rolled-back checkout gives its number back.

    First use creates the counter row. Two terminals racing on that insert
    are resolved by the unique constraint: the loser rolls back to a
    savepoint and takes the UPDATE path.
    """
    if not branch_id:
        raise ValidationError("branch_id is required")

    number = _advance(branch_id)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(SaleSequence(branch_id=branch_id, next_number=2))
            number = 1
        except IntegrityError:
            number = _advance(branch_id)
            if number is None:
                raise

    return format_sale_number(number)


def peek_next_number(branch_id: int) -> int:
    value = (
        db.session.query(SaleSequence.next_number)
        .filter_by(branch_id=branch_id)
        .scalar()
    )
    return int(value or 1)
