"""Human-readable sequential document numbers.

Numbers look like ``<prefix><YYYY><MM><####>`` and restart at 0001 every
calendar month, e.g. ``DR2024030007`` or ``2024030012``.

The next number is read from the highest one already stored, so two
writers can pick the same number. The column is unique; the loser gets
``NumberTakenError`` and retries with a fresh number.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from canvascue.core.retry import TransientError


class NumberTakenError(TransientError):
    """A concurrent writer committed the same document number first."""
    pass


def month_prefix(prefix: str, now: datetime) -> str:
    return f"{prefix}{now.year}{now.month:02d}"


async def next_monthly_number(
    session: AsyncSession,
    column: InstrumentedAttribute,
    now: datetime,
    prefix: str = "",
) -> str:
    """Next free number for ``now``'s month in ``column``."""
    stem = month_prefix(prefix, now)
    result = await session.execute(
        select(column)
        .where(column.like(f"{stem}%"))
        .order_by(column.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()

    sequence = 1
    if last:
        sequence = int(last[len(stem):]) + 1
    return f"{stem}{sequence:04d}"


async def commit_numbered(
    session: AsyncSession,
    row,
    column: InstrumentedAttribute,
    number: str,
) -> None:
    """Add ``row`` carrying ``number`` in ``column`` and commit.

    A failed commit rolls the session back, which expires every object the
    session holds.

    Raises:
        NumberTakenError: If ``number`` was committed by another writer
        IntegrityError: For any other constraint violation
    """
    session.add(row)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        taken = await session.execute(select(column).where(column == number))
        if taken.first() is not None:
            raise NumberTakenError(f"Number {number} is already taken") from e
        raise
