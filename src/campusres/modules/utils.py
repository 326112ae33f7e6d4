from __future__ import annotations

import sedate

from datetime import datetime
from dateutil.parser import isoparse

from campusres.modules import errors


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName


TRUTHY = frozenset(('true', 't', 'yes', '1', 'on'))
FALSY = frozenset(('false', 'f', 'no', '0', 'off', ''))


def overlaps(
    start: datetime,
    end: datetime | None,
    other_start: datetime,
    other_end: datetime | None
) -> bool:
    """ Returns True if the half-open ranges [start, end) and
    [other_start, other_end) share at least one instant.

    A missing end stands for an open range. Ranges touching each other
    (one ending where the other starts) do not overlap.

    """
    if end is not None and not other_start < end:
        return False

    if other_end is not None and not start < other_end:
        return False

    return True


def as_id(value: Any, name: str = 'id') -> int:
    """ Turns the given value into an integer id or raises
    :class:`~campusres.modules.errors.InvalidId`.

    """
    if isinstance(value, bool):
        raise errors.InvalidId(f'invalid {name}: {value!r}')

    if isinstance(value, int):
        return value

    if isinstance(value, str) and value.strip().isdecimal():
        return int(value)

    raise errors.InvalidId(f'invalid {name}: {value!r}')


def as_datetime(value: Any, timezone: TzInfoOrName) -> datetime:
    """ Turns a datetime or an ISO 8601 string into a timezone-aware
    datetime in UTC. Naive values are assumed to be in the given timezone.

    """
    if isinstance(value, str):
        try:
            value = isoparse(value)
        except ValueError as e:
            raise errors.InvalidDate(f'invalid date: {value!r}') from e

    if not isinstance(value, datetime):
        raise errors.InvalidDate(f'invalid date: {value!r}')

    return sedate.standardize_date(value, timezone)


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value

    if isinstance(value, int):
        return value != 0

    if isinstance(value, str):
        lowered = value.strip().lower()

        if lowered in TRUTHY:
            return True

        if lowered in FALSY:
            return False

    raise errors.InvalidAttributeValue(f'not a boolean: {value!r}')
