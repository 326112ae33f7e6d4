from __future__ import annotations

from campusres.db.models.timespan import Timespan
from campusres.modules import utils


from typing import ClassVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from sqlalchemy.orm import InstrumentedAttribute


class IntervalMixin:
    """ Shared by all records which occupy a subject (a classroom, a
    resource) for a period of time.

    Intervals are half-open: they include their start but not their end.
    An interval without an end lasts forever.

    Subclasses name their subject, start and end columns through
    ``interval_columns`` and define which of their statuses actually occupy
    the subject through ``active_statuses``. Only active intervals block
    other intervals, see :meth:`campusres.db.queries.Queries.conflicts`.

    """

    #: the names of the subject, start and end columns
    interval_columns: ClassVar[tuple[str, str, str]]

    #: the statuses in which an interval occupies its subject
    active_statuses: ClassVar[frozenset[str]]

    if TYPE_CHECKING:
        id: int
        status: str

    @classmethod
    def subject_column(cls) -> InstrumentedAttribute[int]:
        return getattr(cls, cls.interval_columns[0])  # type: ignore[no-any-return]

    @classmethod
    def start_column(cls) -> InstrumentedAttribute[datetime]:
        return getattr(cls, cls.interval_columns[1])  # type: ignore[no-any-return]

    @classmethod
    def end_column(cls) -> InstrumentedAttribute[datetime | None]:
        return getattr(cls, cls.interval_columns[2])  # type: ignore[no-any-return]

    @property
    def subject_id(self) -> int:
        return getattr(self, self.interval_columns[0])  # type: ignore[no-any-return]

    @property
    def interval_start(self) -> datetime:
        return getattr(self, self.interval_columns[1])  # type: ignore[no-any-return]

    @property
    def interval_end(self) -> datetime | None:
        return getattr(self, self.interval_columns[2])  # type: ignore[no-any-return]

    @property
    def is_active(self) -> bool:
        return self.status in self.active_statuses

    def timespan(self) -> Timespan:
        return Timespan(self.interval_start, self.interval_end)

    def overlaps(self, start: datetime, end: datetime | None) -> bool:
        return utils.overlaps(
            self.interval_start, self.interval_end, start, end
        )
