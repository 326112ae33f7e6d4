from __future__ import annotations

import logging

from campusres.context.core import ContextServicesMixin
from campusres.db.models import Booking, Classroom
from sqlalchemy.sql import and_, or_


from typing import TypeVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from sqlalchemy.orm import Query

    from campusres.context.core import Context
    from campusres.db.models.interval import IntervalMixin

_T = TypeVar('_T')
_I = TypeVar('_I', bound='IntervalMixin')


log = logging.getLogger('campusres')


class Queries(ContextServicesMixin):
    """ Contains the overlap detection shared by bookings and allocations.

    All intervals are treated as half-open ranges ``[start, end)``. Two
    intervals conflict if ``start < other_end and other_start < end``,
    where a missing end counts as infinity. Intervals touching each other
    do not conflict.

    Some contained methods require the current context (for the session).
    Some contained methods do not require any context, they are marked
    as staticmethods.

    """

    def __init__(self, context: Context):
        self.context = context

    @staticmethod
    def intervals_in_range(
        query: Query[_T],
        model: type[IntervalMixin],
        start: datetime,
        end: datetime | None
    ) -> Query[_T]:
        """ Takes a query and limits it to the intervals of the given model
        overlapping the range from start to end.

        """
        end_column = model.end_column()

        query = query.filter(
            or_(end_column.is_(None), start < end_column)
        )

        if end is not None:
            query = query.filter(model.start_column() < end)

        return query

    @staticmethod
    def active_intervals(
        query: Query[_T],
        model: type[IntervalMixin]
    ) -> Query[_T]:
        """ Takes a query and limits it to the intervals occupying their
        subject.

        """
        return query.filter(model.status.in_(  # type: ignore[attr-defined]
            tuple(model.active_statuses)
        ))

    def conflicts(
        self,
        model: type[_I],
        subject_id: int,
        start: datetime,
        end: datetime | None,
        exclude_id: int | None = None
    ) -> Query[_I]:
        """ Returns the active intervals of the given subject which overlap
        the range from start to end, ordered by start.

        :model:
            The interval model to look at
            (:class:`~campusres.db.models.Booking` or
            :class:`~campusres.db.models.Allocation`).

        :subject_id:
            The id of the classroom or resource.

        :exclude_id:
            The id of an interval to ignore. Used when an existing interval
            is changed, so it does not conflict with itself.

        """
        query = self.session.query(model)
        query = query.filter(model.subject_column() == subject_id)
        query = self.active_intervals(query, model)
        query = self.intervals_in_range(query, model, start, end)

        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)  # type: ignore[attr-defined]

        return query.order_by(model.start_column())

    def has_conflict(
        self,
        model: type[IntervalMixin],
        subject_id: int,
        start: datetime,
        end: datetime | None,
        exclude_id: int | None = None
    ) -> bool:
        """ Returns True if an active interval of the subject overlaps the
        given range. See :meth:`conflicts`.

        """
        query = self.conflicts(model, subject_id, start, end, exclude_id)
        conflict = self.session.query(query.exists()).scalar()

        if conflict:
            log.debug(
                f'{model.__name__} {start} - {end} conflicts on '
                f'subject {subject_id}'
            )

        return bool(conflict)

    def available_classrooms(
        self,
        start: datetime,
        end: datetime
    ) -> Query[Classroom]:
        """ Returns the active classrooms without a confirmed booking in
        the given range.

        """
        booked = self.session.query(Booking.id)
        booked = booked.filter(Booking.classroom_id == Classroom.id)
        booked = self.active_intervals(booked, Booking)
        booked = self.intervals_in_range(booked, Booking, start, end)

        query = self.session.query(Classroom)
        query = query.filter(Classroom.is_active == True)
        query = query.filter(~booked.exists())
        query = query.order_by(Classroom.building, Classroom.room_number)

        return query

    def bookings_in_window(
        self,
        classroom_id: int,
        start: datetime,
        end: datetime | None
    ) -> Query[Booking]:
        """ Returns the bookings of a classroom lying completely inside the
        given window, cancelled bookings excluded. Without an end, all
        bookings starting after start are returned.

        """
        query = self.session.query(Booking)
        query = query.filter(Booking.classroom_id == classroom_id)
        query = query.filter(Booking.status != 'cancelled')

        if end is None:
            query = query.filter(start <= Booking.start_time)
        else:
            query = query.filter(and_(
                start <= Booking.start_time,
                Booking.end_time <= end
            ))

        return query.order_by(Booking.start_time)
