from __future__ import annotations

from datetime import datetime
from sqlalchemy import event
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.schema import CheckConstraint
from sqlalchemy.schema import DDL
from sqlalchemy.schema import ForeignKey
from sqlalchemy.schema import Index

from campusres.db.models.base import ORMBase
from campusres.db.models.classroom import Classroom
from campusres.db.models.interval import IntervalMixin
from campusres.db.models.timestamp import TimestampMixin


BOOKING_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed')
BOOKING_TYPES = ('course', 'event', 'meeting', 'exam', 'other')
RECURRING_PATTERNS = ('none', 'daily', 'weekly', 'monthly')

#: the allowed status changes, cancelled and completed are final
BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    'pending': frozenset(('confirmed', 'cancelled')),
    'confirmed': frozenset(('cancelled', 'completed')),
    'cancelled': frozenset(),
    'completed': frozenset(),
}


class Booking(IntervalMixin, TimestampMixin, ORMBase):
    """ Books a classroom from start_time until (excluding) end_time.

    Bookings start out as 'pending' and only occupy the classroom once they
    are 'confirmed'. The recurring pattern is informational, recurring
    bookings are not expanded into multiple records.

    """

    __tablename__ = 'room_bookings'

    interval_columns = ('classroom_id', 'start_time', 'end_time')
    active_statuses = frozenset(('confirmed', ))

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    classroom_id: Mapped[int] = mapped_column(
        types.Integer(),
        ForeignKey(Classroom.id, ondelete='CASCADE'),
        nullable=False
    )

    classroom: Mapped[Classroom] = relationship(Classroom)

    course_id: Mapped[int | None] = mapped_column(
        types.Integer(),
        nullable=True
    )

    booked_by_user_id: Mapped[int | None] = mapped_column(
        types.Integer(),
        nullable=True
    )

    title: Mapped[str] = mapped_column(
        types.String(255),
        nullable=False
    )

    description: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)

    booking_type: Mapped[str] = mapped_column(
        types.Enum(*BOOKING_TYPES, name='booking_type'),
        nullable=False,
        default='course'
    )

    status: Mapped[str] = mapped_column(
        types.Enum(*BOOKING_STATUSES, name='booking_status'),
        nullable=False,
        default='pending'
    )

    recurring_pattern: Mapped[str] = mapped_column(
        types.Enum(*RECURRING_PATTERNS, name='booking_recurring_pattern'),
        nullable=False,
        default='none'
    )

    recurring_until: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            'end_time > start_time', name='booking_timerange_check'
        ),
        Index(
            'booking_classroom_time_ix',
            'classroom_id', 'start_time', 'end_time'
        ),
        Index('booking_status_ix', 'status'),
    )

    def __repr__(self) -> str:
        return f'<Booking {self.id} {self.status}>'

    def can_transition_to(self, status: str) -> bool:
        return status in BOOKING_TRANSITIONS[self.status]


# two confirmed bookings of the same classroom may never overlap
event.listen(
    Booking.__table__,
    'after_create',
    DDL("""
        ALTER TABLE room_bookings
        ADD CONSTRAINT room_bookings_no_overlap
        EXCLUDE USING gist (
            classroom_id WITH =,
            tsrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status = 'confirmed')
    """).execute_if(dialect='postgresql')
)
