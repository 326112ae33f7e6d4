from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.schema import Index

from campusres.db.models.base import ORMBase
from campusres.db.models.timestamp import TimestampMixin


from typing import ClassVar


class Classroom(TimestampMixin, ORMBase):
    """ A room which may be booked. Inactive classrooms accept no new
    bookings, existing bookings stay as they are.

    """

    __tablename__ = 'classrooms'

    #: the entity type used in the attribute store
    entity_type: ClassVar[str] = 'classroom'

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    room_number: Mapped[str] = mapped_column(
        types.String(50),
        nullable=False
    )

    building: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    floor: Mapped[int] = mapped_column(
        types.Integer(),
        nullable=False,
        default=0
    )

    room_type: Mapped[str] = mapped_column(
        types.String(50),
        nullable=False,
        default='classroom'
    )

    capacity: Mapped[int] = mapped_column(
        types.Integer(),
        nullable=False,
        default=0
    )

    amenities: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    equipment: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    is_active: Mapped[bool] = mapped_column(
        types.Boolean(),
        nullable=False,
        default=True
    )

    notes: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    __table_args__ = (
        Index('classroom_building_ix', 'building', 'room_number'),
    )

    def __repr__(self) -> str:
        return f'<Classroom {self.building} {self.room_number}>'
