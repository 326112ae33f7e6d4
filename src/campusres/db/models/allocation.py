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
from campusres.db.models.interval import IntervalMixin
from campusres.db.models.resource import Resource
from campusres.db.models.timestamp import TimestampMixin


from typing import Any


ALLOCATION_STATUSES = ('pending', 'allocated', 'returned')


class Allocation(IntervalMixin, TimestampMixin, ORMBase):
    """ Hands a resource to a user or a department, starting at allocated_at
    and lasting until due_back. Allocations without due_back last until they
    are returned.

    Only 'allocated' allocations occupy the resource and only if the
    allocation is exclusive. Allocations of software resources are not
    exclusive, any number of them may overlap.

    """

    __tablename__ = 'resource_allocations'

    interval_columns = ('resource_id', 'allocated_at', 'due_back')
    active_statuses = frozenset(('allocated', ))

    #: the fields which may be changed through
    #: :meth:`campusres.db.scheduler.Scheduler.update_allocation`
    updatable_fields = frozenset((
        'allocated_to_user_id',
        'allocated_to_department',
        'allocated_by',
        'allocated_at',
        'due_back',
        'returned_at',
        'status',
        'notes',
        'data',
    ))

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    resource_id: Mapped[int] = mapped_column(
        types.Integer(),
        ForeignKey(Resource.id, ondelete='CASCADE'),
        nullable=False
    )

    resource: Mapped[Resource] = relationship(Resource)

    allocated_to_user_id: Mapped[int | None] = mapped_column(
        types.Integer(),
        nullable=True
    )

    allocated_to_department: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    allocated_by: Mapped[int | None] = mapped_column(
        types.Integer(),
        nullable=True
    )

    allocated_at: Mapped[datetime] = mapped_column(nullable=False)
    due_back: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        types.Enum(*ALLOCATION_STATUSES, name='allocation_status'),
        nullable=False,
        default='allocated'
    )

    #: copied from the resource whenever the allocation is written, the
    #: exclusion constraint cannot look at the attribute store
    exclusive: Mapped[bool] = mapped_column(
        types.Boolean(),
        nullable=False,
        default=True
    )

    notes: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    #: custom metadata
    data: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            'due_back IS NULL OR due_back > allocated_at',
            name='allocation_timerange_check'
        ),
        Index('allocation_resource_status_ix', 'resource_id', 'status'),
        Index('allocation_user_ix', 'allocated_to_user_id'),
    )

    def __repr__(self) -> str:
        return f'<Allocation {self.id} {self.status}>'


# two exclusive allocations of the same resource may never overlap,
# a missing due_back yields an unbounded range
event.listen(
    Allocation.__table__,
    'after_create',
    DDL("""
        ALTER TABLE resource_allocations
        ADD CONSTRAINT resource_allocations_no_overlap
        EXCLUDE USING gist (
            resource_id WITH =,
            tsrange(allocated_at, due_back, '[)') WITH &&
        )
        WHERE (status = 'allocated' AND exclusive)
    """).execute_if(dialect='postgresql')
)
