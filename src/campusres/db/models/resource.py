from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.schema import ForeignKey
from sqlalchemy.schema import Index

from campusres.db.models.base import ORMBase
from campusres.db.models.timestamp import TimestampMixin


from typing import Any
from typing import ClassVar


RESOURCE_STATUSES = ('available', 'allocated', 'maintenance', 'retired')

#: statuses set by hand, allocations never change them
MANUAL_RESOURCE_STATUSES = frozenset(('maintenance', 'retired'))


class ResourceType(TimestampMixin, ORMBase):
    """ Groups resources (laptops, projectors, software licenses). """

    __tablename__ = 'resource_types'

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    name: Mapped[str] = mapped_column(
        types.String(255),
        nullable=False,
        unique=True
    )

    description: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )


class Resource(TimestampMixin, ORMBase):
    """ Something which may be allocated to a user or a department.

    The status is derived from the allocations of the resource. It is
    'allocated' as long as there's an active allocation and 'available'
    otherwise, unless it was set to 'maintenance' or 'retired' by hand.

    Additional attributes (isSoftware, purchaseDate, warrantyUntil) live in
    the attribute store, see :class:`campusres.db.attributes.AttributeStore`.

    """

    __tablename__ = 'resources'

    #: the entity type used in the attribute store
    entity_type: ClassVar[str] = 'resource'

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    resource_type_id: Mapped[int | None] = mapped_column(
        types.Integer(),
        ForeignKey(ResourceType.id, ondelete='SET NULL'),
        nullable=True
    )

    resource_type: Mapped[ResourceType | None] = relationship(ResourceType)

    name: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    asset_tag: Mapped[str] = mapped_column(
        types.String(100),
        nullable=False,
        default=''
    )

    serial_number: Mapped[str] = mapped_column(
        types.String(100),
        nullable=False,
        default=''
    )

    owner_id: Mapped[int | None] = mapped_column(
        types.Integer(),
        nullable=True
    )

    department: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    status: Mapped[str] = mapped_column(
        types.Enum(*RESOURCE_STATUSES, name='resource_status'),
        nullable=False,
        default='available'
    )

    location: Mapped[str] = mapped_column(
        types.Text(),
        nullable=False,
        default=''
    )

    #: custom metadata
    data: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index('resource_status_ix', 'status'),
    )

    def __repr__(self) -> str:
        return f'<Resource {self.id} {self.name!r} {self.status}>'

    @property
    def is_manually_managed(self) -> bool:
        return self.status in MANUAL_RESOURCE_STATUSES
