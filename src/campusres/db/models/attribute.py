from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.schema import ForeignKey
from sqlalchemy.schema import Index
from sqlalchemy.schema import UniqueConstraint

from campusres.db.models.base import ORMBase
from campusres.db.models.timestamp import TimestampMixin
from campusres.db.models.types import JSONValue


from typing import Any


#: maps each data type to the column holding its values
SLOTS = {
    'string': 'string_value',
    'integer': 'integer_value',
    'decimal': 'decimal_value',
    'boolean': 'boolean_value',
    'datetime': 'datetime_value',
    'json': 'json_value',
}

DATA_TYPES = tuple(SLOTS)


class AttributeDefinition(TimestampMixin, ORMBase):
    """ Declares an attribute that may be stored for all entities of a
    type, together with the type of its values.

    """

    __tablename__ = 'eav_attributes'

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    entity_type: Mapped[str] = mapped_column(
        types.String(50),
        nullable=False
    )

    name: Mapped[str] = mapped_column(
        'attribute_name',
        types.String(100),
        nullable=False
    )

    data_type: Mapped[str] = mapped_column(
        types.Enum(*DATA_TYPES, name='eav_data_type'),
        nullable=False
    )

    is_searchable: Mapped[bool] = mapped_column(
        types.Boolean(),
        nullable=False,
        default=False
    )

    __table_args__ = (
        UniqueConstraint(
            'entity_type', 'attribute_name', name='eav_attribute_name_ix'
        ),
    )

    def __repr__(self) -> str:
        return f'<AttributeDefinition {self.entity_type}.{self.name}>'

    @property
    def slot(self) -> str:
        return SLOTS[self.data_type]


class AttributeValue(TimestampMixin, ORMBase):
    """ The value of one attribute of one entity. Exactly one of the
    typed value columns is used, the one matching the data type of the
    attribute's definition.

    """

    __tablename__ = 'eav_values'

    id: Mapped[int] = mapped_column(
        types.Integer(),
        primary_key=True,
        autoincrement=True
    )

    entity_type: Mapped[str] = mapped_column(
        types.String(50),
        nullable=False
    )

    entity_id: Mapped[int] = mapped_column(
        types.Integer(),
        nullable=False
    )

    attribute_id: Mapped[int] = mapped_column(
        types.Integer(),
        ForeignKey(AttributeDefinition.id, ondelete='CASCADE'),
        nullable=False
    )

    attribute: Mapped[AttributeDefinition] = relationship(
        AttributeDefinition,
        lazy='joined'
    )

    string_value: Mapped[str | None] = mapped_column(
        types.Text(),
        nullable=True
    )

    integer_value: Mapped[int | None] = mapped_column(
        types.BigInteger(),
        nullable=True
    )

    decimal_value: Mapped[Decimal | None] = mapped_column(
        types.Numeric(precision=20, scale=6),
        nullable=True
    )

    boolean_value: Mapped[bool | None] = mapped_column(
        types.Boolean(),
        nullable=True
    )

    datetime_value: Mapped[datetime | None] = mapped_column(nullable=True)

    json_value: Mapped[Any] = mapped_column(
        JSONValue(),
        nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            'entity_type', 'entity_id', 'attribute_id',
            name='eav_value_key_ix'
        ),
        Index('eav_entity_ix', 'entity_type', 'entity_id'),
    )

    @property
    def value(self) -> Any:
        return getattr(self, self.attribute.slot)

    def set_value(self, slot: str, value: Any) -> None:
        """ Stores the value in the given slot and clears all others. """
        for other in SLOTS.values():
            setattr(self, other, value if other == slot else None)
