from __future__ import annotations

import json
import logging

from datetime import datetime
from decimal import Decimal, InvalidOperation

from campusres.context.core import ContextServicesMixin
from campusres.db.models import AttributeDefinition, AttributeValue
from campusres.db.models.attribute import DATA_TYPES
from campusres.modules import errors
from campusres.modules import utils


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from sqlalchemy.orm import Query

    from campusres.context.core import Context


log = logging.getLogger('campusres')


#: the attributes every installation knows about,
#: (entity_type, name, data_type, is_searchable)
DEFAULT_ATTRIBUTES = (
    ('resource', 'isSoftware', 'boolean', False),
    ('resource', 'purchaseDate', 'datetime', False),
    ('resource', 'warrantyUntil', 'datetime', False),
)


class AttributeStore(ContextServicesMixin):
    """ Stores typed attributes of arbitrary entities (entity-attribute-value).

    Each value is identified by the entity type, the entity id and the
    attribute name. There's at most one value per key, writing an existing
    key overwrites the value in place.

    Attributes need to be defined before values can be stored, see
    :meth:`define`. The definition's data type decides which typed column
    holds the value::

        store.define('resource', 'isSoftware', 'boolean')
        store.upsert('resource', 5, 'isSoftware', 'boolean', True)
        store.get('resource', 5)  # -> {'isSoftware': True}

    """

    def __init__(self, context: Context, timezone: str = 'UTC'):
        self.context = context
        self.timezone = timezone

    def definitions(
        self,
        entity_type: str | None = None
    ) -> Query[AttributeDefinition]:
        query = self.session.query(AttributeDefinition)

        if entity_type is not None:
            query = query.filter(
                AttributeDefinition.entity_type == entity_type
            )

        return query.order_by(
            AttributeDefinition.entity_type,
            AttributeDefinition.name
        )

    def definition(
        self,
        entity_type: str,
        name: str
    ) -> AttributeDefinition | None:
        query = self.definitions(entity_type)
        query = query.filter(AttributeDefinition.name == name)
        return query.first()

    def define(
        self,
        entity_type: str,
        name: str,
        data_type: str,
        is_searchable: bool = False
    ) -> AttributeDefinition:
        """ Defines the given attribute, if it's not defined yet. Existing
        definitions keep their data type, redefining an attribute with a
        different data type fails.

        """

        if data_type not in DATA_TYPES:
            raise errors.InvalidInput(f'unknown data type: {data_type!r}')

        definition = self.definition(entity_type, name)

        if definition is None:
            definition = AttributeDefinition(
                entity_type=entity_type,
                name=name,
                data_type=data_type,
                is_searchable=is_searchable
            )
            self.session.add(definition)
            self.flush()

        elif definition.data_type != data_type:
            raise errors.AttributeTypeMismatch(
                f'{entity_type}.{name} is of type {definition.data_type}'
            )

        return definition

    def define_defaults(self) -> None:
        for entity_type, name, data_type, is_searchable in DEFAULT_ATTRIBUTES:
            self.define(entity_type, name, data_type, is_searchable)

    def values(
        self,
        entity_type: str,
        entity_id: int
    ) -> Query[AttributeValue]:
        query = self.session.query(AttributeValue)
        query = query.filter(AttributeValue.entity_type == entity_type)
        query = query.filter(AttributeValue.entity_id == entity_id)
        return query

    def get(self, entity_type: str, entity_id: int) -> dict[str, Any]:
        """ Returns all attributes of the given entity as a dictionary. """
        return {
            value.attribute.name: value.value
            for value in self.values(entity_type, entity_id)
        }

    def get_value(
        self,
        entity_type: str,
        entity_id: int,
        name: str,
        default: Any = None
    ) -> Any:

        query = self.values(entity_type, entity_id)
        query = query.join(AttributeValue.attribute)
        query = query.filter(AttributeDefinition.name == name)

        value = query.first()
        return default if value is None else value.value

    def upsert(
        self,
        entity_type: str,
        entity_id: int,
        name: str,
        data_type: str,
        value: Any
    ) -> AttributeValue | None:
        """ Stores the value of the given attribute, replacing the existing
        value if there is one. A value of None removes the stored value.

        If the attribute is not defined, the write fails with
        :class:`~campusres.modules.errors.UnknownAttribute`. With the
        ``strict_attributes`` setting turned off the write is dropped
        instead and None is returned.

        """
        definition = self.definition(entity_type, name)

        if definition is None:
            if self.setting('strict_attributes'):
                raise errors.UnknownAttribute(entity_type, name)

            log.warning(
                f'dropped write to undefined attribute '
                f'{entity_type}.{name} of entity {entity_id}'
            )
            return None

        if definition.data_type != data_type:
            raise errors.AttributeTypeMismatch(
                f'{entity_type}.{name} is of type {definition.data_type}, '
                f'not {data_type}'
            )

        query = self.values(entity_type, entity_id)
        query = query.filter(AttributeValue.attribute_id == definition.id)
        record = query.first()

        # None clears the value, every stored row holds exactly one value
        if value is None:
            if record is not None:
                self.session.delete(record)
                self.flush()

            return None

        coerced = self.coerce(data_type, value)

        if record is None:
            record = AttributeValue(
                entity_type=entity_type,
                entity_id=entity_id,
                attribute=definition
            )
            self.session.add(record)

        record.set_value(definition.slot, coerced)
        self.flush()

        return record

    def remove(self, entity_type: str, entity_id: int) -> int:
        """ Removes all attribute values of the given entity. """
        return self.values(entity_type, entity_id).delete('fetch')

    def coerce(self, data_type: str, value: Any) -> Any:
        """ Turns the value into the python type stored for the data type.

        """
        try:
            return self.coercions[data_type](value)
        except (TypeError, ValueError, InvalidOperation) as e:
            raise errors.InvalidAttributeValue(
                f'{value!r} is not a valid {data_type}'
            ) from e

    @property
    def coercions(self) -> dict[str, Callable[[Any], Any]]:
        return {
            'string': str,
            'integer': as_integer,
            'decimal': lambda v: Decimal(str(v)),
            'boolean': utils.as_bool,
            'datetime': self.as_datetime,
            'json': as_json,
        }

    def as_datetime(self, value: Any) -> datetime:
        try:
            return utils.as_datetime(value, self.timezone)
        except errors.InvalidDate as e:
            raise ValueError(str(e)) from e


def as_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError('booleans are not integers')

    if isinstance(value, float) and not value.is_integer():
        raise ValueError('not a whole number')

    return int(value)


def as_json(value: Any) -> Any:
    # make sure the value survives the trip to the database
    json.dumps(value)
    return value
