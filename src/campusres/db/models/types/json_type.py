from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.dialects.postgresql import JSONB


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.types import TypeEngine

    _Base = types.TypeDecorator[dict[str, Any]]
    _ValueBase = types.TypeDecorator[Any]
else:
    _Base = types.TypeDecorator
    _ValueBase = types.TypeDecorator


def json_impl(dialect: Dialect, none_as_null: bool) -> TypeEngine[Any]:
    if dialect.name == 'postgresql':
        return dialect.type_descriptor(JSONB(none_as_null=none_as_null))
    return dialect.type_descriptor(types.JSON(none_as_null=none_as_null))


class JSON(_Base):
    """ A JSON based type that coerces None's to empty dictionaries. Uses
    JSONB on PostgreSQL.

    That is, this column cannot be `'null'::jsonb`. It could
    still be `NULL` though, if it's nullable and never explicitly
    set. But on the Python end you should always see a dictionary.

    """

    impl = types.JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return json_impl(dialect, none_as_null=False)

    def process_bind_param(  # type:ignore[override]
        self,
        value: dict[str, Any] | None,
        dialect: Dialect
    ) -> dict[str, Any]:

        return {} if value is None else value

    def process_result_value(
        self,
        value: dict[str, Any] | None,
        dialect: Dialect
    ) -> dict[str, Any]:

        return {} if value is None else value


class JSONValue(_ValueBase):
    """ Holds any JSON value (lists, strings, numbers included). Python's
    None is stored as SQL `NULL`.

    """

    impl = types.JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        return json_impl(dialect, none_as_null=True)


MutableDict.associate_with(JSON)  # type:ignore[no-untyped-call]
