from __future__ import annotations

from datetime import datetime
from sqlalchemy import event
from sqlalchemy.orm import registry
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import DDL

from .types import JSON
from .types import UTCDateTime


from typing import Any


class ORMBase(DeclarativeBase):

    registry = registry(type_annotation_map={
        datetime: UTCDateTime(timezone=False),
        dict[str, Any]: JSON,
    })


# the exclusion constraints compare integer ids with '=' inside a gist index
event.listen(
    ORMBase.metadata,
    'before_create',
    DDL('CREATE EXTENSION IF NOT EXISTS btree_gist').execute_if(
        dialect='postgresql'
    )
)
