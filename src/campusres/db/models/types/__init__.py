from campusres.db.models.types.json_type import JSON, JSONValue
from campusres.db.models.types.utcdatetime import UTCDateTime

__all__ = ('JSON', 'JSONValue', 'UTCDateTime')
