from __future__ import annotations


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime


class CampusresError(Exception):
    #: the http status an outer layer should answer with
    http_status = 500


class ContextAlreadyExists(CampusresError):
    pass


class UnknownContext(CampusresError):
    pass


class ContextIsLocked(CampusresError):
    pass


class UnknownService(CampusresError):
    pass


class InvalidInput(CampusresError):
    http_status = 400


class Forbidden(CampusresError):
    http_status = 403


class NotFound(CampusresError):
    http_status = 404


class Conflict(CampusresError):
    http_status = 409


class Internal(CampusresError):
    http_status = 500


class InvalidId(InvalidInput):
    pass


class InvalidDate(InvalidInput):
    pass


class InvalidTimerange(InvalidInput):
    pass


class MissingParameter(InvalidInput):

    def __init__(self, name: str):
        super().__init__(f'{name} is required')
        self.name = name


class InvalidStatus(InvalidInput):
    pass


class InvalidField(InvalidInput):
    pass


class ClassroomInactive(InvalidInput):
    pass


class UnknownAttribute(InvalidInput):

    def __init__(self, entity_type: str, name: str):
        super().__init__(f'no attribute {name!r} defined for {entity_type!r}')
        self.entity_type = entity_type
        self.name = name


class AttributeTypeMismatch(InvalidInput):
    pass


class InvalidAttributeValue(InvalidInput):
    pass


class InvalidStatusTransition(Conflict):

    def __init__(self, old: str, new: str):
        super().__init__(f'cannot change status from {old!r} to {new!r}')
        self.old = old
        self.new = new


class DuplicateResourceType(Conflict):
    pass


class ConcurrentModification(Conflict):
    pass


class OverlappingBookingError(Conflict):

    def __init__(
        self,
        start: datetime,
        end: datetime,
        existing: Any
    ):
        super().__init__('classroom is already booked for this time period')
        self.start = start
        self.end = end
        self.existing = existing


class OverlappingAllocationError(Conflict):

    def __init__(
        self,
        start: datetime,
        end: datetime | None,
        existing: Any
    ):
        super().__init__('resource is already allocated for this time period')
        self.start = start
        self.end = end
        self.existing = existing
