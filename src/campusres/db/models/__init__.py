from campusres.db.models.base import ORMBase
from campusres.db.models.classroom import Classroom
from campusres.db.models.booking import Booking
from campusres.db.models.resource import Resource, ResourceType
from campusres.db.models.allocation import Allocation
from campusres.db.models.attribute import AttributeDefinition, AttributeValue


__all__ = (
    'ORMBase',
    'Allocation',
    'AttributeDefinition',
    'AttributeValue',
    'Booking',
    'Classroom',
    'Resource',
    'ResourceType',
)
