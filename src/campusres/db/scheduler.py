from __future__ import annotations

import logging

from sqlalchemy.sql import or_

from campusres.context.core import ContextServicesMixin
from campusres.db.attributes import AttributeStore
from campusres.db.models import (
    ORMBase,
    Allocation,
    AttributeDefinition,
    AttributeValue,
    Booking,
    Classroom,
    Resource,
    ResourceType
)
from campusres.db.models.allocation import ALLOCATION_STATUSES
from campusres.db.models.booking import (
    BOOKING_STATUSES,
    BOOKING_TYPES,
    RECURRING_PATTERNS
)
from campusres.db.models.resource import MANUAL_RESOURCE_STATUSES
from campusres.db.queries import Queries
from campusres.modules import errors
from campusres.modules import events
from campusres.modules import utils


from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from sqlalchemy.orm import Query
    from typing_extensions import Self

    from campusres.context.core import Context


log = logging.getLogger('campusres')


#: the fields which may be changed through
#: :meth:`Scheduler.update_classroom`
CLASSROOM_FIELDS = frozenset((
    'room_number',
    'building',
    'floor',
    'room_type',
    'capacity',
    'amenities',
    'equipment',
    'is_active',
    'notes',
))

#: the fields which may be changed through :meth:`Scheduler.update_resource`
RESOURCE_FIELDS = frozenset((
    'resource_type_id',
    'name',
    'asset_tag',
    'serial_number',
    'owner_id',
    'department',
    'status',
    'location',
    'data',
))

#: resource fields kept in the attribute store, by keyword argument
RESOURCE_ATTRIBUTES = {
    'is_software': ('isSoftware', 'boolean'),
    'purchase_date': ('purchaseDate', 'datetime'),
    'warranty_until': ('warrantyUntil', 'datetime'),
}


class Availability(NamedTuple):
    """ The availability of a classroom for a range, see
    :meth:`Scheduler.classroom_availability`.

    """

    classroom: Classroom
    available: bool
    conflicts: list[Booking]


class Scheduler(ContextServicesMixin):
    """ The Scheduler is responsible for talking to the backend of the given
    context to book classrooms and allocate resources. It is the main part
    of the API.

    All methods flush their changes, none of them commit. The caller is
    expected to commit the transaction (or to roll it back on failure)::

        scheduler = campusres.new_scheduler('my_app')
        booking = scheduler.create_booking(1, 'Algebra', start, end)
        scheduler.commit()

    """

    def __init__(self, context: Context, timezone: str = 'UTC'):
        """ Initializes a new Scheduler instance.

        :context:
            The :class:`campusres.context.core.Context` this scheduler should
            operate on. Acquire a context by using
            :func:`campusres.context.registry.Registry.register_context`.

        :timezone:
            Dates passed to the scheduler that are not timezone-aware are
            assumed to be of this timezone. All dates are stored in UTC.

        """

        assert isinstance(timezone, str)

        self.context = context
        self.timezone = timezone

        self.queries = Queries(context)
        self.attributes = AttributeStore(context, timezone)

    def clone(self) -> Self:
        """ Clones the scheduler. The result will be a new scheduler using the
        same context and timezone.

        """
        return self.__class__(self.context, self.timezone)

    def setup_database(self) -> None:
        """ Creates the tables, indices and constraints required for
        campusres and defines the default attributes. This needs to be
        called once per database. Multiple invocations won't hurt but they
        are unnecessary.

        """
        ORMBase.metadata.create_all(self.session.bind)
        self.attributes.define_defaults()

    def extinguish_managed_records(self) -> None:
        """ WARNING:
        Completely removes all records stored by campusres. That means all
        bookings, classrooms, allocations, resources and attributes!

        """
        for model in (
            AttributeValue,
            AttributeDefinition,
            Allocation,
            Booking,
            Resource,
            ResourceType,
            Classroom
        ):
            self.session.query(model).delete('fetch')

    def _prepare_date(self, value: Any, name: str) -> datetime:
        if value is None:
            raise errors.MissingParameter(name)

        return utils.as_datetime(value, self.timezone)

    def _prepare_range(
        self,
        start: Any,
        end: Any,
        names: tuple[str, str] = ('start', 'end')
    ) -> tuple[datetime, datetime]:

        start = self._prepare_date(start, names[0])
        end = self._prepare_date(end, names[1])

        if not start < end:
            raise errors.InvalidTimerange(
                f'{names[1]} must be after {names[0]}'
            )

        return start, end

    def _optional_id(self, value: Any, name: str) -> int | None:
        return None if value is None else utils.as_id(value, name)

    def _prepare_capacity(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise errors.InvalidInput(f'invalid capacity: {value!r}')

        if value < 0:
            raise errors.InvalidInput('capacity must not be negative')

        return value

    # Classrooms

    def add_classroom(
        self,
        room_number: str,
        building: str = '',
        floor: int = 0,
        room_type: str = 'classroom',
        capacity: int = 0,
        amenities: str = '',
        equipment: str = '',
        is_active: bool = True,
        notes: str = ''
    ) -> Classroom:

        if not room_number:
            raise errors.MissingParameter('room_number')

        capacity = self._prepare_capacity(capacity)

        classroom = Classroom(
            room_number=room_number,
            building=building,
            floor=floor,
            room_type=room_type,
            capacity=capacity,
            amenities=amenities,
            equipment=equipment,
            is_active=is_active,
            notes=notes
        )

        self.session.add(classroom)
        self.flush()

        return classroom

    def classroom_by_id(self, classroom_id: Any) -> Classroom:
        classroom_id = utils.as_id(classroom_id, 'classroom_id')
        classroom = self.session.get(Classroom, classroom_id)

        if classroom is None:
            raise errors.NotFound(f'classroom {classroom_id} not found')

        return classroom

    def classrooms(
        self,
        building: str | None = None,
        room_type: str | None = None,
        is_active: bool | None = None
    ) -> Query[Classroom]:

        query = self.session.query(Classroom)

        if building is not None:
            query = query.filter(Classroom.building == building)

        if room_type is not None:
            query = query.filter(Classroom.room_type == room_type)

        if is_active is not None:
            query = query.filter(Classroom.is_active == is_active)

        return query.order_by(Classroom.building, Classroom.room_number)

    def update_classroom(self, classroom_id: Any, **patch: Any) -> Classroom:
        """ Changes the given fields of the classroom. Deactivating a
        classroom leaves its existing bookings untouched.

        """
        unknown = set(patch) - CLASSROOM_FIELDS
        if unknown:
            raise errors.InvalidField(
                f'unknown classroom fields: {", ".join(sorted(unknown))}'
            )

        if 'room_number' in patch and not patch['room_number']:
            raise errors.MissingParameter('room_number')

        if 'capacity' in patch:
            patch['capacity'] = self._prepare_capacity(patch['capacity'])

        classroom = self.classroom_by_id(classroom_id)

        for key, value in patch.items():
            setattr(classroom, key, value)

        self.flush()
        return classroom

    def classroom_availability(
        self,
        classroom_id: Any,
        start: Any,
        end: Any
    ) -> Availability:
        """ Returns the :class:`Availability` of the classroom, listing the
        confirmed bookings in the way of a booking from start to end.

        """
        start, end = self._prepare_range(start, end)
        classroom = self.classroom_by_id(classroom_id)

        conflicts = self.queries.conflicts(
            Booking, classroom.id, start, end
        ).all()

        return Availability(
            classroom=classroom,
            available=classroom.is_active and not conflicts,
            conflicts=conflicts
        )

    def available_classrooms(self, start: Any, end: Any) -> Query[Classroom]:
        start, end = self._prepare_range(start, end)
        return self.queries.available_classrooms(start, end)

    def classroom_schedule(
        self,
        classroom_id: Any,
        start: Any = None,
        end: Any = None
    ) -> Query[Booking]:
        """ Returns the bookings of the classroom which are not cancelled,
        lying inside the given range. Without a start, the range starts now.
        Without an end, all later bookings are included.

        """
        classroom = self.classroom_by_id(classroom_id)

        if start is None:
            start = self.utcnow()
        else:
            start = self._prepare_date(start, 'start')

        if end is not None:
            end = self._prepare_date(end, 'end')

            if not start < end:
                raise errors.InvalidTimerange('end must be after start')

        return self.queries.bookings_in_window(classroom.id, start, end)

    # Bookings

    def booking_by_id(self, booking_id: Any) -> Booking:
        booking_id = utils.as_id(booking_id, 'booking_id')
        booking = self.session.get(Booking, booking_id)

        if booking is None:
            raise errors.NotFound(f'booking {booking_id} not found')

        return booking

    def bookings(
        self,
        classroom_id: Any = None,
        course_id: Any = None,
        start: Any = None,
        end: Any = None,
        status: str | None = None,
        booked_by: Any = None
    ) -> Query[Booking]:
        """ Returns the bookings matching all given filters, ordered by
        start. With start, only bookings starting at or after it are returned.
        With end, only bookings ending at or before it.

        """

        query = self.session.query(Booking)

        if classroom_id is not None:
            query = query.filter(
                Booking.classroom_id == utils.as_id(
                    classroom_id, 'classroom_id'
                )
            )

        if course_id is not None:
            query = query.filter(
                Booking.course_id == utils.as_id(course_id, 'course_id')
            )

        if booked_by is not None:
            query = query.filter(
                Booking.booked_by_user_id == utils.as_id(
                    booked_by, 'booked_by'
                )
            )

        if status is not None:
            if status not in BOOKING_STATUSES:
                raise errors.InvalidStatus(f'unknown status: {status!r}')

            query = query.filter(Booking.status == status)

        if start is not None:
            query = query.filter(
                Booking.start_time >= self._prepare_date(start, 'start')
            )

        if end is not None:
            query = query.filter(
                Booking.end_time <= self._prepare_date(end, 'end')
            )

        return query.order_by(Booking.start_time, Booking.id)

    def create_booking(
        self,
        classroom_id: Any,
        title: str,
        start: Any,
        end: Any,
        booking_type: str = 'course',
        booked_by: Any = None,
        course_id: Any = None,
        description: str = '',
        recurring_pattern: str = 'none',
        recurring_until: Any = None
    ) -> Booking:
        """ Books the classroom from start until end.

        New bookings are 'pending'. They don't occupy the classroom until
        they are confirmed through :meth:`update_booking_status`, but they
        are rejected if they overlap a confirmed booking already.

        :classroom_id:
            The id of an active classroom.

        :start, end:
            The booked range, the end is not included. Naive dates are
            assumed to be in the timezone of the scheduler.

        :recurring_pattern:
            One of 'none', 'daily', 'weekly' or 'monthly'. Recurring bookings
            are stored as a single booking, the pattern and the
            recurring_until date are informational.

        Raises :class:`~campusres.modules.errors.OverlappingBookingError`
        if a confirmed booking of the classroom overlaps the range.

        """

        if classroom_id is None:
            raise errors.MissingParameter('classroom_id')

        if not title:
            raise errors.MissingParameter('title')

        start, end = self._prepare_range(start, end)

        if booking_type not in BOOKING_TYPES:
            raise errors.InvalidInput(f'unknown booking type: {booking_type}')

        if recurring_pattern not in RECURRING_PATTERNS:
            raise errors.InvalidInput(
                f'unknown recurring pattern: {recurring_pattern}'
            )

        if recurring_until is not None:
            recurring_until = self._prepare_date(
                recurring_until, 'recurring_until'
            )

        booked_by = self._optional_id(booked_by, 'booked_by')
        course_id = self._optional_id(course_id, 'course_id')

        classroom = self.classroom_by_id(classroom_id)

        if not classroom.is_active:
            raise errors.ClassroomInactive(
                f'classroom {classroom.id} is not active'
            )

        existing = self.queries.conflicts(
            Booking, classroom.id, start, end
        ).first()

        if existing is not None:
            raise errors.OverlappingBookingError(start, end, existing)

        booking = Booking(
            classroom=classroom,
            course_id=course_id,
            booked_by_user_id=booked_by,
            title=title,
            description=description,
            start_time=start,
            end_time=end,
            booking_type=booking_type,
            status='pending',
            recurring_pattern=recurring_pattern,
            recurring_until=recurring_until
        )

        self.session.add(booking)
        self.flush()

        log.info(f'booked classroom {classroom.id} from {start} to {end}')
        events.on_booking_created(self.context, booking)

        return booking

    def update_booking_status(
        self,
        booking_id: Any,
        status: str,
        actor_role: str | None = None,
        actor_id: Any = None
    ) -> Booking:
        """ Moves the booking to the given status.

        Actors with one of the :ref:`settings.manager_roles` may take any
        allowed transition (pending to confirmed or cancelled, confirmed to
        cancelled or completed). The user who booked may cancel the booking.
        Everybody else is refused.

        Confirming a booking checks for overlaps again, as another booking
        might have been confirmed since this one was created.

        """

        if status not in BOOKING_STATUSES:
            raise errors.InvalidStatus(f'unknown status: {status!r}')

        booking = self.booking_by_id(booking_id)
        actor_id = self._optional_id(actor_id, 'actor_id')

        is_manager = actor_role in self.setting('manager_roles')
        is_requester = (
            actor_id is not None
            and actor_id == booking.booked_by_user_id
        )

        if not is_manager and not (is_requester and status == 'cancelled'):
            raise errors.Forbidden(
                f'not allowed to set booking {booking.id} to {status}'
            )

        if not booking.can_transition_to(status):
            raise errors.InvalidStatusTransition(booking.status, status)

        if status in Booking.active_statuses:
            existing = self.queries.conflicts(
                Booking,
                booking.classroom_id,
                booking.start_time,
                booking.end_time,
                exclude_id=booking.id
            ).first()

            if existing is not None:
                raise errors.OverlappingBookingError(
                    booking.start_time, booking.end_time, existing
                )

        old_status = booking.status
        booking.status = status
        self.flush()

        log.info(f'booking {booking.id} changed from {old_status} to {status}')
        events.on_booking_status_changed(self.context, booking, old_status)

        return booking

    def cancel_booking(
        self,
        booking_id: Any,
        actor_role: str | None = None,
        actor_id: Any = None
    ) -> Booking:
        return self.update_booking_status(
            booking_id, 'cancelled', actor_role, actor_id
        )

    # Resources

    def add_resource_type(
        self,
        name: str,
        description: str = ''
    ) -> ResourceType:
        if not name:
            raise errors.MissingParameter('name')

        query = self.session.query(ResourceType)
        query = query.filter(ResourceType.name == name)

        if self.session.query(query.exists()).scalar():
            raise errors.DuplicateResourceType(
                f'resource type {name!r} exists already'
            )

        resource_type = ResourceType(name=name, description=description)
        self.session.add(resource_type)
        self.flush()

        return resource_type

    def resource_types(self) -> Query[ResourceType]:
        return self.session.query(ResourceType).order_by(ResourceType.name)

    def resource_type_by_id(self, resource_type_id: Any) -> ResourceType:
        resource_type_id = utils.as_id(resource_type_id, 'resource_type_id')
        resource_type = self.session.get(ResourceType, resource_type_id)

        if resource_type is None:
            raise errors.NotFound(
                f'resource type {resource_type_id} not found'
            )

        return resource_type

    def add_resource(
        self,
        name: str,
        resource_type_id: Any = None,
        asset_tag: str = '',
        serial_number: str = '',
        owner_id: Any = None,
        department: str = '',
        location: str = '',
        status: str = 'available',
        data: dict[str, Any] | None = None,
        is_software: bool = False,
        purchase_date: Any = None,
        warranty_until: Any = None
    ) -> Resource:
        """ Adds a resource which may be allocated afterwards.

        :is_software:
            Software resources (licenses for example) are not exclusive,
            any number of allocations may overlap.

        :purchase_date, warranty_until:
            Stored in the attribute store, together with is_software.

        """

        if not name:
            raise errors.MissingParameter('name')

        self._assert_manual_status(status)

        if resource_type_id is not None:
            resource_type_id = self.resource_type_by_id(resource_type_id).id

        resource = Resource(
            resource_type_id=resource_type_id,
            name=name,
            asset_tag=asset_tag,
            serial_number=serial_number,
            owner_id=self._optional_id(owner_id, 'owner_id'),
            department=department,
            location=location,
            status=status,
            data=data
        )

        self.session.add(resource)
        self.flush()

        self._store_resource_attributes(resource, {
            'is_software': is_software,
            'purchase_date': purchase_date,
            'warranty_until': warranty_until
        })

        return resource

    def _assert_manual_status(self, status: str) -> None:
        # 'allocated' follows from the allocations, it's never set by hand
        if status != 'available' and status not in MANUAL_RESOURCE_STATUSES:
            raise errors.InvalidStatus(
                f'resource status cannot be set to {status!r}'
            )

    def _store_resource_attributes(
        self,
        resource: Resource,
        values: dict[str, Any]
    ) -> None:

        for key, value in values.items():
            name, data_type = RESOURCE_ATTRIBUTES[key]

            # unset dates are not stored at all
            if value is None:
                continue

            self.attributes.upsert(
                Resource.entity_type, resource.id, name, data_type, value
            )

    def resource_by_id(self, resource_id: Any) -> Resource:
        resource_id = utils.as_id(resource_id, 'resource_id')
        resource = self.session.get(Resource, resource_id)

        if resource is None:
            raise errors.NotFound(f'resource {resource_id} not found')

        return resource

    def resources(
        self,
        search: str | None = None,
        status: str | None = None,
        resource_type_id: Any = None
    ) -> Query[Resource]:
        """ Returns the resources matching the given filters. The search
        term is looked up in the name, the asset tag and the serial number.

        """

        query = self.session.query(Resource)

        if search:
            term = f'%{search}%'
            query = query.filter(or_(
                Resource.name.ilike(term),
                Resource.asset_tag.ilike(term),
                Resource.serial_number.ilike(term)
            ))

        if status is not None:
            query = query.filter(Resource.status == status)

        if resource_type_id is not None:
            query = query.filter(
                Resource.resource_type_id == utils.as_id(
                    resource_type_id, 'resource_type_id'
                )
            )

        return query.order_by(Resource.name, Resource.id)

    def update_resource(self, resource_id: Any, **patch: Any) -> Resource:
        """ Changes the given fields of the resource.

        The status may only be set to 'maintenance', 'retired' or
        'available'. Setting it to 'available' hands the status back to the
        allocations, so it becomes 'allocated' again if there is an active
        allocation.

        """

        unknown = set(patch) - RESOURCE_FIELDS - set(RESOURCE_ATTRIBUTES)
        if unknown:
            raise errors.InvalidField(
                f'unknown resource fields: {", ".join(sorted(unknown))}'
            )

        if 'name' in patch and not patch['name']:
            raise errors.MissingParameter('name')

        if 'status' in patch:
            self._assert_manual_status(patch['status'])

        resource = self.resource_by_id(resource_id)

        if patch.get('resource_type_id') is not None:
            patch['resource_type_id'] = self.resource_type_by_id(
                patch['resource_type_id']
            ).id

        if 'owner_id' in patch:
            patch['owner_id'] = self._optional_id(
                patch['owner_id'], 'owner_id'
            )

        old_status = resource.status

        for key in RESOURCE_FIELDS.intersection(patch):
            setattr(resource, key, patch[key])

        self.flush()

        self._store_resource_attributes(resource, {
            key: value for key, value in patch.items()
            if key in RESOURCE_ATTRIBUTES
        })

        if resource.status == 'available':
            self._sync_resource_status(resource, old_status)

        elif resource.status != old_status:
            log.info(
                f'resource {resource.id} changed from {old_status} '
                f'to {resource.status}'
            )
            events.on_resource_status_changed(
                self.context, resource, old_status
            )

        return resource

    def remove_resource(self, resource_id: Any) -> None:
        """ Removes the resource together with its allocations and its
        attributes.

        """
        resource = self.resource_by_id(resource_id)

        query = self.session.query(Allocation)
        query = query.filter(Allocation.resource_id == resource.id)
        query.delete('fetch')

        self.attributes.remove(Resource.entity_type, resource.id)

        self.session.delete(resource)
        self.flush()

    def resource_attributes(self, resource_id: Any) -> dict[str, Any]:
        resource = self.resource_by_id(resource_id)
        return self.attributes.get(Resource.entity_type, resource.id)

    def is_exclusive(self, resource: Resource) -> bool:
        """ Returns True if the allocations of the resource may not
        overlap, which is the case for all resources but software.

        """
        return not self.attributes.get_value(
            Resource.entity_type, resource.id, 'isSoftware', False
        )

    def _sync_resource_status(
        self,
        resource: Resource,
        old_status: str | None = None
    ) -> bool:
        """ Derives the status of the resource from its allocations. It is
        'allocated' if there is an active allocation and 'available'
        otherwise. Resources in maintenance or retired are left alone.

        Returns True if the status changed.

        """

        if resource.is_manually_managed:
            return False

        old_status = old_status or resource.status

        query = self.session.query(Allocation)
        query = query.filter(Allocation.resource_id == resource.id)
        query = self.queries.active_intervals(query, Allocation)

        if self.session.query(query.exists()).scalar():
            resource.status = 'allocated'
        else:
            resource.status = 'available'

        if resource.status == old_status:
            return False

        self.flush()

        log.info(
            f'resource {resource.id} changed from {old_status} '
            f'to {resource.status}'
        )
        events.on_resource_status_changed(self.context, resource, old_status)

        return True

    def reconcile_resource_status(
        self,
        resource_id: Any = None
    ) -> list[Resource]:
        """ Derives the status of the given resource (or of all resources)
        from the allocations again and returns the resources whose status
        was wrong.

        """

        if resource_id is not None:
            resources = [self.resource_by_id(resource_id)]
        else:
            resources = self.resources().all()

        changed = []

        for resource in resources:
            old_status = resource.status

            if self._sync_resource_status(resource):
                log.warning(
                    f'repaired status of resource {resource.id}, '
                    f'was {old_status}'
                )
                changed.append(resource)

        return changed

    # Allocations

    def allocation_by_id(self, allocation_id: Any) -> Allocation:
        allocation_id = utils.as_id(allocation_id, 'allocation_id')
        allocation = self.session.get(Allocation, allocation_id)

        if allocation is None:
            raise errors.NotFound(f'allocation {allocation_id} not found')

        return allocation

    def allocations(
        self,
        resource_id: Any = None,
        user_id: Any = None,
        status: str | None = None
    ) -> Query[Allocation]:

        query = self.session.query(Allocation)

        if resource_id is not None:
            query = query.filter(
                Allocation.resource_id == utils.as_id(
                    resource_id, 'resource_id'
                )
            )

        if user_id is not None:
            query = query.filter(
                Allocation.allocated_to_user_id == utils.as_id(
                    user_id, 'user_id'
                )
            )

        if status is not None:
            query = query.filter(Allocation.status == status)

        return query.order_by(Allocation.allocated_at, Allocation.id)

    def _assert_no_allocation_conflict(
        self,
        resource: Resource,
        start: datetime,
        end: datetime | None,
        exclude_id: int | None = None
    ) -> None:

        existing = self.queries.conflicts(
            Allocation, resource.id, start, end, exclude_id
        ).first()

        if existing is not None:
            raise errors.OverlappingAllocationError(start, end, existing)

    def create_allocation(
        self,
        resource_id: Any,
        allocated_to_user_id: Any = None,
        allocated_to_department: str = '',
        allocated_by: Any = None,
        allocated_at: Any = None,
        due_back: Any = None,
        status: str | None = None,
        notes: str = '',
        data: dict[str, Any] | None = None,
        actor_role: str | None = None
    ) -> Allocation:
        """ Allocates the resource from allocated_at (now by default) until
        due_back. Allocations without due_back last until they are
        returned.

        The status defaults to 'allocated'. Actors with one of the
        :ref:`settings.self_service_roles` always get a 'pending'
        allocation, which has to be approved later by setting the status
        to 'allocated' through :meth:`update_allocation`.

        Unless the resource is software, a pending or allocated request
        fails with
        :class:`~campusres.modules.errors.OverlappingAllocationError` if it
        overlaps an allocated allocation of the resource.

        """

        if resource_id is None:
            raise errors.MissingParameter('resource_id')

        status = status or 'allocated'

        if status not in ALLOCATION_STATUSES:
            raise errors.InvalidStatus(f'unknown status: {status!r}')

        if actor_role in self.setting('self_service_roles'):
            status = 'pending'

        if allocated_at is None:
            allocated_at = self.utcnow()
        else:
            allocated_at = self._prepare_date(allocated_at, 'allocated_at')

        if due_back is not None:
            due_back = self._prepare_date(due_back, 'due_back')

            if not allocated_at < due_back:
                raise errors.InvalidTimerange(
                    'due_back must be after allocated_at'
                )

        allocated_to_user_id = self._optional_id(
            allocated_to_user_id, 'allocated_to_user_id'
        )
        allocated_by = self._optional_id(allocated_by, 'allocated_by')

        resource = self.resource_by_id(resource_id)
        exclusive = self.is_exclusive(resource)

        if exclusive and status in ('pending', 'allocated'):
            self._assert_no_allocation_conflict(
                resource, allocated_at, due_back
            )

        allocation = Allocation(
            resource=resource,
            allocated_to_user_id=allocated_to_user_id,
            allocated_to_department=allocated_to_department,
            allocated_by=allocated_by,
            allocated_at=allocated_at,
            due_back=due_back,
            returned_at=self.utcnow() if status == 'returned' else None,
            status=status,
            exclusive=exclusive,
            notes=notes,
            data=data
        )

        self.session.add(allocation)
        self.flush()

        log.info(
            f'allocated resource {resource.id} from {allocated_at} '
            f'to {due_back or "open end"} ({status})'
        )
        events.on_allocation_created(self.context, allocation)

        self._sync_resource_status(resource)

        return allocation

    def update_allocation(
        self,
        allocation_id: Any,
        **patch: Any
    ) -> Allocation:
        """ Changes the given fields of the allocation, see
        :attr:`campusres.db.models.Allocation.updatable_fields`.

        Setting the status to 'allocated' checks the effective range of the
        allocation (patched or existing dates) for overlaps again, ignoring
        the allocation itself. Setting it to 'returned' stamps returned_at,
        unless it is part of the patch.

        The status of the resource follows the allocations. On failure
        nothing is changed.

        """

        unknown = set(patch) - Allocation.updatable_fields
        if unknown:
            raise errors.InvalidField(
                f'unknown allocation fields: {", ".join(sorted(unknown))}'
            )

        allocation = self.allocation_by_id(allocation_id)
        changes = dict(patch)

        new_status = changes.get('status')
        if 'status' in changes and new_status not in ALLOCATION_STATUSES:
            raise errors.InvalidStatus(f'unknown status: {new_status!r}')

        if 'allocated_at' in changes:
            changes['allocated_at'] = self._prepare_date(
                changes['allocated_at'], 'allocated_at'
            )

        for key in ('due_back', 'returned_at'):
            if changes.get(key) is not None:
                changes[key] = self._prepare_date(changes[key], key)

        for key in ('allocated_to_user_id', 'allocated_by'):
            if key in changes:
                changes[key] = self._optional_id(changes[key], key)

        start = changes.get('allocated_at', allocation.allocated_at)
        end = changes.get('due_back', allocation.due_back)

        if end is not None and not start < end:
            raise errors.InvalidTimerange(
                'due_back must be after allocated_at'
            )

        status = changes.get('status', allocation.status)
        resource = allocation.resource
        exclusive = self.is_exclusive(resource)

        moved = 'allocated_at' in changes or 'due_back' in changes
        touched = 'status' in changes or moved
        if exclusive and status == 'allocated' and touched:
            self._assert_no_allocation_conflict(
                resource, start, end, exclude_id=allocation.id
            )

        returning = status == 'returned' and allocation.status != 'returned'
        if returning and changes.get('returned_at') is None:
            changes['returned_at'] = self.utcnow()

        # an allocation handed out again is no longer returned
        reopened = allocation.status == 'returned' and status != 'returned'
        if reopened and 'returned_at' not in changes:
            changes['returned_at'] = None

        for key, value in changes.items():
            setattr(allocation, key, value)

        allocation.exclusive = exclusive
        self.flush()

        log.info(f'allocation {allocation.id} changed: {", ".join(changes)}')
        events.on_allocation_changed(self.context, allocation, changes)

        self._sync_resource_status(resource)

        return allocation

    def remove_allocation(self, allocation_id: Any) -> None:
        allocation = self.allocation_by_id(allocation_id)
        resource = allocation.resource

        self.session.delete(allocation)
        self.flush()

        log.info(f'removed allocation {allocation.id}')
        events.on_allocation_removed(self.context, allocation)

        self._sync_resource_status(resource)

    # Attributes

    def get_attributes(
        self,
        entity_type: str,
        entity_id: Any
    ) -> dict[str, Any]:
        return self.attributes.get(
            entity_type, utils.as_id(entity_id, 'entity_id')
        )

    def set_attribute(
        self,
        entity_type: str,
        entity_id: Any,
        name: str,
        data_type: str,
        value: Any
    ) -> None:
        self.attributes.upsert(
            entity_type,
            utils.as_id(entity_id, 'entity_id'),
            name,
            data_type,
            value
        )
