from __future__ import annotations

import pytest

from datetime import datetime, timedelta
from campusres.modules import errors
from campusres.modules import events


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from campusres.db.models import Resource
    from campusres.db.scheduler import Scheduler


@pytest.fixture
def laptop(scheduler: Scheduler) -> Resource:
    laptop_type = scheduler.add_resource_type('Laptop')
    laptop = scheduler.add_resource(
        'ThinkPad T14',
        resource_type_id=laptop_type.id,
        asset_tag='IT-0042',
        serial_number='PF-123'
    )
    scheduler.commit()
    return laptop


@pytest.fixture
def license(scheduler: Scheduler) -> Resource:
    license = scheduler.add_resource('MATLAB license', is_software=True)
    scheduler.commit()
    return license


def test_create_allocation(scheduler: Scheduler, laptop: Resource) -> None:
    created = []
    events.on_allocation_created.append(
        lambda context, allocation: created.append(allocation)
    )

    allocation = scheduler.create_allocation(
        laptop.id,
        allocated_to_user_id=12,
        allocated_to_department='Physics',
        allocated_by='1',
        allocated_at=datetime(2024, 9, 1),
        due_back=datetime(2024, 9, 30),
        notes='Semester loan'
    )
    scheduler.commit()

    assert allocation.status == 'allocated'
    assert allocation.exclusive is True
    assert allocation.allocated_by == 1
    assert allocation.returned_at is None
    assert allocation.resource is laptop
    assert laptop.status == 'allocated'
    assert created == [allocation]


def test_create_allocation_defaults_to_now(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    before = scheduler.utcnow()
    allocation = scheduler.create_allocation(laptop.id)

    assert allocation.due_back is None
    assert before <= allocation.allocated_at <= scheduler.utcnow()


def test_create_allocation_invalid_input(
    scheduler: Scheduler,
    laptop: Resource
) -> None:

    with pytest.raises(errors.MissingParameter) as e:
        scheduler.create_allocation(None)

    assert e.value.name == 'resource_id'
    assert e.value.http_status == 400

    with pytest.raises(errors.NotFound):
        scheduler.create_allocation(laptop.id + 100)

    with pytest.raises(errors.InvalidStatus):
        scheduler.create_allocation(laptop.id, status='lost')

    with pytest.raises(errors.InvalidTimerange):
        scheduler.create_allocation(
            laptop.id,
            allocated_at=datetime(2024, 9, 2),
            due_back=datetime(2024, 9, 1)
        )

    with pytest.raises(errors.InvalidDate):
        scheduler.create_allocation(laptop.id, due_back='next week')

    assert scheduler.allocations().count() == 0
    assert laptop.status == 'available'


def test_overlapping_hardware_allocation(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    existing = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 1),
        due_back=datetime(2024, 9, 10)
    )
    scheduler.commit()

    with pytest.raises(errors.OverlappingAllocationError) as e:
        scheduler.create_allocation(
            laptop.id,
            allocated_at=datetime(2024, 9, 5),
            due_back=datetime(2024, 9, 15)
        )

    assert e.value.existing is existing
    assert e.value.http_status == 409

    # pending requests are checked as well
    with pytest.raises(errors.OverlappingAllocationError):
        scheduler.create_allocation(
            laptop.id,
            allocated_at=datetime(2024, 9, 5),
            status='pending'
        )

    # an open ended request overlaps everything after its start
    with pytest.raises(errors.OverlappingAllocationError):
        scheduler.create_allocation(
            laptop.id, allocated_at=datetime(2024, 8, 1)
        )

    assert scheduler.allocations(resource_id=laptop.id).count() == 1

    # touching allocations are fine
    scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 10),
        due_back=datetime(2024, 9, 20)
    )
    assert scheduler.allocations(resource_id=laptop.id).count() == 2


def test_open_ended_allocation_blocks(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    scheduler.create_allocation(laptop.id, allocated_at=datetime(2024, 9, 1))

    with pytest.raises(errors.OverlappingAllocationError):
        scheduler.create_allocation(
            laptop.id,
            allocated_at=datetime(2030, 1, 1),
            due_back=datetime(2030, 1, 2)
        )

    # but not before it starts
    scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 8, 1),
        due_back=datetime(2024, 9, 1)
    )


def test_software_allocations_may_overlap(
    scheduler: Scheduler,
    license: Resource
) -> None:
    start = datetime(2024, 9, 1)
    end = datetime(2024, 12, 31)

    first = scheduler.create_allocation(
        license.id, allocated_to_user_id=1, allocated_at=start, due_back=end
    )
    second = scheduler.create_allocation(
        license.id, allocated_to_user_id=2, allocated_at=start, due_back=end
    )
    scheduler.commit()

    assert first.status == second.status == 'allocated'
    assert first.exclusive is second.exclusive is False
    assert not scheduler.is_exclusive(license)
    assert license.status == 'allocated'


def test_student_requests_are_pending(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id,
        allocated_to_user_id=42,
        status='allocated',
        actor_role='student'
    )

    assert allocation.status == 'pending'
    assert laptop.status == 'available'

    allocation = scheduler.update_allocation(allocation.id, status='allocated')
    assert allocation.status == 'allocated'
    assert laptop.status == 'allocated'


def test_self_service_roles_setting(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    scheduler.context.set_setting('self_service_roles', ('student', 'guest'))

    allocation = scheduler.create_allocation(laptop.id, actor_role='guest')
    assert allocation.status == 'pending'


def test_return_allocation(scheduler: Scheduler, laptop: Resource) -> None:
    changes = []
    events.on_allocation_changed.append(
        lambda context, allocation, patch: changes.append(patch)
    )

    statuses = []
    events.on_resource_status_changed.append(
        lambda context, resource, old: statuses.append((old, resource.status))
    )

    allocation = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 1),
        due_back=datetime(2024, 9, 30)
    )
    assert laptop.status == 'allocated'

    scheduler.update_allocation(allocation.id, status='returned')
    scheduler.commit()

    assert allocation.status == 'returned'
    assert allocation.returned_at is not None
    assert laptop.status == 'available'

    assert changes[0]['status'] == 'returned'
    assert 'returned_at' in changes[0]
    assert statuses == [('available', 'allocated'), ('allocated', 'available')]

    # the resource is free again
    scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 15),
        due_back=datetime(2024, 9, 20)
    )


def test_return_keeps_resource_allocated_while_others_remain(
    scheduler: Scheduler,
    license: Resource
) -> None:
    first = scheduler.create_allocation(license.id, allocated_to_user_id=1)
    scheduler.create_allocation(license.id, allocated_to_user_id=2)

    scheduler.update_allocation(first.id, status='returned')
    assert license.status == 'allocated'


def test_reallocate_returned_allocation(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id, allocated_at=datetime(2024, 9, 1)
    )

    scheduler.update_allocation(allocation.id, status='returned')
    assert allocation.returned_at is not None
    assert laptop.status == 'available'

    scheduler.update_allocation(allocation.id, status='allocated')
    assert allocation.status == 'allocated'
    assert allocation.returned_at is None
    assert laptop.status == 'allocated'


def test_return_with_explicit_date(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id, allocated_at=datetime(2024, 9, 1)
    )
    scheduler.update_allocation(
        allocation.id,
        status='returned',
        returned_at='2024-09-15T12:00:00+00:00'
    )

    assert allocation.returned_at is not None
    assert allocation.returned_at.day == 15


def test_reallocate_excludes_itself(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 1),
        due_back=datetime(2024, 9, 2)
    )

    scheduler.update_allocation(
        allocation.id,
        status='allocated',
        due_back=datetime(2024, 9, 5)
    )
    scheduler.commit()

    assert allocation.status == 'allocated'
    assert allocation.due_back is not None
    assert allocation.due_back.day == 4  # 2024-09-05 00:00 in Zurich


def test_reallocate_conflict(scheduler: Scheduler, laptop: Resource) -> None:
    changes = []
    events.on_allocation_changed.append(
        lambda context, allocation, patch: changes.append(patch)
    )

    first = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 1),
        due_back=datetime(2024, 9, 10)
    )
    second = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 10),
        due_back=datetime(2024, 9, 20),
        status='returned'
    )

    with pytest.raises(errors.OverlappingAllocationError) as e:
        scheduler.update_allocation(
            second.id,
            status='allocated',
            allocated_at=datetime(2024, 9, 5)
        )

    assert e.value.existing is first

    # nothing changed
    assert second.status == 'returned'
    assert second.allocated_at.day == 9  # 2024-09-10 00:00 in Zurich
    assert changes == []

    # moving an allocated allocation is checked too
    third = scheduler.create_allocation(
        laptop.id,
        allocated_at=datetime(2024, 9, 10),
        due_back=datetime(2024, 9, 20)
    )

    with pytest.raises(errors.OverlappingAllocationError):
        scheduler.update_allocation(
            third.id, allocated_at=datetime(2024, 9, 9)
        )

    # other fields are not
    scheduler.update_allocation(third.id, notes='Charger included')
    assert third.notes == 'Charger included'


def test_update_allocation_invalid(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id, allocated_at=datetime(2024, 9, 1)
    )

    with pytest.raises(errors.InvalidField):
        scheduler.update_allocation(allocation.id, resource_id=2)

    with pytest.raises(errors.InvalidStatus):
        scheduler.update_allocation(allocation.id, status='lost')

    with pytest.raises(errors.InvalidTimerange):
        scheduler.update_allocation(
            allocation.id, due_back=datetime(2024, 8, 1)
        )

    with pytest.raises(errors.MissingParameter):
        scheduler.update_allocation(allocation.id, allocated_at=None)

    with pytest.raises(errors.NotFound):
        scheduler.update_allocation(allocation.id + 1, notes='')

    assert allocation.due_back is None


def test_update_allocation_fields(
    scheduler: Scheduler,
    laptop: Resource
) -> None:
    allocation = scheduler.create_allocation(
        laptop.id, allocated_at=datetime(2024, 9, 1)
    )

    scheduler.update_allocation(
        allocation.id,
        allocated_to_user_id='9',
        allocated_to_department='Chemistry',
        data={'bag': True}
    )
    scheduler.commit()

    assert allocation.allocated_to_user_id == 9
    assert allocation.allocated_to_department == 'Chemistry'
    assert allocation.data == {'bag': True}
    assert scheduler.allocations(user_id=9).all() == [allocation]


def test_remove_allocation(scheduler: Scheduler, laptop: Resource) -> None:
    removed = []
    events.on_allocation_removed.append(
        lambda context, allocation: removed.append(allocation)
    )

    allocation = scheduler.create_allocation(laptop.id)
    assert laptop.status == 'allocated'

    scheduler.remove_allocation(allocation.id)
    assert removed == [allocation]

    assert laptop.status == 'available'
    assert scheduler.allocations().count() == 0

    with pytest.raises(errors.NotFound):
        scheduler.allocation_by_id(allocation.id)


def test_manual_status_is_kept(scheduler: Scheduler, laptop: Resource) -> None:
    scheduler.update_resource(laptop.id, status='maintenance')
    allocation = scheduler.create_allocation(laptop.id)

    assert laptop.status == 'maintenance'

    scheduler.update_allocation(allocation.id, status='returned')
    assert laptop.status == 'maintenance'


def test_reconcile_resource_status(
    scheduler: Scheduler,
    laptop: Resource,
    license: Resource
) -> None:
    scheduler.create_allocation(laptop.id)
    scheduler.commit()

    # simulate drift, for example caused by a manual database change
    laptop.status = 'available'
    license.status = 'allocated'
    scheduler.flush()

    repaired = scheduler.reconcile_resource_status()

    assert set(repaired) == {laptop, license}
    assert laptop.status == 'allocated'
    assert license.status == 'available'

    assert scheduler.reconcile_resource_status() == []
    assert scheduler.reconcile_resource_status(laptop.id) == []


def test_allocation_queries(
    scheduler: Scheduler,
    laptop: Resource,
    license: Resource
) -> None:
    a = scheduler.create_allocation(
        laptop.id, allocated_to_user_id=1, allocated_at=datetime(2024, 9, 1)
    )
    b = scheduler.create_allocation(
        license.id, allocated_to_user_id=1, allocated_at=datetime(2024, 8, 1)
    )
    c = scheduler.create_allocation(
        license.id, allocated_to_user_id=2, allocated_at=datetime(2024, 10, 1),
        actor_role='student'
    )

    assert scheduler.allocations().all() == [b, a, c]
    assert scheduler.allocations(resource_id=license.id).all() == [b, c]
    assert scheduler.allocations(user_id=1).all() == [b, a]
    assert scheduler.allocations(status='pending').all() == [c]
    assert scheduler.allocation_by_id(str(a.id)) is a
