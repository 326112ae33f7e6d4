""" Events are called by the :class:`campusres.db.scheduler.Scheduler`
whenever a booking, an allocation or a resource changes.

The implementation is very simple:

To add an event::

    from campusres.modules import events

    def on_booking_created(context, booking):
        pass

    events.on_booking_created.append(on_booking_created)

To remove the same event::

    events.on_booking_created.remove(on_booking_created)

Events are called in the order they were added.
"""
from __future__ import annotations


from typing import overload
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any
    from typing_extensions import ParamSpec

    from campusres.context.core import Context
    from campusres.db.models import Allocation, Booking, Resource

    _P = ParamSpec('_P')


class Event(list['Callable[_P, object]']):
    """Event subscription. By http://stackoverflow.com/a/2022629

    A list of callable objects. Calling an instance of this will cause a
    call to each item in the list in ascending order by index.

    """
    @overload
    def __init__(self, f: type[Callable[_P, object]]) -> None: ...
    @overload
    def __init__(self) -> None: ...

    def __init__(self, f: object = None) -> None:
        return

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs) -> None:
        for f in self:
            f(*args, **kwargs)


on_booking_created: Event[Context, Booking] = Event()
""" Called when a booking is created, with the following arguments:

    :context:
        The :class:`campusres.context.core.Context` used when creating the
        booking.

    :booking:
        The pending :class:`campusres.db.models.Booking`, already flushed.

"""

on_booking_status_changed: Event[Context, Booking, str] = Event()
""" Called when the status of a booking changes, with the following
arguments:

    :context:
        The :class:`campusres.context.core.Context` used.

    :booking:
        The :class:`campusres.db.models.Booking` carrying the new status.

    :old_status:
        The status the booking had before.

"""

on_allocation_created: Event[Context, Allocation] = Event()
""" Called when an allocation is created, with the following arguments:

    :context:
        The :class:`campusres.context.core.Context` used.

    :allocation:
        The :class:`campusres.db.models.Allocation`, already flushed.

"""

on_allocation_changed: Event[Context, Allocation, dict[str, Any]] = Event()
""" Called when an allocation is updated, with the following arguments:

    :context:
        The :class:`campusres.context.core.Context` used.

    :allocation:
        The updated :class:`campusres.db.models.Allocation`.

    :changes:
        A dictionary with the applied patch.

"""

on_allocation_removed: Event[Context, Allocation] = Event()
""" Called when an allocation is removed, with the following arguments:

    :context:
        The :class:`campusres.context.core.Context` used.

    :allocation:
        The deleted :class:`campusres.db.models.Allocation`, already flushed.

"""

on_resource_status_changed: Event[Context, Resource, str] = Event()
""" Called when the derived status of a resource changes, with the
following arguments:

    :context:
        The :class:`campusres.context.core.Context` used.

    :resource:
        The :class:`campusres.db.models.Resource` with its new status.

    :old_status:
        The status before the change.

"""
