from __future__ import annotations

from campusres.db.scheduler import Scheduler


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from campusres.context.core import Context


def new_scheduler(
    context: Context | str,
    timezone: str = 'UTC',
    settings: dict[str, Any] | None = None
) -> Scheduler:
    """ Returns a new :class:`Scheduler` for the given context.

    :context:
        A :class:`campusres.context.core.Context` or the name of one. Named
        contexts which do not exist yet are registered on the global
        registry.

    :settings:
        Settings applied to the context before the scheduler is created,
        for example ``{'dsn': 'postgresql://...'}``.

    """
    if isinstance(context, str):
        from campusres import registry
        context = registry.get_context(context, autocreate=True)

    for name, value in (settings or {}).items():
        context.set_setting(name, value)

    return Scheduler(context, timezone)


__all__ = (
    'new_scheduler',
    'Scheduler',
)
