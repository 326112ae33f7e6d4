from __future__ import annotations

import os
import pytest

from campusres import new_scheduler, registry
from uuid import uuid4 as new_uuid


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path
    from campusres.db.scheduler import Scheduler


def new_test_scheduler(
    dsn: str,
    context_name: str | None = None
) -> Scheduler:

    context_name = context_name or new_uuid().hex

    context = registry.register_context(context_name, replace=True)
    context.set_setting('dsn', dsn)

    return new_scheduler(context=context, timezone='Europe/Zurich')


@pytest.fixture
def scheduler(
    request: pytest.FixtureRequest,
    dsn: str
) -> Generator[Scheduler, None, None]:

    # clear the events before each test
    from campusres.modules import events
    for event in (e for e in dir(events) if e.startswith('on_')):
        del getattr(events, event)[:]

    try:
        context = request.getfixturevalue('scheduler_context')
    except pytest.FixtureLookupError:
        context = None

    scheduler = new_test_scheduler(dsn, context)
    scheduler.setup_database()
    scheduler.commit()

    yield scheduler

    scheduler.rollback()
    scheduler.extinguish_managed_records()
    scheduler.commit()
    scheduler.close()
    scheduler.session_provider.stop_service()


@pytest.fixture(scope='session')
def dsn(
    tmp_path_factory: pytest.TempPathFactory
) -> Generator[str, None, None]:
    """ Returns the dsn of the test database.

    Uses CAMPUSRES_TEST_DSN if given, a temporary PostgreSQL server if
    PostgreSQL is installed and a temporary SQLite database otherwise.
    The exclusion constraints only exist on PostgreSQL.

    """

    if os.environ.get('CAMPUSRES_TEST_DSN'):
        yield os.environ['CAMPUSRES_TEST_DSN']
        return

    # FIXME: Switch to pytest-postgresql, testing.postgresql is unmaintained
    from testing.postgresql import Postgresql  # type: ignore[import-untyped]

    try:
        postgres = Postgresql()
    except RuntimeError:
        path: Path = tmp_path_factory.mktemp('db') / 'campusres.sqlite'
        yield f'sqlite:///{path}'
        return

    yield postgres.url()

    postgres.stop()


@pytest.fixture
def postgres_only(dsn: str) -> None:
    if not dsn.startswith('postgres'):
        pytest.skip('requires PostgreSQL')
