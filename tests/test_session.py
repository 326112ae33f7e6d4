from __future__ import annotations

import campusres
import pytest
import time

from datetime import datetime
from campusres.context.session import SessionProvider, translate_store_errors
from campusres.db.scheduler import Scheduler
from campusres.modules import errors
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from threading import Thread


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable


class SessionId(Thread):
    def __init__(self, dsn: str) -> None:
        Thread.__init__(self)
        self.session_id: int | None = None
        self.dsn = dsn

    def run(self) -> None:
        context = campusres.registry.register_context(str(id(self)))
        context.set_setting('dsn', self.dsn)
        scheduler = Scheduler(context, 'UTC')
        self.session_id = id(scheduler.session)

        # make sure the thread runs long enough for test_sessionstore to
        # have both threads running at the same time, since the docs states:
        # "Two objects with non-overlapping lifetimes may have the same
        # id() value."
        time.sleep(0.1)

        scheduler.session_provider.stop_service()


class ExceptionThread(Thread):
    def __init__(
        self,
        call: Callable[[], object],
        commit: Callable[[], object] | None,
        close: Callable[[], object] | None = None
    ) -> None:
        Thread.__init__(self)
        self.call = call
        self.exception: Exception | None = None
        self.commit = commit
        self.close = close

    def run(self) -> None:
        try:
            self.call()
            time.sleep(1)
            if self.commit is not None:
                self.commit()
        except Exception as e:
            self.exception = e
        finally:
            # the session is thread local, release its connection
            if self.close is not None:
                self.close()


class DriverError(Exception):
    def __init__(self, pgcode: str | None) -> None:
        super().__init__(f'driver error {pgcode}')
        self.pgcode = pgcode


def test_stop_unused_session(dsn: str) -> None:
    provider = SessionProvider(dsn)
    provider.stop_service()  # should not throw any exceptions


def test_serializable_isolation(dsn: str) -> None:
    provider = SessionProvider(dsn)

    try:
        with provider.engine.connect() as connection:
            assert connection.get_isolation_level() == 'SERIALIZABLE'
    finally:
        provider.stop_service()


def test_sessionstore(dsn: str) -> None:
    t1 = SessionId(dsn)
    t2 = SessionId(dsn)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    assert t1.session_id is not None
    assert t2.session_id is not None
    assert t1.session_id != t2.session_id


@pytest.mark.parametrize('error_class', [IntegrityError, OperationalError])
@pytest.mark.parametrize('pgcode', ['23505', '23P01', '40001', '40P01'])
def test_race_errors_become_conflicts(
    error_class: type[IntegrityError | OperationalError],
    pgcode: str
) -> None:
    with pytest.raises(errors.ConcurrentModification) as e:
        with translate_store_errors():
            raise error_class('UPDATE', {}, DriverError(pgcode))

    assert e.value.http_status == 409
    assert isinstance(e.value.__cause__, error_class)


def test_other_store_errors_are_internal() -> None:
    with pytest.raises(errors.Internal) as e:
        with translate_store_errors():
            raise IntegrityError('INSERT', {}, DriverError('23502'))

    assert e.value.http_status == 500

    with pytest.raises(errors.Internal):
        with translate_store_errors():
            raise ProgrammingError('SELECT', {}, DriverError(None))

    # everything else passes through
    with pytest.raises(ValueError):
        with translate_store_errors():
            raise ValueError


def test_concurrent_confirmations(
    scheduler: Scheduler,
    postgres_only: None
) -> None:
    """ Two bookings of the same time, confirmed at the same time in two
    transactions. Both pass the overlap check, as neither sees the other's
    confirmation, but the database only lets one of them through.

    """
    classroom = scheduler.add_classroom('A-1')
    start = datetime(2024, 9, 2, 10)
    end = datetime(2024, 9, 2, 12)

    ids = [
        scheduler.create_booking(classroom.id, title, start, end).id
        for title in ('First', 'Second')
    ]
    scheduler.commit()

    def confirm(booking_id: int) -> Callable[[], object]:
        return lambda: scheduler.update_booking_status(
            booking_id, 'confirmed', 'admin'
        )

    threads = [
        ExceptionThread(confirm(i), scheduler.commit, scheduler.close)
        for i in ids
    ]

    for t in threads:
        t.start()

    for t in threads:
        t.join()

    exceptions = [t.exception for t in threads]
    conflicts = [
        e for e in exceptions
        if isinstance(e, errors.ConcurrentModification)
    ]

    assert len(conflicts) == 1
    assert exceptions.count(None) == 1

    scheduler.rollback()
    assert scheduler.bookings(status='confirmed').count() == 1


def test_non_collision(scheduler: Scheduler, postgres_only: None) -> None:

    resource = scheduler.add_resource('Beamer')
    scheduler.create_allocation(resource.id, due_back=datetime(2099, 1, 1))
    scheduler.commit()

    def change_notes() -> None:
        allocation = scheduler.allocations().one()
        scheduler.update_allocation(allocation.id, notes='Lamp replaced')

    def read_allocation() -> None:
        scheduler.allocations().one()

    t1 = ExceptionThread(change_notes, scheduler.commit, scheduler.close)
    t2 = ExceptionThread(read_allocation, scheduler.rollback, scheduler.close)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    assert t1.exception is None
    assert t2.exception is None
