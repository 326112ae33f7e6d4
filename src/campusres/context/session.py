from __future__ import annotations

import logging

from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import scoped_session, sessionmaker

from campusres.context.core import StoppableService
from campusres.modules import errors


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterator


log = logging.getLogger('campusres')


SERIALIZABLE = 'SERIALIZABLE'

#: postgres error codes which mean that another transaction won the race
RACE_CODES = {
    '23505': 'unique violation',
    '23P01': 'exclusion violation',
    '40001': 'serialization failure',
    '40P01': 'deadlock detected',
}


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """ Turns errors raised by the database into campusres errors.

    Errors caused by a concurrent transaction (serialization failures and
    violated exclusion or unique constraints) become
    :class:`~campusres.modules.errors.ConcurrentModification`, everything
    else becomes :class:`~campusres.modules.errors.Internal`.

    """
    try:
        yield
    except (IntegrityError, OperationalError) as e:
        code = getattr(e.orig, 'pgcode', None)

        if code in RACE_CODES:
            log.info(f'store rejected a concurrent write: {RACE_CODES[code]}')
            raise errors.ConcurrentModification(RACE_CODES[code]) from e

        raise errors.Internal(str(e.orig)) from e
    except DBAPIError as e:
        raise errors.Internal(str(e.orig)) from e


class SessionProvider(StoppableService):
    """Global session utility. It provides a SERIALIZABLE session to
    campusres. If you want to override this provider, be sure to set the
    isolation_level to SERIALIZABLE as well.

    The overlap checks run before the write inside the same transaction,
    only SERIALIZABLE isolation keeps two of those from passing at once.

    """

    def __init__(
        self,
        dsn: str,
        engine_config: dict[str, Any] | None = None,
        session_config: dict[str, Any] | None = None
    ):
        assert dsn, 'No dsn configured, set the dsn setting on the context'

        if self.is_postgres(dsn):
            self.assert_valid_postgres_version(dsn)

        self.dsn = dsn

        self.engine = create_engine(
            dsn, poolclass=QueuePool, pool_size=5, max_overflow=5,
            isolation_level=SERIALIZABLE,
            **(engine_config or {})
        )

        self.session = scoped_session(sessionmaker(
            bind=self.engine, **(session_config or {})
        ))

    @staticmethod
    def is_postgres(dsn: str) -> bool:
        return dsn.startswith('postgres')

    def stop_service(self) -> None:
        """ Called by the campusres context when the session provider is
        being discarded (only in testing).

        This makes sure that replacing the session provider on the context
        doesn't leave behind any idle connections.

        """

        self.session.remove()
        self.engine.dispose()

    def get_postgres_version(self, dsn: str) -> tuple[str, int]:
        """ Returns the postgres version as a tuple (string, integer).

        Uses its own connection to be independent from any session.

        """
        query = text("""
            SELECT current_setting('server_version'),
                   current_setting('server_version_num')
        """)

        engine = create_engine(dsn)

        try:
            with engine.connect() as connection:
                result = connection.execute(query).first()
            assert result is not None
            version, number = result
            return version, int(number)
        finally:
            engine.dispose()

    def assert_valid_postgres_version(self, dsn: str) -> str:
        v, n = self.get_postgres_version(dsn)

        # range types and exclusion constraints on them
        if n < 90200:
            raise RuntimeError(f'PostgreSQL 9.2+ is required, got {v}')

        return dsn
