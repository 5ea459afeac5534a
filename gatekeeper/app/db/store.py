"""SQLAlchemy implementation of the data store port."""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatekeeper.app.admission.ports import DATA_STORE, DataStorePort
from gatekeeper.app.db.async_session import get_async_session_maker
from gatekeeper.app.exceptions import ConnectionFault


class SqlAlchemyDataStore(DataStorePort):
    """Hands out one AsyncSession per request.

    A session is only returned once it holds a live connection; on any
    failure (including cancellation by a timeout) it is closed before the
    error leaves acquire_connection.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self._session_maker = session_maker

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            self._session_maker = get_async_session_maker()
        return self._session_maker

    async def acquire_connection(self) -> AsyncSession:
        try:
            session = self.session_maker()
        except (SQLAlchemyError, ValueError) as e:
            raise ConnectionFault(DATA_STORE, f"cannot create session: {e}") from e

        try:
            # Forces a pool checkout so an unreachable database fails here
            await session.connection()
        except (SQLAlchemyError, OSError) as e:
            await session.close()
            raise ConnectionFault(DATA_STORE, f"database connection failed: {e}") from e
        except BaseException:
            await session.close()
            raise
        return session

    async def release(self, handle: AsyncSession) -> None:
        await handle.close()

