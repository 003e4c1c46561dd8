from typing import Callable, Optional

from sqlalchemy.orm import Session


class UnitOfWork:
    """One atomic group of writes against the store.

    Nothing is persisted unless ``commit()`` is called explicitly before the
    block exits; leaving the block any other way rolls back everything the
    session did, stock updates included.

        with UnitOfWork(session_factory) as uow:
            ...
            uow.commit()
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self.session: Optional[Session] = None
        self._committed = False

    def __enter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self._committed = False
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if not self._committed:
                self.session.rollback()
        finally:
            self.session.close()
            self.session = None
        return False

    @property
    def committed(self) -> bool:
        return self._committed

    def commit(self) -> None:
        if self.session is None:
            raise RuntimeError("unit of work is not active")
        self.session.commit()
        self._committed = True

    def rollback(self) -> None:
        if self.session is not None:
            self.session.rollback()
