from .session import init_db, make_engine, make_session_factory
from .unit_of_work import UnitOfWork

__all__ = ["UnitOfWork", "init_db", "make_engine", "make_session_factory"]
