from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from checkdeposit.core.settings import get_settings

_engine = None
_session_factory = None


def get_engine():
    """Return the process-wide engine; pipeline worker threads share its pool."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = make_url(settings.database_url)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # Records run on a thread pool; sqlite connections must cross threads.
            connect_args["check_same_thread"] = False
        _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    return _engine


def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            class_=Session,
        )
    return _session_factory
