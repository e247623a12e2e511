"""Engine settings chosen per database backend."""

from sqlalchemy.pool import QueuePool, StaticPool

from app.database import _engine_kwargs


def test_postgres_gets_a_queue_pool():
    kwargs = _engine_kwargs("postgresql+psycopg2://tutordesk:secret@db/tutordesk")

    assert kwargs["poolclass"] is QueuePool
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["connect_args"]["application_name"] == "tutordesk_backend"


def test_sqlite_memory_shares_one_connection():
    kwargs = _engine_kwargs("sqlite:///:memory:")

    assert kwargs["poolclass"] is StaticPool
    assert kwargs["connect_args"] == {"check_same_thread": False}


def test_sqlite_file_keeps_the_default_pool():
    assert "poolclass" not in _engine_kwargs("sqlite:///./tutordesk.db")
