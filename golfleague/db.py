import os
import threading
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base, Session

DATABASE_URL = os.environ["DATABASE_URL"]  # ⚠️ OBLIGATORIO, sin fallback

connect_args = {}

# Solo para SQLite local
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """
    Una sola transacción: commit si todo va bien, rollback si algo falla.
    Nadie fuera de la sesión ve cambios a medias.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


# --------------------------------------------------------------------------------
# ------------------------- Serialización por liga -------------------------------
# --------------------------------------------------------------------------------

_league_locks: dict[int, threading.RLock] = {}
_league_locks_guard = threading.Lock()


def _lock_for(league_id: int) -> threading.RLock:
    with _league_locks_guard:
        lock = _league_locks.get(league_id)
        if lock is None:
            lock = threading.RLock()
            _league_locks[league_id] = lock
        return lock


@contextmanager
def league_lock(db: Session, league_id: int):
    """
    Dos recálculos (o dos envíos) de la misma liga nunca se solapan.
    En PostgreSQL además se toma un advisory lock de transacción.
    """
    lock = _lock_for(league_id)
    with lock:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": league_id})
        yield
