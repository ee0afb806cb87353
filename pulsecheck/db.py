import datetime as dt

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> dt.datetime:
    """Naive UTC; portable across SQLite and Postgres DateTime columns."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class StressLog(Base):
    __tablename__ = "stress_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(64), nullable=False, index=True)
    score = Column(Float, nullable=False)
    label = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class CoachingSession(Base):
    __tablename__ = "coaching_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, unique=True)
    tts_text = Column(Text, nullable=False)
    audio_url = Column(String(512))
    audio_metadata = Column(JSON)
    voice_config = Column(JSON)
    processing_time = Column(Integer)
    file_size = Column(Integer)
    duration = Column(Integer)
    cleanup = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)


def make_engine(database_url: str) -> Engine:
    kwargs = {"echo": False, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory SQLite lives in one connection; share it across threads
        if database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url:
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class Database:
    """Engine plus session factory shared by both stores."""

    def __init__(self, database_url: str):
        self.url = database_url
        self.engine = make_engine(database_url)
        self.session_factory = make_session_factory(self.engine)

    def create_all(self) -> None:
        init_db(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()
