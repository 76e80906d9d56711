"""
Database connection management for the CRM email rules engine
"""
import os

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, PipelineStage

# Get database URL from environment variable
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///crm_rules.db')

DEFAULT_STAGES = [
    ('New', 1, '#3B82F6'),
    ('Contacted', 2, '#8B5CF6'),
    ('Follow Up', 3, '#F59E0B'),
    ('Qualified', 4, '#EF4444'),
    ('Converted', 5, '#10B981'),
    ('Dropped', 6, '#6B7280'),
]


def _enable_sqlite_savepoints(db_engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs behave under pysqlite"""

    @event.listens_for(db_engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN')


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine; in-memory SQLite shares a single connection"""
    if url.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        db_engine = create_engine(url, **kwargs)
        _enable_sqlite_savepoints(db_engine)
        return db_engine
    return create_engine(url)


# Create engine
engine = create_db_engine(DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def seed_pipeline_stages(db: Session) -> None:
    """Insert the default pipeline stages that are not present yet"""
    existing = set(db.scalars(select(PipelineStage.name)).all())
    for name, order_index, color in DEFAULT_STAGES:
        if name not in existing:
            db.add(PipelineStage(name=name, order_index=order_index, color=color))
    db.commit()


def init_db(bind: Engine = None) -> None:
    """Initialize the database, creating all tables and default stages"""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    with Session(bind) as db:
        seed_pipeline_stages(db)


def get_db_session() -> Session:
    """Get a new database session"""
    return SessionLocal()
