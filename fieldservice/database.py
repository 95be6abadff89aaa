"""Database configuration and initialization."""
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
session_factory = None
db_session = None


def new_uuid() -> str:
    """Primary key generator for every table (UUID-like string ids)."""
    return str(uuid.uuid4())


def init_db(app):
    """Initialize database connection."""
    global engine, session_factory, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']

    if database_uri.startswith('sqlite'):
        # Single shared connection so in-memory databases survive across sessions
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=10,
            max_overflow=20
        )

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_session = scoped_session(session_factory)

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table known to the metadata (tests and `flask init-db`)."""
    import fieldservice.models  # noqa: F401 - registers the mappers
    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
