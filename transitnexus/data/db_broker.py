from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from transitnexus.config.config_main import db_config


class ConnectionBroker:
    """
    Owns the engine and session factory for one database.

    Constructed once at process start and handed to every component that
    talks to the database.
    """

    def __init__(self, url: str = None, echo: bool = False):
        self.url = url or db_config.url
        self.echo = echo
        self._engine = None
        self._SessionLocal = None

    def get_engine(self):
        """Get or create SQLAlchemy engine."""
        if self._engine is None:
            self._engine = create_engine(
                self.url,
                pool_pre_ping=True,  # Verify connections before using
                echo=self.echo
            )
        return self._engine

    def get_session_factory(self):
        """Get or create SQLAlchemy session factory."""
        if self._SessionLocal is None:
            self._SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.get_engine()
            )
        return self._SessionLocal

    @contextmanager
    def get_session(self):
        """
        Get a SQLAlchemy session with automatic cleanup.
        
        Usage:
            with broker.get_session() as session:
                session.query(Model).all()
        """
        SessionLocal = self.get_session_factory()
        session = SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self, drop_existing: bool = False):
        """Create all tables defined in models."""
        from .models import initialize_database
        initialize_database(self.get_engine(), drop_existing=drop_existing)

    def dispose(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._SessionLocal = None
