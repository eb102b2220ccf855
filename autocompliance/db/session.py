from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from autocompliance.core.config import settings


def _build_engine():
    if settings.is_sqlite:
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            settings.SQLALCHEMY_DATABASE_URI,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.SQL_ECHO,
        )
    return create_engine(
        settings.SQLALCHEMY_DATABASE_URI,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,      # Recycle connections every 5 minutes
        pool_pre_ping=True,    # Validate connections before use
        pool_timeout=30,
        echo=settings.SQL_ECHO,
    )


engine = _build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
