from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import sessionmaker, Session

from delayguard.config.settings import settings
from delayguard.db.models import Base
from delayguard.utils.logging import get_logger

logger = get_logger()

engine = create_engine(
    str(settings.DATABASE_URL),
    pool_pre_ping=True,
    pool_recycle=3600,
    echo=False,
)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def get_sync_session() -> Iterator[Session]:
    """Yield a session and always close it; roll back if the consumer raises."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def ping(db: Session) -> None:
    """Round-trip a trivial statement; raises SQLAlchemyError when the database is unreachable."""
    db.execute(text("SELECT 1"))


def create_tables(bind: Optional[Engine] = None) -> None:
    Base.metadata.create_all(bind or engine)
    logger.info("Created all tables.")


def drop_tables(bind: Optional[Engine] = None) -> None:
    Base.metadata.drop_all(bind or engine)
    logger.info("Dropped all tables.")
