import logging

from app_logging import setup_logging
from config import Settings
from database import engine, Base

logger = logging.getLogger(__name__)


def migrate_db(bind=engine):
    logger.info("Migrating database...")
    # Creates any missing tables; existing ones are left untouched
    Base.metadata.create_all(bind=bind)
    logger.info("Migration complete: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    setup_logging(Settings.load().log_level)
    migrate_db()
