"""Initialize database tables."""
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

# Imported for table registration on SQLModel.metadata
import notifier.models  # noqa: F401
from notifier.utils.logger import get_logger

logger = get_logger(__name__)


def init_db(engine: Engine):
    """Create all tables in the database."""
    logger.info("Creating all tables")
    SQLModel.metadata.create_all(engine)
    logger.info("Tables created successfully")


if __name__ == "__main__":
    from notifier.config import Settings
    from notifier.db.config import create_db_engine

    init_db(create_db_engine(Settings.from_env().database_url))
