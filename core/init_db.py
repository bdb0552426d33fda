import logging
import time
from sqlalchemy.exc import OperationalError

from core.database import engine
from core.models import Base

logger = logging.getLogger(__name__)


def init_db(bind=engine, attempts: int = 7):
    logger.info("Creating database tables...")

    for attempt in range(1, attempts + 1):
        try:
            Base.metadata.create_all(bind=bind)
            logger.info("Database tables ready")
            return
        except OperationalError as e:
            logger.warning("[init_db] DB not ready (attempt %s/%s): %s", attempt, attempts, e)
            time.sleep(min(2 * attempt, 10))

    raise RuntimeError("Database not reachable after retries. Startup aborted.")
