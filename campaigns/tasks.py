import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from blockchain.service import get_blockchain_service
from campaigns.service import process_expired_campaigns
from core.config import settings
from core.database import SessionLocal
from core.exceptions import AppException

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(timezone="UTC")


def process_expired_job():
    db: Session = SessionLocal()
    try:
        processed, results = process_expired_campaigns(db, get_blockchain_service())
        logger.info("Scheduled run checked %s campaigns (%s results)", processed, len(results))
    except AppException as e:
        logger.error("Scheduled campaign processing failed: %s", e.message)
    finally:
        db.close()


def start_scheduler():
    if scheduler.running:
        return

    scheduler.add_job(
        process_expired_job,
        "interval",
        minutes=settings.PROCESS_INTERVAL_MINUTES,
        id="process_expired_campaigns",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Campaign scheduler started (every %s min)", settings.PROCESS_INTERVAL_MINUTES)


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Campaign scheduler stopped")
