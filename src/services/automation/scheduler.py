from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from core.config import get_settings
from core.logging import get_logger
from db.models import AutomationNodeLog
from db.session import SessionLocal
from services.messaging import TemplateCache

logger = get_logger(__name__)


def create_scheduler(template_cache: Optional[TemplateCache] = None) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(prune_node_logs, "interval", days=1)
    if template_cache is not None:
        scheduler.add_job(purge_template_cache, "interval", minutes=5, args=[template_cache])
    return scheduler


def prune_node_logs(db: Optional[Session] = None) -> int:
    owns_session = db is None
    db = db or SessionLocal()
    try:
        threshold = datetime.now(timezone.utc) - timedelta(days=get_settings().node_log_retention_days)
        deleted = (
            db.query(AutomationNodeLog)
            .filter(AutomationNodeLog.created_at < threshold)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("Pruned automation node logs", extra={"deleted": deleted})
        return deleted
    finally:
        if owns_session:
            db.close()


def purge_template_cache(template_cache: TemplateCache) -> int:
    removed = template_cache.purge_expired()
    if removed:
        logger.info("Purged expired template cache entries", extra={"removed": removed})
    return removed
