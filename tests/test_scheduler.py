from datetime import datetime, timedelta, timezone

from db.models import AutomationNodeLog
from services.automation.scheduler import create_scheduler, prune_node_logs, purge_template_cache
from services.messaging import TemplateCache


def test_create_scheduler_registers_jobs():
    assert len(create_scheduler().get_jobs()) == 1
    assert len(create_scheduler(TemplateCache()).get_jobs()) == 2


def test_prune_node_logs_removes_old_entries(db, monkeypatch):
    monkeypatch.setenv("NODE_LOG_RETENTION_DAYS", "7")
    now = datetime.now(timezone.utc)
    old = AutomationNodeLog(node_id="a", status="success", details="")
    old.created_at = now - timedelta(days=8)
    recent = AutomationNodeLog(node_id="b", status="success", details="")
    recent.created_at = now - timedelta(days=1)
    db.add(old)
    db.add(recent)

    assert prune_node_logs(db) == 1
    assert db.query(AutomationNodeLog).all() == [recent]
    assert db.commits == 1


def test_purge_template_cache():
    now = [0.0]
    cache = TemplateCache(ttl_seconds=10, clock=lambda: now[0])
    cache.set("old", "x")
    now[0] = 8.0
    cache.set("fresh", "y")
    now[0] = 12.0
    assert purge_template_cache(cache) == 1
    assert cache.get("fresh") == "y"
