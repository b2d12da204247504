"""Breadth-first execution of automation graphs.

One call to :func:`execute_automation` is one run: the run row is written
first, nodes are visited in FIFO order from the start node, each node at
most once, and the first failing node ends the run.
"""

from collections import deque
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger, log_extra
from db.base import to_uuid, utcnow
from db.models import Automation, AutomationNodeLog, AutomationNodeStat, AutomationRun, Profile
from services.automation.handlers import get_handler
from services.automation.nodes import AutomationEdge, AutomationGraph, AutomationNode
from services.automation.types import ActionContext, ActionResult, ContactState, ProviderFactory
from services.messaging import TemplateCache, get_messaging_provider

logger = get_logger(__name__)


def to_contact_state(contact: Any) -> Optional[ContactState]:
    if contact is None or isinstance(contact, ContactState):
        return contact
    return ContactState.model_validate(contact)


def select_next_edges(
    edges: list[AutomationEdge], node_id: str, handle: Optional[str]
) -> list[AutomationEdge]:
    return [
        edge
        for edge in edges
        if edge.source == node_id
        and (handle is None or edge.source_handle == handle or not edge.source_handle)
    ]


def _create_run(
    db: Session, automation: Automation, contact: Optional[ContactState], status: str, details: str
) -> Optional[AutomationRun]:
    run = AutomationRun(
        automation_id=automation.id,
        contact_id=to_uuid(contact.id) if contact is not None else None,
        status=status,
        details=details,
        run_at=utcnow(),
    )
    try:
        db.add(run)
        db.commit()
        db.refresh(run)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not create automation run", **log_extra(automation.user_id, automation_id=automation.id))
        return None
    return run


def _finish_run(db: Session, run: AutomationRun, status: str, details: str) -> AutomationRun:
    # Rollback expires the pending values, so each attempt sets them again.
    for attempt in (1, 2):
        try:
            run.status = status
            run.details = details
            db.add(run)
            db.commit()
            return run
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Could not finish automation run",
                **log_extra(None, run_id=run.id, status=status, attempt=attempt),
            )
    return run


def _record_node(db: Session, run: AutomationRun, node: AutomationNode, status: str, details: str) -> None:
    try:
        db.add(
            AutomationNodeLog(
                run_id=run.id,
                automation_id=run.automation_id,
                node_id=node.id,
                status=status,
                details=details,
            )
        )
        stat = (
            db.query(AutomationNodeStat)
            .filter(AutomationNodeStat.automation_id == run.automation_id, AutomationNodeStat.node_id == node.id)
            .first()
        )
        if stat is None:
            stat = AutomationNodeStat(
                automation_id=run.automation_id, node_id=node.id, success_count=0, error_count=0
            )
            db.add(stat)
        if status == "success":
            stat.success_count = (stat.success_count or 0) + 1
        else:
            stat.error_count = (stat.error_count or 0) + 1
        stat.last_run_at = utcnow()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record node execution", extra={"run_id": str(run.id), "node_id": node.id})


def execute_automation(
    db: Session,
    automation: Automation,
    contact: Any,
    start_node_id: str,
    trigger_data: Any = None,
    provider_factory: Optional[ProviderFactory] = None,
    template_cache: Optional[TemplateCache] = None,
) -> Optional[AutomationRun]:
    contact_state = to_contact_state(contact)
    profile = db.query(Profile).filter(Profile.id == automation.user_id).first()
    if profile is None:
        logger.error(
            "Automation owner profile not found",
            **log_extra(automation.user_id, automation_id=automation.id),
        )
        return _create_run(db, automation, contact_state, "failed", "Owner profile not found")

    run = _create_run(db, automation, contact_state, "running", f"Started at node {start_node_id}")
    if run is None:
        return None
    logger.info(
        "Automation run started",
        **log_extra(profile.id, automation_id=automation.id, run_id=run.id, start_node_id=start_node_id),
    )

    try:
        graph = AutomationGraph.from_automation(automation)
    except ValidationError as exc:
        return _finish_run(db, run, "failed", f"Invalid automation graph: {exc}")
    if graph.get_node(start_node_id) is None:
        return _finish_run(db, run, "failed", f"Start node {start_node_id} not found")

    factory = provider_factory or get_messaging_provider
    queue: deque[str] = deque([start_node_id])
    processed: set[str] = set()

    while queue:
        node_id = queue.popleft()
        if node_id in processed:
            continue
        node = graph.get_node(node_id)
        if node is None:
            continue
        processed.add(node_id)

        ctx = ActionContext(
            profile=profile,
            contact=contact_state,
            node=node,
            trigger=trigger_data,
            db=db,
            provider_factory=factory,
            template_cache=template_cache,
            run_id=run.id,
        )
        try:
            result: ActionResult = get_handler(node.kind)(ctx)
        except Exception as exc:
            db.rollback()
            logger.warning(
                "Automation node failed",
                exc_info=exc,
                **log_extra(profile.id, automation_id=automation.id, run_id=run.id, node_id=node.id),
            )
            _record_node(db, run, node, "failed", str(exc))
            return _finish_run(
                db, run, "failed", f"Node '{node.data.display_name}' ({node.id}) failed: {exc}"
            )

        if result.updated_contact is not None:
            contact_state = result.updated_contact
        _record_node(db, run, node, "success", result.details or "")
        for edge in select_next_edges(graph.edges, node.id, result.next_node_handle):
            queue.append(edge.target)

    logger.info(
        "Automation run finished",
        **log_extra(profile.id, automation_id=automation.id, run_id=run.id, nodes=len(processed)),
    )
    return _finish_run(db, run, "success", f"Executed {len(processed)} node(s) from {start_node_id}")
