from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from api.deps import get_current_profile, get_template_cache
from db.base import to_uuid
from db.models import (
    Automation,
    AutomationNodeLog,
    AutomationNodeStat,
    AutomationRun,
    AutomationTrigger,
    Contact,
    Profile,
)
from db.session import get_db
from services.automation.nodes import AutomationGraph
from services.automation.triggers import handle_new_contact_event, handle_tag_added_event, sync_automation_triggers
from services.messaging import TemplateCache

router = APIRouter(prefix="/automations", tags=["automations"])

RUN_HISTORY_LIMIT = 50


class AutomationCreate(BaseModel):
    name: str
    status: Literal["active", "paused"] = "active"
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class AutomationUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[Literal["active", "paused"]] = None
    nodes: Optional[list[dict[str, Any]]] = None
    edges: Optional[list[dict[str, Any]]] = None


class AutomationResponse(BaseModel):
    id: str
    name: str
    status: str
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RunResponse(BaseModel):
    id: str
    automation_id: str
    contact_id: Optional[str]
    status: str
    details: Optional[str]
    run_at: Optional[datetime]


class NodeLogResponse(BaseModel):
    id: str
    node_id: str
    status: str
    details: Optional[str]
    created_at: Optional[datetime] = None


class NodeStatResponse(BaseModel):
    node_id: str
    success_count: int
    error_count: int
    last_run_at: Optional[datetime]


class RunTriggerRequest(BaseModel):
    trigger_type: Literal["new_contact", "new_contact_with_tag"]
    contact_id: str
    data: dict[str, Any] = Field(default_factory=dict)


def serialize_automation(automation: Automation) -> AutomationResponse:
    return AutomationResponse(
        id=str(automation.id),
        name=automation.name,
        status=automation.status,
        nodes=automation.nodes or [],
        edges=automation.edges or [],
        created_at=automation.created_at,
        updated_at=automation.updated_at,
    )


def serialize_run(run: AutomationRun) -> RunResponse:
    return RunResponse(
        id=str(run.id),
        automation_id=str(run.automation_id),
        contact_id=str(run.contact_id) if run.contact_id else None,
        status=run.status,
        details=run.details,
        run_at=run.run_at,
    )


def validate_graph(nodes: list[dict], edges: list[dict]) -> None:
    try:
        AutomationGraph.model_validate({"nodes": nodes, "edges": edges})
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


def get_owned_automation(db: Session, automation_id: str, profile: Profile) -> Automation:
    try:
        automation_uuid = to_uuid(automation_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    automation = (
        db.query(Automation)
        .filter(Automation.id == automation_uuid, Automation.user_id == profile.id)
        .first()
    )
    if not automation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return automation


@router.get("", response_model=list[AutomationResponse])
def list_automations(
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    items = (
        db.query(Automation)
        .filter(Automation.user_id == current_profile.id)
        .order_by(Automation.created_at.desc())
        .all()
    )
    return [serialize_automation(item) for item in items]


@router.post("", response_model=AutomationResponse)
def create_automation(
    payload: AutomationCreate,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    validate_graph(payload.nodes, payload.edges)
    automation = Automation(
        user_id=current_profile.id,
        name=payload.name,
        status=payload.status,
        nodes=payload.nodes,
        edges=payload.edges,
    )
    db.add(automation)
    db.commit()
    db.refresh(automation)
    sync_automation_triggers(db, automation)
    return serialize_automation(automation)


@router.get("/runs/{run_id}/logs", response_model=list[NodeLogResponse])
def list_run_logs(
    run_id: str,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    try:
        run_uuid = to_uuid(run_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    run = db.query(AutomationRun).filter(AutomationRun.id == run_uuid).first()
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    get_owned_automation(db, str(run.automation_id), current_profile)
    logs = (
        db.query(AutomationNodeLog)
        .filter(AutomationNodeLog.run_id == run.id)
        .order_by(AutomationNodeLog.created_at.asc())
        .all()
    )
    return [
        NodeLogResponse(
            id=str(log.id),
            node_id=log.node_id,
            status=log.status,
            details=log.details,
            created_at=log.created_at,
        )
        for log in logs
    ]


@router.post("/run-trigger")
def run_trigger(
    payload: RunTriggerRequest,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    try:
        contact_uuid = to_uuid(payload.contact_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    contact = (
        db.query(Contact)
        .filter(Contact.id == contact_uuid, Contact.user_id == current_profile.id)
        .first()
    )
    if not contact:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")

    if payload.trigger_type == "new_contact_with_tag":
        tag = payload.data.get("addedTag") or payload.data.get("tag")
        if not tag:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing data.addedTag")
        runs = handle_tag_added_event(db, current_profile.id, contact, str(tag), template_cache)
    else:
        runs = handle_new_contact_event(db, current_profile.id, contact, template_cache)
    return {"status": "processed", "runs": [serialize_run(run) for run in runs]}


@router.get("/{automation_id}", response_model=AutomationResponse)
def get_automation(
    automation_id: str,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return serialize_automation(get_owned_automation(db, automation_id, current_profile))


@router.patch("/{automation_id}", response_model=AutomationResponse)
def update_automation(
    automation_id: str,
    payload: AutomationUpdate,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    automation = get_owned_automation(db, automation_id, current_profile)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "nodes" in changes or "edges" in changes:
        validate_graph(changes.get("nodes", automation.nodes or []), changes.get("edges", automation.edges or []))
    for field, value in changes.items():
        setattr(automation, field, value)
    db.commit()
    db.refresh(automation)
    if "nodes" in changes:
        sync_automation_triggers(db, automation)
    return serialize_automation(automation)


@router.delete("/{automation_id}")
def delete_automation(
    automation_id: str,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    automation = get_owned_automation(db, automation_id, current_profile)
    db.query(AutomationTrigger).filter(AutomationTrigger.automation_id == automation.id).delete()
    db.delete(automation)
    db.commit()
    return {"status": "deleted"}


@router.get("/{automation_id}/runs", response_model=list[RunResponse])
def list_runs(
    automation_id: str,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    automation = get_owned_automation(db, automation_id, current_profile)
    runs = (
        db.query(AutomationRun)
        .filter(AutomationRun.automation_id == automation.id)
        .order_by(AutomationRun.run_at.desc())
        .limit(RUN_HISTORY_LIMIT)
        .all()
    )
    return [serialize_run(run) for run in runs]


@router.get("/{automation_id}/node-stats", response_model=list[NodeStatResponse])
def list_node_stats(
    automation_id: str,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    automation = get_owned_automation(db, automation_id, current_profile)
    stats = db.query(AutomationNodeStat).filter(AutomationNodeStat.automation_id == automation.id).all()
    return [
        NodeStatResponse(
            node_id=stat.node_id,
            success_count=stat.success_count or 0,
            error_count=stat.error_count or 0,
            last_run_at=stat.last_run_at,
        )
        for stat in stats
    ]
