from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from api.deps import get_template_cache
from db.session import get_db
from services.automation.webhook_trigger import handle_webhook_trigger
from services.messaging import TemplateCache

router = APIRouter(tags=["triggers"])


def run_webhook_trigger(
    slug: str, request: Request, payload: Any, db: Session, template_cache: Optional[TemplateCache]
) -> dict:
    if request.method == "GET":
        data = dict(request.query_params)
    else:
        data = payload if payload is not None else {}
    return handle_webhook_trigger(db, slug, request.method, data, request.headers, template_cache)


@router.api_route("/trigger/{slug}", methods=["GET", "POST"])
def webhook_trigger(
    slug: str,
    request: Request,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    return run_webhook_trigger(slug, request, payload, db, template_cache)


@router.api_route("/automations/trigger/{slug:path}", methods=["GET", "POST"])
def automation_webhook_trigger(
    slug: str,
    request: Request,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    return run_webhook_trigger(slug, request, payload, db, template_cache)
