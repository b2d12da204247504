from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from api.deps import get_template_cache
from core.logging import get_logger
from db.session import get_db
from services.messaging import TemplateCache
from services.webhooks.whatsapp import process_webhook_payload, verify_subscription

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.get("/whatsapp", response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    echoed = verify_subscription(mode, token, challenge)
    if echoed is None:
        logger.warning("WhatsApp webhook verification failed")
        raise HTTPException(status_code=403, detail="Forbidden")
    return PlainTextResponse(echoed)


@router.post("/whatsapp")
def ingest_whatsapp_webhook(
    payload: dict,
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    if not isinstance(payload.get("entry"), list):
        raise HTTPException(status_code=400, detail="Invalid payload")
    counts = process_webhook_payload(db, payload, template_cache)
    return {"status": "ok", **counts}
