from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.errors import setup_exception_handlers
from core.logging import setup_logging
from services.automation.scheduler import create_scheduler
from services.messaging import TemplateCache
from api.routers import automations, auth, contacts, triggers, webhooks

settings = get_settings()
setup_logging(settings.log_level)
app = FastAPI(title=settings.app_name, version="1.0.0", openapi_url="/api/v1/openapi.json")
setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    app.state.template_cache = TemplateCache(
        ttl_seconds=settings.template_cache_ttl_seconds,
        max_entries=settings.template_cache_max_entries,
    )
    scheduler = create_scheduler(app.state.template_cache)
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/health")
def health():
    return {"status": "ok"}


api_prefix = "/api/v1"
app.include_router(auth.router, prefix=api_prefix)
app.include_router(automations.router, prefix=api_prefix)
app.include_router(contacts.router, prefix=api_prefix)

# Public endpoints called by external systems and by Meta.
app.include_router(triggers.router)
app.include_router(webhooks.router)
