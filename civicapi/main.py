import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware

from civicapi import storage
from civicapi.config import config
from civicapi.database import database
from civicapi.logging_conf import configure_logging
from civicapi.routers.form import lookup_router
from civicapi.routers.form import router as form_router
from civicapi.routers.form_event import router as form_event_router
from civicapi.routers.meta import router as meta_router
from civicapi.routers.report import router as report_router
from civicapi.routers.submission import router as submission_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # connect database
    await database.connect()
    try:
        storage.ensure_bucket()
    except Exception as e:
        logger.error(f"Object storage unavailable, file answers will fail: {e}")
    yield
    # disconnect database
    await database.disconnect()


app = FastAPI(
    title="Civic Forms API",
    description="Dynamic forms, scheduled form events, submissions and reports",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(lookup_router, prefix="/api", tags=["Form"])
app.include_router(form_router, prefix="/api/forms", tags=["Form"])
app.include_router(form_event_router, prefix="/api/form-events", tags=["Form Event"])
app.include_router(submission_router, prefix="/api", tags=["Submission"])
app.include_router(report_router, prefix="/api/reports", tags=["Report"])
app.include_router(meta_router, prefix="/api/meta-tables", tags=["Meta"])


@app.exception_handler(HTTPException)
async def http_exception_handle_logging(request, exc):
    logger.warning(f"HTTPException: {exc.status_code} {exc.detail}")
    return await http_exception_handler(request, exc)
