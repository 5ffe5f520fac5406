import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import LifecycleError
from app.db.session import Base, SessionLocal, engine
from app import models  # noqa: F401
from app.routers.contacts import router as contacts_router
from app.routers.deliverables import router as deliverables_router
from app.routers.files import router as files_router
from app.routers.notifications import router as notifications_router
from app.routers.payments import router as payments_router
from app.routers.reports import router as reports_router
from app.routers.requests import router as requests_router
from app.routers.services import router as services_router
from app.routers.settings import router as settings_router
from app.routers.tickets import router as tickets_router
from app.routers.uploads import router as uploads_router
from app.routers.users import router as users_router
from app.services.catalog import seed_catalog

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    if settings.seed_catalog:
        db = SessionLocal()
        try:
            seed_catalog(db)
        finally:
            db.close()
        logger.info("Service catalog seeded")
    yield


app = FastAPI(title="Academic Services Backend", lifespan=lifespan)


@app.exception_handler(LifecycleError)
def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Invalid request body or parameters",
            "error": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(requests_router)
app.include_router(payments_router)
app.include_router(deliverables_router)
app.include_router(files_router)
app.include_router(uploads_router)
app.include_router(services_router)
app.include_router(tickets_router)
app.include_router(users_router)
app.include_router(notifications_router)
app.include_router(reports_router)
app.include_router(contacts_router)
app.include_router(settings_router)
