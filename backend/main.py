import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobcredits.api.endpoints import admin, billing, credits, jobs
from jobcredits.core.database import engine, Base
from jobcredits.core.errors import install_error_handlers
from jobcredits.core.settings import settings

# Every mapped table must be registered before create_all and mapper configuration.
from jobcredits.models import add_on, credit_unit, job, profile, promotion_task, purchase, subscription, upsell_purchase  # noqa: F401

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Job Board Credits API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

install_error_handlers(app)


@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    if not settings.stripe_secret_key:
        logger.warning("startup.stripe_not_configured checkout routes will return 500")


# API Routes
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
