import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from campaigns.router import router as campaigns_router
from campaigns.tasks import start_scheduler, stop_scheduler
from contributions.router import router as contributions_router
from core.config import settings
from core.errors import unauthorized
from core.exceptions import AppException
from core.handlers import app_exception_handler, unhandled_exception_handler
from core.init_db import init_db
from core.rate_limit import limiter
from users.router import router as users_router
from wallet.router import router as wallet_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.INIT_DB_ON_STARTUP:
        init_db()
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(title="Crowdfunding API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(users_router, prefix="/api")
app.include_router(campaigns_router, prefix="/api")
app.include_router(contributions_router, prefix="/api")
app.include_router(wallet_router, prefix="/api")


@app.get("/")
def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.post("/api/init")
def init_database(x_init_database: str | None = Header(None)):
    if settings.is_production and (not settings.INIT_SECRET or x_init_database != settings.INIT_SECRET):
        logger.warning("Rejected database init request")
        raise unauthorized()

    init_db(attempts=1)
    return {"success": True, "message": "Database initialized"}
