import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from db.config import engine, ensure_mongo_indexes
from models.mysql_models import Base
from routes.plan_routes import router as plan_router
from routes.instance_routes import router as instance_router
from routes.monitoring_routes import router as monitoring_router
from routes.billing_routes import router as billing_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="VM Billing Monitor API",
    description="Billing plans, monitored instances and accrual preview for the VM billing monitor",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning(f"Failed to create billing plan tables: {e}")

    try:
        ensure_mongo_indexes()
    except Exception as e:
        logger.warning(f"Failed to create instances indexes: {e}")


app.include_router(plan_router, prefix="/api/v1")
app.include_router(instance_router, prefix="/api/v1")
app.include_router(monitoring_router, prefix="/api/v1")
app.include_router(billing_router, prefix="/api/v1")


@app.get("/", tags=["Health"])
def root():
    return {"service": "vmbilling", "version": app.version, "docs": app.docs_url}


@app.get("/health", tags=["Health"])
def health():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Plans database unreachable: {e}")
        return {"status": "degraded", "plans_db": "unreachable"}
    return {"status": "ok", "plans_db": "ok"}
