from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .config import settings
from .database import engine, Base
from .routers import calculator, catalog

logger = logging.getLogger("partcost")

# Create tables (handles new tables but won't add columns to existing ones)
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.COMPANY_NAME,
    description="Material weight and fully-loaded part price calculator",
    version="2.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(calculator.router, prefix="/api")
app.include_router(catalog.router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok", "app": "partcost"}


@app.on_event("startup")
def log_startup():
    logger.info("%s started (database: %s)", settings.COMPANY_NAME,
                engine.url.render_as_string(hide_password=True))
