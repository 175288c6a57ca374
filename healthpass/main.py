import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from healthpass.api.admin import router as admin_router
from healthpass.api.routes import router
from healthpass.core.config import LOG_LEVEL, STATIC_DIR
from healthpass.core.database import engine
from healthpass.core.logging import configure_logging
from healthpass.models.passport import create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	"""Configure logging and create database tables."""
	configure_logging(LOG_LEVEL)
	create_tables(engine)
	logger.info("Database tables created (if not existing) at %s", engine.url)
	yield

app = FastAPI(title="Health Passport Service", lifespan=lifespan)
app.mount("/static", StaticFiles(directory=STATIC_DIR, check_dir=False), name="static")
app.include_router(router)
app.include_router(admin_router)
if __name__ == "__main__":
	import uvicorn
	uvicorn.run("healthpass.main:app", host="0.0.0.0", port=8000, reload=True)
