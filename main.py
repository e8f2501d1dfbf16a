import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from auth.sos_auth import SosAuth
from routes.inventory_routes import register_inventory_routes
from routes.production_routes import register_production_routes
from services.db import DocumentStore
from services.inventory_reconciler import InventoryReconciler
from services.inventory_snapshot import start_daily_snapshot_scheduler, stop_daily_snapshot_scheduler
from services.inventory_store import InventoryWriter
from services.sos_api import SosApiClient

# --- Logging configuration ---
LOG_DIR = Path(__file__).parent / "logs"
LOG_DIR.mkdir(exist_ok=True)

LOG_FILE_PATH = LOG_DIR / "inventory_backend.log"

root_logger = logging.getLogger()
logger = root_logger
if not root_logger.handlers:
    root_logger.setLevel(config.LOG_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        LOG_FILE_PATH,
        maxBytes=5_000_000,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

logging.getLogger("uvicorn").propagate = True
logging.getLogger("uvicorn.error").propagate = True
logging.getLogger("uvicorn.access").propagate = True
# --- End logging configuration ---

app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION)

register_inventory_routes(app)
register_production_routes(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_services(db_path: Path = config.INVENTORY_DB_PATH):
    """Create the store, writer and SOS client shared by routes and the scheduler."""
    store = DocumentStore(db_path, max_batch_operations=config.STORE_MAX_BATCH_OPERATIONS)
    reconciler = InventoryReconciler(
        store,
        max_batch_size=config.STORE_MAX_BATCH_OPERATIONS,
        safety_margin=config.STORE_BATCH_SAFETY_MARGIN,
    )
    writer = InventoryWriter(store, reconciler)
    client = SosApiClient(SosAuth(config.SOS_API_KEY))
    return store, writer, client


@app.on_event("startup")
def startup_event():
    """Wire services onto app.state and start the daily snapshot."""
    store, writer, client = build_services()
    app.state.store = store
    app.state.inventory_writer = writer
    app.state.sos_client = client
    logger.info("[Startup] Document store ready at %s", store.db_path)

    if not config.SNAPSHOT_SCHEDULE_ENABLED:
        logger.info("[Startup] Daily inventory snapshot disabled")
        return
    try:
        start_daily_snapshot_scheduler(
            client,
            writer,
            hour=config.SNAPSHOT_SCHEDULE_HOUR,
            tz_name=config.SNAPSHOT_SCHEDULE_TZ,
        )
        logger.info("[Startup] Background tasks initialized successfully")
    except Exception as e:
        logger.warning(f"[Startup] Failed to initialize background tasks: {e}")


@app.on_event("shutdown")
def shutdown_event():
    """Signal background workers to stop."""
    try:
        stop_daily_snapshot_scheduler()
    except Exception as exc:
        logger.warning(f"[Shutdown] Failed to stop inventory scheduler cleanly: {exc}")


@app.get("/api/health")
def health():
    return {"status": "ok", "app": config.APP_NAME, "version": config.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8001, reload=True)
