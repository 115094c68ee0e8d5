import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router
from .managers.state_manager import init_db
from .services.document_store import DocumentStore
from .services.foundry_client import FoundryClient
from .config import settings
from .utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    db_dir = os.path.dirname(settings.DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    await init_db()

    if getattr(app.state, "store", None) is None:
        app.state.store = DocumentStore(settings.PACKS_DIR)
    await app.state.store.initialize()

    if getattr(app.state, "foundry", None) is None:
        app.state.foundry = FoundryClient()
    await app.state.foundry.test_connection()
    logger.info("Shadowsheet server started")
    yield
    # Shutdown
    await app.state.foundry.close()
    logger.info("Server shutting down")


app = FastAPI(
    title="Shadowsheet",
    description="Shadowdark character sheet companion: level-up engine and dice roller",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)

# Run with:
#   uvicorn shadowsheet.main:app --host 0.0.0.0 --port 8000 --reload
