import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from config import settings
from services.identity import IdentityRegistry
from services.relay import RoomRelay
from services.secret_store import SecretStore, StoreError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Party rooms backend starting up...")
    app.state.relay = RoomRelay()
    yield
    app.state.relay.dispose()
    logger.info("Backend shutting down.")


def create_app(
    store: Optional[SecretStore] = None,
    identities: Optional[IdentityRegistry] = None,
) -> FastAPI:
    """Build the app. Tests inject a store backed by an in-memory Firestore double."""
    app = FastAPI(
        title="Party Rooms",
        version="0.1.0",
        description="Host-authoritative multiplayer rooms: card war and hidden-role missions",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.identities = identities or IdentityRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "party-rooms", "version": "0.1.0"}

    from routers.room_router import router as room_router, store_error_handler
    from routers.ws_router import router as ws_router

    app.add_exception_handler(StoreError, store_error_handler)
    app.include_router(room_router, prefix="/api")
    app.include_router(ws_router)

    # Serve compiled frontend in production
    _frontend_dist = os.path.abspath(
        os.path.join(os.path.dirname(__file__), "..", "frontend", "dist")
    )
    if os.path.isdir(_frontend_dist):
        app.mount("/", StaticFiles(directory=_frontend_dist, html=True), name="static")
        logger.info(f"Serving frontend from {_frontend_dist}")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
