import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proofquest_auth.api.router import api_router
from proofquest_auth.core.config import settings
from proofquest_auth.core.errors import register_exception_handlers
from proofquest_auth.db.base import Base
from proofquest_auth.db.session import engine
from proofquest_auth.models import User  # noqa: F401  registers the users table
from proofquest_auth.services.nonce_reaper import NonceReaper
from proofquest_auth.services.siwe_nonce_store import get_nonce_registry

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ProofQuest Auth")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)
app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    Base.metadata.create_all(bind=engine)

    registry = get_nonce_registry()
    app.state.nonce_reaper = None
    if settings.nonce_reaper_enabled:
        reaper = NonceReaper(registry)
        await reaper.start()
        app.state.nonce_reaper = reaper


@app.on_event("shutdown")
async def shutdown() -> None:
    reaper = getattr(app.state, "nonce_reaper", None)
    if reaper is not None:
        await reaper.stop()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("proofquest_auth.main:app", host="0.0.0.0", port=8080)
