import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docpilot.api.http import documents_router, invitations_router, users_router, workspaces_router
from docpilot.api.ws.sync import router as websocket_router
from docpilot.core.config import settings
from docpilot.core.db import SessionLocal, init_models
from docpilot.db.change_feed import change_feed
from docpilot.domains.invitations.services import InvitationService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def run_invitation_sweep(interval: float, session_factory=SessionLocal) -> None:
    """Периодический перевод просроченных приглашений в expired"""
    while True:
        try:
            async with session_factory() as session:
                result = await InvitationService(session, change_feed).expire_sweep()
            if not result.ok:
                logger.error(f"Invitation sweep failed: {result.message}")
        except Exception as e:
            # Ошибка одного прохода не останавливает очистку
            logger.exception(f"Invitation sweep crashed: {e}")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Создание схемы и фоновая очистка приглашений"""
    await init_models()
    logger.info("Database schema ready")

    sweeper = asyncio.create_task(run_invitation_sweep(settings.invitation_sweep_interval_seconds))
    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    change_feed.close()
    logger.info("DocPilot API stopped")


app = FastAPI(
    title="DocPilot",
    description="Совместное редактирование документов в рабочих пространствах",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users_router)
app.include_router(workspaces_router)
app.include_router(invitations_router)
app.include_router(documents_router)
app.include_router(websocket_router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "version": "1.0.0"}
