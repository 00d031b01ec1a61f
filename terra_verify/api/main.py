"""FastAPI application exposing submission intake and verification status."""

from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from terra_verify.api.error_utils import register_error_handlers
from terra_verify.api.submissions import router as submissions_router
from terra_verify.config.logging import get_logger
from terra_verify.data_management.quest_store import QuestStore
from terra_verify.data_management.schemas.quest_schema import Quest
from terra_verify.intake.submission_service import SubmissionService

logger = get_logger("api")


def create_app(
    service: Optional[SubmissionService] = None,
    quests: Optional[Iterable[Quest]] = None,
) -> FastAPI:
    """Build the API around a SubmissionService.

    Args:
        service: Intake service. Built from settings if None.
        quests: Quests to resolve submissions against when building the
            service. If None, the service loads TERRA_QUESTS_PATH.
    """
    if service is None:
        quest_store = QuestStore(quests) if quests is not None else None
        service = SubmissionService(quest_store=quest_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, cancelling in-flight verification")
        await service.shutdown()

    app = FastAPI(title="Terra Verification API", lifespan=lifespan)
    app.state.submission_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(submissions_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app
