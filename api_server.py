from __future__ import annotations  # FastAPI server exposing the exam webhook routes

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config.settings import settings
from exam.flow import ExamFlowService
from exam.ports import ExamConfigProvider
from storage.exam_configs import SqliteExamConfigStore
from storage.migrate import migrate


logger = logging.getLogger(__name__)


def create_app(flow: ExamFlowService, configs: Optional[ExamConfigProvider] = None) -> FastAPI:
    """Wire a ready ``ExamFlowService`` into a FastAPI app.

    The chat-platform transport builds the flow (it owns messaging and
    moderation); this only exposes it over HTTP.
    """

    migrate(settings.DB_PATH)

    app = FastAPI(title="Entrance Exam API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    app.state.flow = flow
    app.state.configs = configs or SqliteExamConfigStore()
    app.include_router(router)
    logger.info("Exam API ready (db=%s)", settings.DB_PATH)
    return app


__all__ = ["create_app"]
