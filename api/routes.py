"""FastAPI routes that feed chat-platform updates into the exam flow."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.schemas import AnswerResp, CallbackReq, OpenEndedReq, StartExamReq
from exam.callbacks import is_exam_callback, parse_exam_callback
from exam.errors import ExamConfigError
from exam.flow import ExamFlowService
from exam.ports import ExamConfigProvider
from exam.types import ActiveExamContext, ExamStartResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exams")


def get_flow(request: Request) -> ExamFlowService:
    return request.app.state.flow


def get_configs(request: Request) -> ExamConfigProvider:
    return request.app.state.configs


@router.post("/start", response_model=ExamStartResult)
async def start(
    req: StartExamReq,
    flow: ExamFlowService = Depends(get_flow),
    configs: ExamConfigProvider = Depends(get_configs),
) -> ExamStartResult:
    try:
        config = await configs.get_exam_config(req.group_chat_id)
    except ExamConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return await flow.start_exam_in_dm(
        req.group_chat_id,
        req.user,
        req.dm_chat_id,
        config,
        chat_title=req.chat_title,
    )


@router.post("/callback", response_model=AnswerResp)
async def callback(req: CallbackReq, flow: ExamFlowService = Depends(get_flow)) -> AnswerResp:
    parsed = parse_exam_callback(req.data) if is_exam_callback(req.data) else None
    if parsed is None:
        logger.warning("Ignoring malformed exam callback %r from user %s", req.data, req.user.id)
        return AnswerResp(ignored=True)

    result = await flow.handle_mc_answer(
        parsed.session_id,
        parsed.question_index,
        parsed.answer_index,
        req.user,
        message_chat_id=req.message_chat_id,
        message_id=req.message_id,
    )
    return AnswerResp(result=result)


@router.post("/open-ended", response_model=AnswerResp)
async def open_ended(req: OpenEndedReq, flow: ExamFlowService = Depends(get_flow)) -> AnswerResp:
    chat_id = req.chat_id
    if chat_id is None:
        context = await flow.get_active_exam_context(req.user.id)
        if context is None:
            raise HTTPException(status_code=404, detail="no active exam")
        if not context.awaiting_open_ended:
            return AnswerResp(ignored=True)
        chat_id = context.group_chat_id

    result = await flow.handle_open_ended_answer(chat_id, req.user, req.text)
    return AnswerResp(result=result)


@router.get("/active/{user_id}", response_model=ActiveExamContext)
async def active(user_id: int, flow: ExamFlowService = Depends(get_flow)) -> ActiveExamContext:
    context = await flow.get_active_exam_context(user_id)
    if context is None:
        raise HTTPException(status_code=404, detail="no active exam")
    return context
