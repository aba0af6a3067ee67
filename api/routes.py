"""
api/routes.py — FastAPI 엔드포인트
"""

import asyncio
import logging
from typing import Literal, Optional, Tuple

from fastapi import APIRouter, Body, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field, ValidationError

from config import MAX_PDF_SIZE
from api.context import AppContext
from training_center_cbt.models.events import parse_event
from training_center_cbt.models.question_model import Quiz
from training_center_cbt.services import session_controller as controller
from training_center_cbt.services.exam_service import (
    average_score_percent,
    group_by_course_tag,
    merge_user_quizzes,
    question_stats,
    student_kpis,
)
from training_center_cbt.services.paste_parser import parse_pasted
from training_center_cbt.services.quiz_attempt import ADMIN_ROLE, FinalizeError, QuizAttempt
from training_center_cbt.services.quiz_generator import generate_quiz

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class IdentifyBody(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Literal["admin", "student"] = "student"

class ApiKeyBody(BaseModel):
    api_key: str

class StartAttemptBody(BaseModel):
    practice: bool = False
    desktop: bool = True

class PasteBody(BaseModel):
    text: str


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def _identity(request: Request) -> Tuple[str, str]:
    ctx = _ctx(request)
    user_id, role = ctx.cookies.identity(request.state.session_id)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not signed in.")
    return user_id, role or "student"


def _require_admin(request: Request) -> str:
    user_id, role = _identity(request)
    if role != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Administrator role required.")
    return user_id


def _get_quiz(ctx: AppContext, quiz_id: str) -> Quiz:
    quiz = ctx.quizzes.get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="Quiz not found.")
    return quiz


def _get_attempt(ctx: AppContext, quiz_id: str, user_id: str) -> QuizAttempt:
    attempt = ctx.attempts.get(quiz_id, user_id)
    if attempt is None:
        raise HTTPException(status_code=404, detail="No active attempt for this quiz.")
    return attempt


def _quiz_summary(quiz: Quiz) -> dict:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "course": quiz.course,
        "question_count": len(quiz.questions),
        "time_limit": quiz.time_limit,
    }


# ── 신원 ─────────────────────────────────────────────────────────────────────

@router.post("/api/identify")
async def identify(body: IdentifyBody, request: Request):
    _ctx(request).cookies.sign_in(request.state.session_id, body.user_id, body.role)
    return {"ok": True, "user_id": body.user_id, "role": body.role}


@router.post("/api/logout")
async def logout(request: Request):
    _ctx(request).cookies.sign_out(request.state.session_id)
    return {"ok": True}


# ── 퀴즈 목록 / 시작 화면 ─────────────────────────────────────────────────────

@router.get("/api/quizzes")
async def list_quizzes(request: Request):
    ctx = _ctx(request)
    user_id, _role = _identity(request)
    quizzes = ctx.quizzes.list_quizzes()
    views = merge_user_quizzes(quizzes, ctx.results.list_records_for_user(user_id))
    return {
        "quizzes": [
            {**_quiz_summary(v.quiz), "status": v.status, "results_count": len(v.results)}
            for v in views
        ],
        "by_course": {
            tag: [q.id for q in bucket]
            for tag, bucket in group_by_course_tag(quizzes).items()
        },
    }


@router.get("/api/quizzes/{quiz_id}/start-info")
async def start_info(quiz_id: str, request: Request):
    ctx = _ctx(request)
    user_id, role = _identity(request)
    quiz = _get_quiz(ctx, quiz_id)
    if role == ADMIN_ROLE:
        # 관리자는 응시하지 않고 편집 화면으로
        return {**_quiz_summary(quiz), "redirect": f"/dashboard/quizzes/{quiz_id}/edit"}

    try:
        status = controller.peek_attempt(ctx.sessions, quiz, user_id)
    except RuntimeError as e:
        logger.error(f"세션 확인 실패: quiz={quiz_id} user={user_id} — {e}")
        raise HTTPException(status_code=503, detail="Could not load the quiz.")
    return {**_quiz_summary(quiz), **status.model_dump(), "redirect": None}


@router.post("/api/quizzes/{quiz_id}/restart")
async def restart_attempt(quiz_id: str, request: Request):
    ctx = _ctx(request)
    user_id, role = _identity(request)
    quiz = _get_quiz(ctx, quiz_id)
    if role == ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Administrators preview quizzes instead.")

    ctx.attempts.remove(quiz_id, user_id)
    if quiz.time_limit_seconds is None:
        return {"ok": True, "session": None}
    try:
        session = controller.restart(
            ctx.sessions, quiz.id, user_id, quiz.question_ids, quiz.shuffle_questions
        )
    except RuntimeError as e:
        logger.error(f"재시작 실패: quiz={quiz_id} user={user_id} — {e}")
        raise HTTPException(status_code=503, detail="Could not start a new attempt.")
    return {"ok": True, "session": {"started_at": session.started_at}}


# ── 응시 ─────────────────────────────────────────────────────────────────────

@router.post("/api/quizzes/{quiz_id}/attempt")
async def load_attempt(quiz_id: str, request: Request, body: Optional[StartAttemptBody] = None):
    body = body or StartAttemptBody()
    ctx = _ctx(request)
    user_id, role = _identity(request)
    quiz = _get_quiz(ctx, quiz_id)

    attempt = QuizAttempt(
        quiz,
        user_id,
        role,
        ctx.sessions,
        ctx.results,
        practice=body.practice,
        desktop=body.desktop,
    )
    try:
        attempt.load()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuntimeError as e:
        logger.error(f"퀴즈 로드 실패: quiz={quiz_id} user={user_id} — {e}")
        raise HTTPException(status_code=503, detail="Could not load the quiz.")

    ctx.attempts.put(attempt)
    return attempt.snapshot()


@router.get("/api/quizzes/{quiz_id}/attempt")
async def get_attempt(quiz_id: str, request: Request):
    ctx = _ctx(request)
    user_id, _role = _identity(request)
    attempt = _get_attempt(ctx, quiz_id, user_id)
    try:
        attempt.tick()
    except FinalizeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return attempt.snapshot()


@router.post("/api/quizzes/{quiz_id}/attempt/events")
async def post_event(quiz_id: str, request: Request, payload: dict = Body(...)):
    ctx = _ctx(request)
    user_id, _role = _identity(request)
    attempt = _get_attempt(ctx, quiz_id, user_id)
    try:
        event = parse_event(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))
    try:
        snapshot = attempt.handle(event)
    except FinalizeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if attempt.exited:
        ctx.attempts.remove(quiz_id, user_id)
    return snapshot


@router.get("/api/quizzes/{quiz_id}/results")
async def get_results(quiz_id: str, request: Request):
    ctx = _ctx(request)
    user_id, _role = _identity(request)
    quiz = _get_quiz(ctx, quiz_id)
    record = ctx.results.get_record(quiz_id, user_id)
    return {
        "quiz": _quiz_summary(quiz),
        "status": record.status if record else "Not Started",
        "results": [r.model_dump() for r in record.results] if record else [],
        "practice_attempts": [r.model_dump() for r in record.practice_attempts] if record else [],
    }


@router.get("/api/dashboard")
async def dashboard(request: Request):
    ctx = _ctx(request)
    user_id, _role = _identity(request)
    quizzes = ctx.quizzes.list_quizzes()
    return student_kpis(quizzes, ctx.results.list_records_for_user(user_id))


# ── 관리자 ───────────────────────────────────────────────────────────────────

@router.get("/api/admin/quizzes/{quiz_id}/analytics")
async def quiz_analytics(quiz_id: str, request: Request):
    ctx = _ctx(request)
    _require_admin(request)
    quiz = _get_quiz(ctx, quiz_id)
    results = ctx.results.get_all_results_for_quiz(quiz_id)
    return {
        "quiz": _quiz_summary(quiz),
        "attempts": len(results),
        "average_score": average_score_percent(results),
        "question_stats": question_stats(quiz, results) if results else [],
    }


@router.post("/api/admin/parse-pasted")
async def api_parse_pasted(body: PasteBody, request: Request):
    _require_admin(request)
    parsed = parse_pasted(body.text)
    if parsed is None:
        raise HTTPException(status_code=422, detail="Could not find a question with options.")
    return parsed.model_dump()


@router.post("/api/admin/set-api-key")
async def set_api_key(body: ApiKeyBody, request: Request):
    ctx = _ctx(request)
    _require_admin(request)
    key = body.api_key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="API key is empty.")
    if not key.startswith(("sk-", "sk-proj-")):
        raise HTTPException(status_code=400, detail="Not a valid OpenAI API key (expected sk-...).")
    ctx.cookies.set_api_key(request.state.session_id, key)
    return {"ok": True}


@router.post("/api/admin/generate-quiz")
async def api_generate_quiz(
    request: Request,
    topic: str = Form(...),
    num_questions: int = Form(...),
    file: UploadFile = File(...),
):
    ctx = _ctx(request)
    _require_admin(request)
    api_key = ctx.cookies.api_key(request.state.session_id) or ctx.openai_api_key
    if not api_key:
        raise HTTPException(status_code=400, detail="OpenAI API key is not configured.")

    file_bytes = await file.read()
    if len(file_bytes) > MAX_PDF_SIZE:
        raise HTTPException(status_code=413, detail="PDF file is too large (max 50MB).")
    try:
        draft = await asyncio.to_thread(generate_quiz, file_bytes, topic, num_questions, api_key)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuntimeError as e:
        logger.error(f"퀴즈 생성 실패: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return {"ok": True, "quiz": draft.model_dump()}


@router.post("/api/admin/quizzes")
async def save_quiz_draft(quiz: Quiz, request: Request):
    """검토를 마친 초안(생성/붙여넣기)을 퀴즈 저장소에 저장한다. 같은 ID면 덮어쓴다."""
    ctx = _ctx(request)
    user_id = _require_admin(request)
    if not quiz.questions:
        raise HTTPException(status_code=422, detail="Quiz has no questions.")
    replaced = ctx.quizzes.get_quiz(quiz.id) is not None
    ctx.quizzes.save_quiz(quiz)
    logger.info(f"퀴즈 저장: {quiz.id} ({len(quiz.questions)}문항) by {user_id} replaced={replaced}")
    return {"ok": True, "quiz": _quiz_summary(quiz), "replaced": replaced}
