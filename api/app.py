"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 백그라운드 타이머
"""

import logging
import os
import threading
import time
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import QUIZ_SEED_FILE, SESSION_CLEANUP_INTERVAL, TICK_INTERVAL_SECONDS
from api.context import AppContext
from api.routes import router
from training_center_cbt.services.store import InMemoryQuizRepository

SESSION_COOKIE = "tc_session"

logger = logging.getLogger(__name__)


def build_context() -> AppContext:
    """시드 파일과 환경 변수로 기본 컨텍스트를 만든다."""
    return AppContext(
        quizzes=InMemoryQuizRepository.from_json_file(QUIZ_SEED_FILE),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
    )


def create_app(ctx: Optional[AppContext] = None, start_background: bool = True) -> FastAPI:
    app = FastAPI(title="Training Center CBT", docs_url=None, redoc_url=None)
    ctx = ctx or build_context()
    app.state.ctx = ctx

    # 강의실 태블릿/휴대폰의 다른 출처에서도 호출 가능
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 쿠키 세션: 만료되었거나 없으면 새 ID 발급 (신원은 /api/identify에서 설정)
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or not ctx.cookies.touch(sid):
            sid = ctx.cookies.create()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=ctx.cookies.ttl,
        )
        return response

    app.include_router(router)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True, "live_attempts": len(ctx.attempts)}

    if start_background:
        _start_background_threads(ctx)

    return app


def _start_background_threads(ctx: AppContext) -> None:
    # 1초 주기 시험 타이머 (시간 종료 자동 제출)
    def _tick_loop():
        while True:
            time.sleep(TICK_INTERVAL_SECONDS)
            try:
                ctx.attempts.tick_all()
            except Exception:
                logger.exception("타이머 루프 오류")

    # 만료 세션 / 끝난 응시 주기적 정리 (5분마다)
    def _cleanup_loop():
        while True:
            time.sleep(SESSION_CLEANUP_INTERVAL)
            removed = ctx.cookies.purge_expired()
            pruned = ctx.attempts.prune()
            if removed or pruned:
                logger.info(f"만료 세션 {removed}개, 끝난 응시 {pruned}개 정리")

    for target in (_tick_loop, _cleanup_loop):
        t = threading.Thread(target=target, daemon=True)
        t.start()
