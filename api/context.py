"""
api/context.py — 애플리케이션 컨텍스트

전역 싱글턴 대신 create_app()에서 한 번 만들어 app.state.ctx로 전달한다.
저장소, 쿠키 세션, 서버 메모리의 진행 중 응시(QuizAttempt)를 묶는다.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from api.session import CookieSessions
from training_center_cbt.services.quiz_attempt import QuizAttempt
from training_center_cbt.services.store import (
    InMemoryQuizRepository,
    InMemoryResultStore,
    InMemorySessionStore,
    QuizRepository,
    ResultStore,
    SessionStore,
)

logger = logging.getLogger(__name__)


class AttemptRegistry:
    """(quiz_id, user_id) → 진행 중인 QuizAttempt."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attempts: Dict[Tuple[str, str], QuizAttempt] = {}

    def get(self, quiz_id: str, user_id: str) -> Optional[QuizAttempt]:
        with self._lock:
            return self._attempts.get((quiz_id, user_id))

    def put(self, attempt: QuizAttempt) -> None:
        """같은 키의 이전 응시는 대기 중인 자동 저장을 버리고 교체된다."""
        key = (attempt.quiz.id, attempt.user_id)
        with self._lock:
            previous = self._attempts.get(key)
            self._attempts[key] = attempt
        if previous is not None and previous is not attempt:
            previous.autosave.cancel()

    def remove(self, quiz_id: str, user_id: str) -> None:
        with self._lock:
            attempt = self._attempts.pop((quiz_id, user_id), None)
        if attempt is not None:
            attempt.autosave.cancel()

    def tick_all(self) -> int:
        """모든 응시의 타이머를 진행. 자동 제출된 수 반환. 제출 실패는 로그만 남긴다."""
        with self._lock:
            attempts = list(self._attempts.values())
        fired = 0
        for attempt in attempts:
            try:
                if attempt.tick():
                    fired += 1
            except RuntimeError as e:
                logger.error(f"자동 제출 실패: quiz={attempt.quiz.id} user={attempt.user_id} — {e}")
        return fired

    def prune(self) -> int:
        """제출/이탈이 끝난 응시를 정리. 제거된 수 반환."""
        with self._lock:
            done = [k for k, a in self._attempts.items() if a.finalized or a.exited]
            for k in done:
                del self._attempts[k]
        return len(done)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)


@dataclass
class AppContext:
    quizzes: QuizRepository = field(default_factory=InMemoryQuizRepository)
    sessions: SessionStore = field(default_factory=InMemorySessionStore)
    results: ResultStore = field(default_factory=InMemoryResultStore)
    cookies: CookieSessions = field(default_factory=CookieSessions)
    attempts: AttemptRegistry = field(default_factory=AttemptRegistry)
    openai_api_key: str = ""
