"""
services/quiz_attempt.py

진행 중인 한 번의 응시(attempt)를 서버 메모리에서 관리한다.

프레젠테이션 계층은 콜백 대신 이벤트(models/events.py)를 handle()로 넘기고,
snapshot()으로 화면 상태(문항, 타이머, 잠금 오버레이)를 받아 간다.

모드:
  - normal   : 학생 정식 응시. 시간 제한이 있으면 세션 저장/재개 + 자동 저장 + 감시
  - practice : 연습. 세션·자동 저장·감시 없음, 결과는 연습 기록에만 추가
  - preview  : 관리자 미리보기. 아무것도 저장하지 않음, 타이머 정지

제출 경로 (수동 확인 / 시간 종료 자동)는 _finalize() 하나로 모인다.
자동 제출은 one-shot 플래그로 정확히 한 번만 실행된다.
"""

import logging
import random
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from config import AUTOSAVE_DEBOUNCE_SECONDS, SWITCH_LOCK_SECONDS, TIME_LOW_RATIO
from training_center_cbt.models.events import (
    AnswerEvent,
    BlurEvent,
    ExitEvent,
    FullscreenEvent,
    NavigateEvent,
    SessionEvent,
    SubmitEvent,
    VisibilityEvent,
)
from training_center_cbt.models.question_model import AnswerValue, Question, Quiz
from training_center_cbt.models.result_model import QuizResult
from training_center_cbt.services import session_controller as controller
from training_center_cbt.services.autosave import AutosavePipeline, TimerFactory
from training_center_cbt.services.exam_service import grade, progress_percent
from training_center_cbt.services.focus_guard import FocusGuard
from training_center_cbt.services.store import ResultStore, SessionStore

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
ADMIN_EXIT_URL = "/dashboard/quizzes"
EXIT_URL = "/dashboard"


class AttemptMode(str, Enum):
    NORMAL = "normal"
    PRACTICE = "practice"
    PREVIEW = "preview"


class FinalizeError(RuntimeError):
    """제출(결과 저장/세션 종료) 실패. 사용자에게 노출하고 수동 재시도를 허용한다."""


def _copy_answer(value: AnswerValue) -> AnswerValue:
    return list(value) if isinstance(value, list) else value


class QuizAttempt:

    def __init__(
        self,
        quiz: Quiz,
        user_id: str,
        role: str,
        sessions: SessionStore,
        results: ResultStore,
        practice: bool = False,
        desktop: bool = True,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        timer_factory: TimerFactory = threading.Timer,
        autosave_delay: float = AUTOSAVE_DEBOUNCE_SECONDS,
        lock_seconds: int = SWITCH_LOCK_SECONDS,
    ) -> None:
        self.quiz = quiz
        self.user_id = user_id
        self.role = role
        self.desktop = desktop
        self._sessions = sessions
        self._results = results
        self._clock = clock
        self._rng = rng
        self._timer_factory = timer_factory
        self._autosave_delay = autosave_delay
        self._lock_seconds = lock_seconds
        self._lock = threading.RLock()

        if role == ADMIN_ROLE:
            self.mode = AttemptMode.PREVIEW
        elif practice:
            self.mode = AttemptMode.PRACTICE
        else:
            self.mode = AttemptMode.NORMAL

        self.order: List[str] = []
        self.answers: Dict[str, AnswerValue] = {}
        self.current_index = 0
        self.started_at = 0
        self.option_order: Dict[str, List[str]] = {}
        self.autosave = AutosavePipeline(None)
        self.guard = FocusGuard(active=False, require_fullscreen=False)

        self.loaded = False
        self.finalized = False
        self.exited = False
        self.result: Optional[QuizResult] = None
        self.redirect: Optional[str] = None
        self.auto_submitted = False
        self.finalize_failed = False
        self._auto_submit_fired = False
        self._result_saved = False

    # ── 모드 판단 ────────────────────────────────────────────────────────────

    @property
    def is_practice(self) -> bool:
        return self.mode is AttemptMode.PRACTICE

    @property
    def is_timed(self) -> bool:
        return self.quiz.time_limit_seconds is not None

    @property
    def uses_session(self) -> bool:
        """세션 프로토콜 사용 여부: 시간 제한 있는 학생 정식 응시만."""
        return self.is_timed and self.mode is AttemptMode.NORMAL

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── 로드 ────────────────────────────────────────────────────────────────

    def load(self) -> "QuizAttempt":
        """
        세션을 시작/재개하거나 새 상태로 시작한다.

        Raises:
            ValueError:        문항이 없는 퀴즈.
            SessionStoreError: 세션 로드 실패 (시간 제한 없이 몰래 시작하지 않는다).
        """
        if not self.quiz.questions:
            raise ValueError("Quiz has no questions.")

        with self._lock:
            question_ids = self.quiz.question_ids
            if self.uses_session:
                session = controller.start_or_resume(
                    self._sessions,
                    self.quiz.id,
                    self.user_id,
                    question_ids,
                    self.quiz.shuffle_questions,
                    now=self._now_ms(),
                    rng=self._rng,
                )
                self.order = list(session.order)
                self.answers = {k: _copy_answer(v) for k, v in session.answers_by_question_id.items()}
                self.current_index = session.current_index
                self.started_at = session.started_at
                self.autosave = AutosavePipeline(
                    self._save_progress,
                    delay=self._autosave_delay,
                    timer_factory=self._timer_factory,
                )
            else:
                self.order = controller.build_order(
                    question_ids, self.quiz.shuffle_questions, self._rng
                )
                self.answers = {}
                self.current_index = 0
                self.started_at = self._now_ms()

            if self.quiz.shuffle_answers:
                self.option_order = {
                    q.id: controller.build_order(q.options, True, self._rng)
                    for q in self.quiz.questions
                    if q.type != "short-answer"
                }

            self.guard = FocusGuard(
                active=self.uses_session,
                require_fullscreen=self.desktop,
                on_lock=self._save_on_lock,
                lock_seconds=self._lock_seconds,
                clock=self._clock,
            )
            self.loaded = True

        logger.info(
            f"응시 로드: quiz={self.quiz.id} user={self.user_id} mode={self.mode.value} "
            f"timed={self.is_timed} remaining={self.remaining_seconds()}"
        )
        return self

    # ── 타이머 ──────────────────────────────────────────────────────────────

    def remaining_seconds(self) -> Optional[int]:
        limit = self.quiz.time_limit_seconds
        if limit is None:
            return None
        if self.mode is AttemptMode.PREVIEW:
            return limit
        return controller.remaining_seconds(self.started_at, limit, now=self._now_ms())

    def tick(self) -> bool:
        """
        1초 주기 타이머 콜백. 남은 시간이 0이면 자동 제출한다.

        Returns:
            이번 호출에서 자동 제출이 실행되었으면 True.
        """
        with self._lock:
            if not self.loaded or self.finalized or self.exited:
                return False
            if self.mode is AttemptMode.PREVIEW:
                return False
            remaining = self.remaining_seconds()
            if remaining is None or remaining > 0:
                return False
            if self._auto_submit_fired:
                return False
            self._auto_submit_fired = True
            logger.info(f"시간 종료 → 자동 제출: quiz={self.quiz.id} user={self.user_id}")
            self._finalize(auto=True)
            return True

    # ── 이벤트 처리 ──────────────────────────────────────────────────────────

    def handle(self, event: SessionEvent) -> Dict[str, Any]:
        """이벤트 하나를 처리하고 최신 스냅샷을 반환한다."""
        with self._lock:
            if not self.loaded:
                raise RuntimeError("Attempt is not loaded.")
            # 시간이 끝났으면 입력보다 자동 제출이 먼저
            self.tick()

            if isinstance(event, AnswerEvent):
                self._on_answer(event)
            elif isinstance(event, NavigateEvent):
                self._on_navigate(event)
            elif isinstance(event, VisibilityEvent):
                self.guard.visibility_changed(event.hidden)
            elif isinstance(event, BlurEvent):
                self.guard.window_blurred()
            elif isinstance(event, FullscreenEvent):
                self.guard.fullscreen_changed(event.is_fullscreen)
            elif isinstance(event, ExitEvent):
                self._on_exit()
            elif isinstance(event, SubmitEvent):
                self._on_submit(event)
            else:
                raise ValueError(f"알 수 없는 이벤트: {event!r}")

            return self.snapshot()

    def _interactive(self) -> bool:
        """답/이동 입력을 받을 수 있는 상태인지. 제출 실패 후와 시간 종료 후에는 받지 않는다."""
        if self.finalized or self.exited or self.finalize_failed:
            return False
        if self.mode is AttemptMode.PREVIEW:
            return False
        if self.remaining_seconds() == 0:
            return False
        return not self.guard.is_locked

    def _current_question(self) -> Optional[Question]:
        if not self.order:
            return None
        return self.quiz.question_by_id(self.order[self.current_index])

    def _on_answer(self, event: AnswerEvent) -> None:
        if not self._interactive():
            logger.debug("잠금/종료 상태 — 답 입력 무시")
            return
        question = self._current_question()
        if question is None:
            return

        if question.type == "checkbox":
            current = list(self.answers.get(question.id) or [])
            if event.value in current:
                current.remove(event.value)
            else:
                if event.value not in question.options:
                    raise ValueError(f"보기에 없는 값입니다: {event.value!r}")
                current.append(event.value)
            self.answers[question.id] = current
        elif question.type == "multiple-choice":
            if event.value not in question.options:
                raise ValueError(f"보기에 없는 값입니다: {event.value!r}")
            self.answers[question.id] = event.value
        else:
            self.answers[question.id] = event.value

        self.autosave.queue(self.answers, self.current_index)

    def _on_navigate(self, event: NavigateEvent) -> None:
        if not self._interactive():
            return
        last = len(self.order) - 1
        if event.direction == "next":
            target = min(self.current_index + 1, last)
        elif event.direction == "prev":
            target = max(self.current_index - 1, 0)
        else:
            if event.index > last:
                raise ValueError(f"문항 위치가 범위를 벗어났습니다: {event.index}")
            target = event.index

        if target != self.current_index:
            self.current_index = target
            self.autosave.queue(self.answers, self.current_index)

    def _on_exit(self) -> None:
        # 이탈 시 저장을 강제하지 않는다 (마지막 자동 저장 시점부터 재개)
        self.guard.suppress()
        self.autosave.cancel()
        self.exited = True
        self.redirect = ADMIN_EXIT_URL if self.mode is AttemptMode.PREVIEW else EXIT_URL
        logger.info(f"응시 이탈: quiz={self.quiz.id} user={self.user_id}")

    def _on_submit(self, event: SubmitEvent) -> None:
        if not event.confirmed:
            raise ValueError("Submission must be confirmed.")
        if self.finalized:
            return
        if self.exited:
            raise ValueError("Attempt has already been exited.")
        self._finalize(auto=False)

    # ── 제출 ────────────────────────────────────────────────────────────────

    def ordered_questions(self) -> List[Question]:
        questions = []
        for qid in self.order:
            q = self.quiz.question_by_id(qid)
            if q is not None:
                questions.append(q)
        return questions

    def _finalize(self, auto: bool) -> None:
        """
        채점 → 결과 저장 → (정식 시간제) 세션 종료 → 감시 해제 → 결과 화면.

        Raises:
            FinalizeError: 저장 실패. 시도는 미제출 상태로 남고 답/이동 입력은 막히며,
                           수동 제출만 다시 할 수 있다.
        """
        self.guard.suppress()
        self.autosave.cancel()

        if self.mode is AttemptMode.PREVIEW:
            self.finalized = True
            self.redirect = ADMIN_EXIT_URL
            return

        # 저장 전까지는 매번 다시 채점한다
        if not self._result_saved:
            self.result = grade(
                self.ordered_questions(),
                self.answers,
                is_practice=self.is_practice,
                now=self._now_ms(),
            )

        try:
            if not self._result_saved:
                self._results.append_result(self.quiz.id, self.user_id, self.result)
                self._result_saved = True
            if self.uses_session:
                controller.finalize_session(
                    self._sessions, self.quiz.id, self.user_id, now=self._now_ms()
                )
        except Exception as e:
            self.finalize_failed = True
            logger.error(
                f"제출 실패: quiz={self.quiz.id} user={self.user_id} auto={auto} — "
                f"{type(e).__name__}: {e}"
            )
            raise FinalizeError("Could not submit your quiz results. Please try again.") from e

        self.finalized = True
        self.finalize_failed = False
        self.auto_submitted = auto
        self.redirect = f"/quiz/{self.quiz.id}/results?practice={str(self.is_practice).lower()}"
        logger.info(
            f"제출 완료: quiz={self.quiz.id} user={self.user_id} "
            f"score={self.result.score}/{self.result.total} auto={auto}"
        )

    # ── 자동 저장 ────────────────────────────────────────────────────────────

    def _save_progress(self, answers: Dict[str, AnswerValue], current_index: int) -> None:
        controller.save_progress(
            self._sessions,
            self.quiz.id,
            self.user_id,
            answers,
            current_index,
            now=self._now_ms(),
        )

    def _save_on_lock(self) -> None:
        self.autosave.save_now(self.answers, self.current_index)

    # ── 화면 상태 ────────────────────────────────────────────────────────────

    def _question_view(self, question: Question) -> Dict[str, Any]:
        # 정답은 내보내지 않는다
        return {
            "id": question.id,
            "question": question.question,
            "type": question.type,
            "options": self.option_order.get(question.id, list(question.options)),
            "image_url": question.image_url,
        }

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            limit = self.quiz.time_limit_seconds
            remaining = self.remaining_seconds()
            question = self._current_question()
            return {
                "quiz_id": self.quiz.id,
                "title": self.quiz.title,
                "mode": self.mode.value,
                "total": len(self.order),
                "current_index": self.current_index,
                "question_number": self.current_index + 1,
                "question": self._question_view(question) if question else None,
                "current_answer": self.answers.get(question.id) if question else None,
                "answers": {k: _copy_answer(v) for k, v in self.answers.items()},
                "progress": progress_percent(len(self.order), self.answers),
                "time_limit_seconds": limit,
                "time_left": remaining,
                "time_percentage": round(remaining / limit * 100, 1) if limit else 0,
                "time_low": bool(limit) and remaining < limit * TIME_LOW_RATIO,
                "guard": {
                    "live": self.guard.live,
                    "state": self.guard.state.value,
                    "require_fullscreen": self.guard.require_fullscreen,
                    "remaining_lock_seconds": self.guard.remaining_lock_seconds(),
                },
                "finalized": self.finalized,
                "auto_submitted": self.auto_submitted,
                "finalize_failed": self.finalize_failed,
                "exited": self.exited,
                "result": self.result.model_dump() if self.finalized and self.result else None,
                "redirect": self.redirect,
            }

