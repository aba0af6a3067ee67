"""
services/session_controller.py

시간제 시험 세션의 시작/재개 결정과 남은 시간 계산.
순수 함수 + 저장소 호출로 구성 — UI 코드, 전역 상태 없음.

연습 모드, 관리자 미리보기, 시간 제한 없는 퀴즈는 이 모듈을 거치지 않는다
(호출자인 QuizAttempt가 판단).
"""

import logging
import random
from typing import Dict, List, Optional

from pydantic import BaseModel

from training_center_cbt.models.question_model import AnswerValue, Quiz
from training_center_cbt.models.session_state import QuizSession, now_ms
from training_center_cbt.services.store import SessionStore

logger = logging.getLogger(__name__)


class AttemptStatus(BaseModel):
    """시작 화면용 진행 상태 요약."""

    has_in_progress: bool = False
    time_left: Optional[int] = None
    expired: bool = False


def build_order(
    question_ids: List[str],
    shuffle: bool,
    rng: Optional[random.Random] = None,
) -> List[str]:
    """문항 순서 생성. shuffle이면 Fisher-Yates 셔플, 아니면 원본 순서 사본."""
    order = list(question_ids)
    if shuffle:
        (rng or random).shuffle(order)
    return order


def _fresh_session(
    question_ids: List[str],
    shuffle: bool,
    now: int,
    rng: Optional[random.Random],
) -> QuizSession:
    return QuizSession(
        started_at=now,
        order=build_order(question_ids, shuffle, rng),
        answers_by_question_id={},
        current_index=0,
        last_saved_at=now,
        submitted_at=None,
    )


def start_or_resume(
    store: SessionStore,
    quiz_id: str,
    user_id: str,
    question_ids: List[str],
    shuffle: bool,
    now: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> QuizSession:
    """
    사용자가 이어서 풀어야 할 세션을 반환한다.

    - 세션 없음       → 새로 만들어 저장.
    - 제출된 세션     → 새 시도로 간주, 슬롯을 덮어쓴다. started_at은 이전보다 반드시 크다.
    - 진행 중인 세션  → 그대로 반환. 문항 수가 바뀌었으면 순서를 다시 만들어 저장한다.

    Raises:
        SessionStoreError: 저장소 읽기/쓰기 실패 (호출자가 로드 실패로 처리).
    """
    now = now_ms() if now is None else now
    existing = store.get(quiz_id, user_id)

    if existing is None:
        session = _fresh_session(question_ids, shuffle, now, rng)
        store.put(quiz_id, user_id, session)
        logger.info(f"세션 생성: quiz={quiz_id} user={user_id}")
        return session

    if existing.is_terminal:
        started_at = max(now, existing.started_at + 1)
        session = _fresh_session(question_ids, shuffle, started_at, rng)
        store.put(quiz_id, user_id, session)
        logger.info(f"제출된 세션 교체 (새 시도): quiz={quiz_id} user={user_id}")
        return session

    if len(existing.order) != len(question_ids):
        # 시도 도중 퀴즈가 수정됨 → 순서 복구
        order = build_order(question_ids, shuffle, rng)
        current_index = min(existing.current_index, max(len(order) - 1, 0))
        store.update(quiz_id, user_id, order=order, current_index=current_index)
        logger.warning(
            f"문항 수 불일치 복구: quiz={quiz_id} user={user_id} "
            f"{len(existing.order)} → {len(order)}"
        )
        return existing.model_copy(update={"order": order, "current_index": current_index})

    return existing


def restart(
    store: SessionStore,
    quiz_id: str,
    user_id: str,
    question_ids: List[str],
    shuffle: bool,
    now: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> QuizSession:
    """'새로 시작' / '재응시' — 기존 세션과 무관하게 새 세션으로 덮어쓴다."""
    now = now_ms() if now is None else now
    existing = store.get(quiz_id, user_id)
    if existing is not None:
        now = max(now, existing.started_at + 1)
    session = _fresh_session(question_ids, shuffle, now, rng)
    store.put(quiz_id, user_id, session)
    logger.info(f"세션 재시작: quiz={quiz_id} user={user_id}")
    return session


def elapsed_seconds(started_at: int, now: Optional[int] = None) -> int:
    now = now_ms() if now is None else now
    return (now - started_at) // 1000


def remaining_seconds(
    started_at: int,
    time_limit_seconds: int,
    now: Optional[int] = None,
) -> int:
    """
    남은 시간 (초). 항상 started_at으로부터 다시 계산하므로
    새로고침 횟수와 무관하며, 시계가 뒤로 가도 제한 시간을 넘지 않는다.

    Returns:
        0 이상 time_limit_seconds 이하. 0이면 자동 제출 대상.
    """
    remaining = time_limit_seconds - elapsed_seconds(started_at, now)
    return max(min(remaining, time_limit_seconds), 0)


def save_progress(
    store: SessionStore,
    quiz_id: str,
    user_id: str,
    answers_by_question_id: Dict[str, AnswerValue],
    current_index: int,
    now: Optional[int] = None,
) -> None:
    """자동 저장용 부분 갱신."""
    store.update(
        quiz_id,
        user_id,
        answers_by_question_id=dict(answers_by_question_id),
        current_index=current_index,
        last_saved_at=now_ms() if now is None else now,
    )


def finalize_session(
    store: SessionStore,
    quiz_id: str,
    user_id: str,
    now: Optional[int] = None,
) -> None:
    """세션을 종료 상태로 표시."""
    now = now_ms() if now is None else now
    store.update(quiz_id, user_id, submitted_at=now, last_saved_at=now)


def peek_attempt(
    store: SessionStore,
    quiz: Quiz,
    user_id: str,
    now: Optional[int] = None,
) -> AttemptStatus:
    """
    시작 화면에서 '이어서 풀기' 가능 여부를 확인한다.
    제출된 세션은 진행 중이 아닌 것으로 본다.

    Raises:
        SessionStoreError: 저장소 읽기 실패 (호출자가 로드 실패로 처리).
    """
    session = store.get(quiz.id, user_id)

    if session is None or session.is_terminal:
        return AttemptStatus()

    limit = quiz.time_limit_seconds
    if limit is None:
        return AttemptStatus(has_in_progress=True)

    left = remaining_seconds(session.started_at, limit, now)
    return AttemptStatus(has_in_progress=True, time_left=left, expired=left <= 0)
