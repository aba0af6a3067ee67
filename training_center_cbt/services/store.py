"""
services/store.py

외부 협력자(문서 저장소) 인터페이스와 인메모리 구현.

  - SessionStore    : (quiz, user) 키의 시험 세션 문서. 전체 교체 / 부분 병합
  - QuizRepository  : 퀴즈 정의 (읽기 전용, 시작 시 JSON 시드 로드)
  - ResultStore     : 사용자별 결과 기록 (추가 전용)

인메모리 구현은 threading.Lock으로 보호하며, 읽기/쓰기 시 사본을 주고받아
호스팅 문서 저장소처럼 동작한다 (호출자가 반환값을 고쳐도 저장본은 그대로).
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from training_center_cbt.models.question_model import Quiz
from training_center_cbt.models.result_model import QuizResult, UserQuizRecord
from training_center_cbt.models.session_state import QuizSession

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]

_UPDATABLE_FIELDS = {
    "order",
    "answers_by_question_id",
    "current_index",
    "last_saved_at",
    "submitted_at",
}


class SessionStoreError(RuntimeError):
    """저장소 읽기/쓰기 실패."""


# ══════════════════════════════════════════════════════════════════════════════
# 인터페이스
# ══════════════════════════════════════════════════════════════════════════════

class SessionStore(ABC):

    @abstractmethod
    def get(self, quiz_id: str, user_id: str) -> Optional[QuizSession]:
        """세션 문서 읽기. 없으면 None."""

    @abstractmethod
    def put(self, quiz_id: str, user_id: str, session: QuizSession) -> None:
        """세션 문서 전체 교체. 시도 시작/재시작에서만 사용."""

    @abstractmethod
    def update(self, quiz_id: str, user_id: str, **fields: Any) -> None:
        """세션 문서 부분 병합. 문서가 없거나 이미 제출된 세션이면 SessionStoreError."""


class QuizRepository(ABC):

    @abstractmethod
    def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        ...

    @abstractmethod
    def list_quizzes(self) -> List[Quiz]:
        ...

    @abstractmethod
    def save_quiz(self, quiz: Quiz) -> None:
        ...


class ResultStore(ABC):

    @abstractmethod
    def append_result(self, quiz_id: str, user_id: str, result: QuizResult) -> None:
        """결과 추가. 연습 결과는 practice_attempts, 정식 결과는 results에 쌓인다."""

    @abstractmethod
    def get_record(self, quiz_id: str, user_id: str) -> Optional[UserQuizRecord]:
        ...

    @abstractmethod
    def list_records_for_user(self, user_id: str) -> Dict[str, UserQuizRecord]:
        """{quiz_id: UserQuizRecord}"""

    @abstractmethod
    def get_all_results_for_quiz(self, quiz_id: str) -> List[QuizResult]:
        """모든 사용자의 정식 결과."""


# ══════════════════════════════════════════════════════════════════════════════
# 인메모리 구현
# ══════════════════════════════════════════════════════════════════════════════

class InMemorySessionStore(SessionStore):

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: Dict[_Key, QuizSession] = {}

    def get(self, quiz_id: str, user_id: str) -> Optional[QuizSession]:
        with self._lock:
            doc = self._docs.get((quiz_id, user_id))
            return doc.model_copy(deep=True) if doc is not None else None

    def put(self, quiz_id: str, user_id: str, session: QuizSession) -> None:
        with self._lock:
            self._docs[(quiz_id, user_id)] = session.model_copy(deep=True)

    def update(self, quiz_id: str, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"갱신할 수 없는 필드: {sorted(unknown)}")
        with self._lock:
            doc = self._docs.get((quiz_id, user_id))
            if doc is None:
                raise SessionStoreError(f"세션 문서가 없습니다: {quiz_id}/{user_id}")
            # 제출된 세션은 종료 표시 외에는 바꾸지 않는다
            if doc.is_terminal and "submitted_at" not in fields:
                raise SessionStoreError(f"제출된 세션은 수정할 수 없습니다: {quiz_id}/{user_id}")
            try:
                merged = QuizSession.model_validate({**doc.model_dump(), **fields})
            except ValidationError as e:
                raise SessionStoreError(f"세션 갱신 실패: {e}") from e
            self._docs[(quiz_id, user_id)] = merged


class InMemoryQuizRepository(QuizRepository):

    def __init__(self, quizzes: Optional[List[Quiz]] = None) -> None:
        self._lock = threading.Lock()
        self._quizzes: Dict[str, Quiz] = {}
        for q in quizzes or []:
            self._quizzes[q.id] = q

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryQuizRepository":
        """
        JSON 시드 파일에서 퀴즈 정의를 로드한다.
        형식: [{...Quiz...}, ...] 또는 {"quizzes": [...]}.
        파일이 없으면 빈 저장소. 잘못된 항목은 건너뛴다.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"퀴즈 시드 파일이 없습니다: {path}")
            return cls()

        if isinstance(data, dict):
            data = data.get("quizzes", [])

        quizzes: List[Quiz] = []
        for idx, item in enumerate(data):
            try:
                quizzes.append(Quiz.model_validate(item))
            except ValidationError as e:
                logger.warning(f"quiz[{idx}]: 로드 실패 — {e}")
        logger.info(f"퀴즈 {len(quizzes)}개 로드: {path}")
        return cls(quizzes)

    def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        with self._lock:
            return self._quizzes.get(quiz_id)

    def list_quizzes(self) -> List[Quiz]:
        with self._lock:
            return list(self._quizzes.values())

    def save_quiz(self, quiz: Quiz) -> None:
        with self._lock:
            self._quizzes[quiz.id] = quiz


class InMemoryResultStore(ResultStore):

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[_Key, UserQuizRecord] = {}

    def append_result(self, quiz_id: str, user_id: str, result: QuizResult) -> None:
        with self._lock:
            record = self._records.setdefault((quiz_id, user_id), UserQuizRecord())
            if result.is_practice:
                record.practice_attempts.append(result)
            else:
                record.results.append(result)
                record.status = "Completed"

    def get_record(self, quiz_id: str, user_id: str) -> Optional[UserQuizRecord]:
        with self._lock:
            record = self._records.get((quiz_id, user_id))
            return record.model_copy(deep=True) if record is not None else None

    def list_records_for_user(self, user_id: str) -> Dict[str, UserQuizRecord]:
        with self._lock:
            return {
                qid: rec.model_copy(deep=True)
                for (qid, uid), rec in self._records.items()
                if uid == user_id
            }

    def get_all_results_for_quiz(self, quiz_id: str) -> List[QuizResult]:
        with self._lock:
            results: List[QuizResult] = []
            for (qid, _uid), rec in self._records.items():
                if qid == quiz_id:
                    results.extend(rec.results)
            return results
