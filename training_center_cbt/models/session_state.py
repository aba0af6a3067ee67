"""
models/session_state.py

진행 중인 시간제 시험의 세션 레코드 모델 ((quiz, user) 당 1개).
Pydantic BaseModel 기반 — 세션 저장소의 문서 형식과 1:1 대응.
UI 코드 없음.
"""

import time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from training_center_cbt.models.question_model import AnswerValue


def now_ms() -> int:
    """현재 시각 (epoch 밀리초)."""
    return int(time.time() * 1000)


class QuizSession(BaseModel):
    """
    사용자의 시험 세션 상태를 표현하는 모델.

    Attributes:
        started_at:             이번 시도의 시작 시각 (epoch ms).
        order:                  시도 동안 고정되는 문항 ID 순서.
        answers_by_question_id: 현재 답안. {question.id: 답 (str 또는 list[str])}
        current_index:          화면에 표시 중인 문항 위치 (0-based).
        last_saved_at:          마지막으로 저장에 성공한 시각 (epoch ms).
        submitted_at:           제출 시각. 값이 있으면 종료(terminal) 상태.

    남은 시간은 저장하지 않는다. 항상 started_at 기준으로 계산한다.
    """

    started_at: int = Field(default_factory=now_ms)
    order: List[str] = Field(default_factory=list)
    answers_by_question_id: Dict[str, AnswerValue] = Field(default_factory=dict)
    current_index: int = Field(default=0, ge=0)
    last_saved_at: int = Field(default_factory=now_ms)
    submitted_at: Optional[int] = None

    @model_validator(mode='after')
    def validate_index(self) -> 'QuizSession':
        if self.order and self.current_index >= len(self.order):
            raise ValueError(
                f"current_index({self.current_index})가 문항 수({len(self.order)})를 벗어났습니다."
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.submitted_at is not None
