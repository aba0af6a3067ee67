"""
models/result_model.py

채점 결과 모델. 제출 1회당 QuizResult 1개가 생성되며 저장 후 수정하지 않는다.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from training_center_cbt.models.question_model import AnswerValue

QuizStatus = Literal["Not Started", "In Progress", "Completed"]

NO_ANSWER = "No answer"


class AnsweredQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    user_answer: AnswerValue
    correct_answer: AnswerValue
    is_correct: bool


class QuizResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: int = Field(..., description="제출 시각 (epoch ms)")
    score: int = Field(..., ge=0, description="정답 수")
    total: int = Field(..., ge=0, description="문항 수")
    answered_questions: List[AnsweredQuestion] = Field(default_factory=list)
    is_practice: bool = False

    @property
    def percent(self) -> float:
        return self.score / self.total * 100 if self.total else 0.0


class UserQuizRecord(BaseModel):
    """사용자별 퀴즈 기록. 결과 리스트는 추가만 가능."""

    status: QuizStatus = "Not Started"
    results: List[QuizResult] = Field(default_factory=list)
    practice_attempts: List[QuizResult] = Field(default_factory=list)
