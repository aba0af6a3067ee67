from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

QuestionType = Literal["multiple-choice", "checkbox", "short-answer"]
CourseTag = Literal["unassigned", "security+", "a+"]

# 단일 답(객관식/단답형)은 str, 복수 답(checkbox)은 list[str]
AnswerValue = Union[str, List[str]]

COURSE_TAGS = ("unassigned", "security+", "a+")


def as_course_tag(value: object) -> str:
    """알 수 없는 과정 태그는 "unassigned"로 정규화한다."""
    return value if value in COURSE_TAGS else "unassigned"


class Question(BaseModel):
    """
    퀴즈 문항 모델
    Pydantic v2 적용
    """
    id: str = Field(
        ...,
        min_length=1,
        description="문항 고유 식별자"
    )
    question: str = Field(
        ...,
        min_length=1,
        description="문항 본문"
    )
    type: QuestionType = Field(
        "multiple-choice",
        description="문항 유형"
    )
    options: List[str] = Field(
        default_factory=list,
        description="보기 리스트 (단답형은 빈 리스트)"
    )
    answer: AnswerValue = Field(
        ...,
        description="정답. checkbox는 list[str], 나머지는 str"
    )
    image_url: Optional[str] = Field(
        None,
        description="문항 이미지 URL"
    )

    @model_validator(mode='after')
    def validate_answer_shape(self) -> 'Question':
        """
        검증 로직: checkbox 문항의 정답은 리스트, 그 외는 문자열이어야 한다.
        선택형 문항은 보기가 최소 2개 필요하다.
        """
        if self.type == "checkbox" and not isinstance(self.answer, list):
            raise ValueError("checkbox 문항의 정답은 리스트여야 합니다.")
        if self.type != "checkbox" and isinstance(self.answer, list):
            raise ValueError(f"{self.type} 문항의 정답은 문자열이어야 합니다.")
        if self.type != "short-answer" and len(self.options) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return self


class Quiz(BaseModel):
    """퀴즈 정의. 세션 컨트롤러 입장에서는 읽기 전용."""

    id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    time_limit: Optional[int] = Field(
        None,
        ge=1,
        description="제한 시간 (분). None이면 시간 제한 없음"
    )
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    course: CourseTag = "unassigned"

    @field_validator('course', mode='before')
    @classmethod
    def normalize_course(cls, v: object) -> str:
        return as_course_tag(v)

    @property
    def time_limit_seconds(self) -> Optional[int]:
        return self.time_limit * 60 if self.time_limit else None

    @property
    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def question_by_id(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None
