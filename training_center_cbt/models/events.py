"""
models/events.py

브라우저(프레젠테이션 계층)에서 진행 중인 시도로 전달되는 이벤트.
`type` 필드로 구분되는 discriminated union — QuizAttempt.handle()의 입력.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class AnswerEvent(BaseModel):
    """
    답 선택/변경.
    객관식·단답형은 값을 덮어쓰고, checkbox는 value를 토글한다.
    """
    type: Literal["answer"] = "answer"
    value: str


class NavigateEvent(BaseModel):
    """이전/다음 이동 또는 특정 위치로 점프."""
    type: Literal["navigate"] = "navigate"
    direction: Optional[Literal["next", "prev"]] = None
    index: Optional[int] = Field(None, ge=0)

    @model_validator(mode='after')
    def validate_target(self) -> 'NavigateEvent':
        if (self.direction is None) == (self.index is None):
            raise ValueError("direction 또는 index 중 하나만 지정해야 합니다.")
        return self


class VisibilityEvent(BaseModel):
    type: Literal["visibility"] = "visibility"
    hidden: bool


class BlurEvent(BaseModel):
    type: Literal["blur"] = "blur"


class FullscreenEvent(BaseModel):
    type: Literal["fullscreen"] = "fullscreen"
    is_fullscreen: bool


class ExitEvent(BaseModel):
    """사용자가 'Exit Quiz'를 누름. 저장 강제 없이 감시만 해제한다."""
    type: Literal["exit"] = "exit"


class SubmitEvent(BaseModel):
    """수동 제출. 확인 대화상자를 거친 경우에만 confirmed=True."""
    type: Literal["submit"] = "submit"
    confirmed: bool = False


SessionEvent = Annotated[
    Union[
        AnswerEvent,
        NavigateEvent,
        VisibilityEvent,
        BlurEvent,
        FullscreenEvent,
        ExitEvent,
        SubmitEvent,
    ],
    Field(discriminator="type"),
]

session_event_adapter = TypeAdapter(SessionEvent)


def parse_event(data: dict) -> SessionEvent:
    return session_event_adapter.validate_python(data)
