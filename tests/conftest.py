import random

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.context import AppContext
from training_center_cbt.models.question_model import Question, Quiz
from training_center_cbt.services.store import (
    InMemoryQuizRepository,
    InMemoryResultStore,
    InMemorySessionStore,
)

T0 = 1_700_000_000.0  # 초 단위 기준 시각


class FakeClock:
    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def ms(self) -> int:
        return int(self.now * 1000)


class FakeTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled and not self.fired:
            self.fired = True
            self.function()


class FakeTimerFactory:
    """threading.Timer 대체. fire_pending()으로 디바운스 창 경과를 흉내 낸다."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_pending(self):
        for timer in list(self.timers):
            timer.fire()


def make_quiz(
    quiz_id="quiz-1",
    time_limit=10,
    shuffle_questions=False,
    shuffle_answers=False,
    questions=None,
):
    if questions is None:
        questions = [
            Question(id="q1", question="Which port does HTTPS use?", type="multiple-choice",
                     options=["80", "443", "22"], answer="443"),
            Question(id="q2", question="Which protocols are encrypted?", type="checkbox",
                     options=["SSH", "Telnet", "SFTP"], answer=["SSH", "SFTP"]),
            Question(id="q3", question="Secure replacement for Telnet?", type="short-answer",
                     options=[], answer="SSH"),
        ]
    return Quiz(
        id=quiz_id,
        title=f"Quiz {quiz_id}",
        questions=questions,
        time_limit=time_limit,
        shuffle_questions=shuffle_questions,
        shuffle_answers=shuffle_answers,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def results():
    return InMemoryResultStore()


@pytest.fixture
def quiz():
    return make_quiz()


@pytest.fixture
def ctx(sessions, results):
    return AppContext(
        quizzes=InMemoryQuizRepository([
            make_quiz("timed", time_limit=10),
            make_quiz("untimed", time_limit=None),
        ]),
        sessions=sessions,
        results=results,
    )


@pytest.fixture
def client(ctx):
    app = create_app(ctx, start_background=False)
    with TestClient(app) as c:
        yield c


def identify(client, user_id="student-1", role="student"):
    r = client.post("/api/identify", json={"user_id": user_id, "role": role})
    assert r.status_code == 200
    return r
