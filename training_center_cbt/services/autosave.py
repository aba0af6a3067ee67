"""
services/autosave.py

디바운스 자동 저장 파이프라인.

- queue()    : 최신 답안/위치를 대기열에 넣고 디바운스 타이머를 다시 건다.
               창 안의 연속 변경은 한 번의 쓰기로 합쳐지고, 마지막 상태만 저장된다.
- save_now() : 대기 중인 타이머를 취소하고 즉시 저장 (잠금 진입 시).
- cancel()   : 저장하지 않고 대기 중인 쓰기를 버린다 (이탈/제출).
               이미 진행 중인 쓰기가 있으면 끝날 때까지 기다린다.

쓰기는 _write_lock으로 직렬화된다. cancel()/save_now()가 세대(generation)를 올리면
그 이전에 대기열에 들어간 값은 쓰지 않고 버린다.

저장 실패는 로그만 남기고 삼킨다. 제출은 항상 메모리의 최신 상태로 채점하므로
자동 저장 한 번을 잃어도 시도는 계속된다.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from config import AUTOSAVE_DEBOUNCE_SECONDS
from training_center_cbt.models.question_model import AnswerValue

logger = logging.getLogger(__name__)

Answers = Dict[str, AnswerValue]
SaveFn = Callable[[Answers, int], None]
TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


def _copy_answers(answers: Answers) -> Answers:
    return {k: list(v) if isinstance(v, list) else v for k, v in answers.items()}


class AutosavePipeline:

    def __init__(
        self,
        save: Optional[SaveFn],
        delay: float = AUTOSAVE_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        """
        Args:
            save:          (answers, current_index)를 저장하는 함수. None이면 비활성 파이프라인.
            delay:         디바운스 창 (초).
            timer_factory: threading.Timer 호환 팩토리 (테스트에서 교체).
        """
        self._save = save
        self._delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._generation = 0
        self._pending: Optional[Tuple[Answers, int, int]] = None
        self._timer: Optional[threading.Timer] = None
        self.write_count = 0

    @property
    def enabled(self) -> bool:
        return self._save is not None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def queue(self, answers: Answers, current_index: int) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._pending = (_copy_answers(answers), current_index, self._generation)
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self._delay, self._flush_pending)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def save_now(self, answers: Answers, current_index: int) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._cancel_timer()
            self._pending = None
            self._generation += 1
            generation = self._generation
        self._write(_copy_answers(answers), current_index, generation)

    def cancel(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._pending = None
            self._generation += 1
        # 진행 중인 쓰기가 끝나야 반환
        with self._write_lock:
            pass

    # ── 내부 ────────────────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _flush_pending(self) -> None:
        with self._lock:
            payload = self._pending
            self._pending = None
            self._timer = None
        if payload is None:
            return
        self._write(*payload)

    def _write(self, answers: Answers, current_index: int, generation: int) -> None:
        with self._write_lock:
            with self._lock:
                if generation != self._generation:
                    logger.debug("취소된 자동 저장 — 쓰지 않음")
                    return
            try:
                self._save(answers, current_index)
                self.write_count += 1
            except Exception as e:
                logger.warning(f"자동 저장 실패: {type(e).__name__}: {e}")
