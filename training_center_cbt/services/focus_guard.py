"""
services/focus_guard.py

부정행위 방지 감시 (정식 응시 전용, 연습 모드/관리자 제외).

상태:
  ACTIVE          : 전체 화면 유지 + 탭 포커스
  TIMED_LOCK      : 탭/창 전환 감지 → 고정 시간(기본 15초) 잠금. 모든 기기
  INDEFINITE_LOCK : 전체 화면 이탈 → 다시 전체 화면이 될 때까지 잠금. 데스크톱만

시간 잠금이 끝나도 전체 화면이 아니면 INDEFINITE_LOCK으로 남는다.
잠금은 시험 시계를 멈추지 않는다 (시계는 started_at 기준으로만 계산).
"""

import logging
import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from config import SWITCH_LOCK_SECONDS

logger = logging.getLogger(__name__)


class GuardState(str, Enum):
    ACTIVE = "active"
    TIMED_LOCK = "timed_lock"
    INDEFINITE_LOCK = "indefinite_lock"


class FocusGuard:

    def __init__(
        self,
        active: bool,
        require_fullscreen: bool,
        on_lock: Optional[Callable[[], None]] = None,
        lock_seconds: int = SWITCH_LOCK_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            active:             감시 대상 여부 (정식 응시 && 관리자 아님).
            require_fullscreen: 전체 화면 요구 여부 (데스크톱 = 넓은 화면 + 정밀 포인터).
            on_lock:            잠금 진입 시 호출 (현재 답안 즉시 저장).
            lock_seconds:       탭/창 전환 잠금 시간.
            clock:              초 단위 시계 (테스트에서 교체).
        """
        self.active = active
        self.require_fullscreen = active and require_fullscreen
        self._on_lock = on_lock
        self._lock_seconds = lock_seconds
        self._clock = clock
        self._mutex = threading.Lock()
        self._suppressed = False
        self._locked_until: Optional[float] = None
        # 시작 직후에는 아직 전체 화면이 아니다 → 데스크톱은 진입 전까지 잠김
        self._is_fullscreen = False

    @property
    def live(self) -> bool:
        """감시가 실제로 동작 중인지 (제출/이탈 중에는 해제)."""
        return self.active and not self._suppressed

    @property
    def is_fullscreen(self) -> bool:
        return self._is_fullscreen

    @property
    def state(self) -> GuardState:
        with self._mutex:
            return self._state_unlocked()

    @property
    def is_locked(self) -> bool:
        return self.state is not GuardState.ACTIVE

    def remaining_lock_seconds(self) -> int:
        with self._mutex:
            if self._state_unlocked() is not GuardState.TIMED_LOCK:
                return 0
            return max(0, math.ceil(self._locked_until - self._clock()))

    # ── 브라우저 이벤트 ──────────────────────────────────────────────────────

    def visibility_changed(self, hidden: bool) -> GuardState:
        if hidden:
            self._lock_for_switch()
        return self.state

    def window_blurred(self) -> GuardState:
        self._lock_for_switch()
        return self.state

    def fullscreen_changed(self, is_fullscreen: bool) -> GuardState:
        if not self.require_fullscreen:
            return self.state
        with self._mutex:
            self._is_fullscreen = is_fullscreen
            entered = not is_fullscreen and self.live
        if entered:
            logger.info("전체 화면 이탈 → 무기한 잠금")
            self._notify_lock()
        return self.state

    def suppress(self) -> None:
        """제출/이탈 흐름이 잠금 화면에 막히지 않도록 감시를 해제한다."""
        with self._mutex:
            self._suppressed = True
            self._locked_until = None

    # ── 내부 ────────────────────────────────────────────────────────────────

    def _state_unlocked(self) -> GuardState:
        if not self.live:
            return GuardState.ACTIVE
        if self._locked_until is not None and self._locked_until > self._clock():
            return GuardState.TIMED_LOCK
        if self.require_fullscreen and not self._is_fullscreen:
            return GuardState.INDEFINITE_LOCK
        return GuardState.ACTIVE

    def _lock_for_switch(self) -> None:
        with self._mutex:
            if not self.live:
                return
            # 누적하지 않고 재트리거 시점부터 다시 센다
            self._locked_until = self._clock() + self._lock_seconds
        logger.info(f"탭/창 전환 감지 → {self._lock_seconds}초 잠금")
        self._notify_lock()

    def _notify_lock(self) -> None:
        if self._on_lock is None:
            return
        try:
            self._on_lock()
        except Exception as e:
            logger.warning(f"잠금 진입 저장 실패: {type(e).__name__}: {e}")
