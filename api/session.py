"""
api/session.py — 멀티유저 인메모리 쿠키 세션

브라우저마다 UUID 세션 ID를 발급하고, 방문자(Visitor)별로 선언된 신원
(user_id, role)과 관리자 OpenAI 키를 보관한다. 실제 인증은 외부 협력자 몫이다.
마지막 접근 후 TTL(기본 8시간)이 지나면 만료된다.

시험 세션(QuizSession)과는 별개다.
"""

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from config import SESSION_TTL


@dataclass
class Visitor:
    user_id: Optional[str] = None
    role: Optional[str] = None
    api_key: str = ""
    seen_at: float = 0.0


class CookieSessions:

    def __init__(self, ttl: int = SESSION_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._visitors: Dict[str, Visitor] = {}

    def _live(self, sid: str) -> Optional[Visitor]:
        # self._lock 안에서만 호출
        visitor = self._visitors.get(sid)
        if visitor is None:
            return None
        now = self._clock()
        if now - visitor.seen_at > self.ttl:
            del self._visitors[sid]
            return None
        visitor.seen_at = now
        return visitor

    def create(self) -> str:
        sid = uuid.uuid4().hex
        with self._lock:
            self._visitors[sid] = Visitor(seen_at=self._clock())
        return sid

    def touch(self, sid: str) -> bool:
        """살아 있는 세션이면 접근 시각을 갱신하고 True. 만료/미발급이면 False."""
        with self._lock:
            return self._live(sid) is not None

    def identity(self, sid: str) -> Tuple[Optional[str], Optional[str]]:
        """(user_id, role). 신원을 밝히지 않았으면 (None, None)."""
        with self._lock:
            visitor = self._live(sid)
            if visitor is None:
                return None, None
            return visitor.user_id, visitor.role

    def sign_in(self, sid: str, user_id: str, role: str) -> None:
        with self._lock:
            visitor = self._live(sid)
            if visitor is not None:
                visitor.user_id = user_id
                visitor.role = role

    def sign_out(self, sid: str) -> None:
        """신원과 API 키를 지운다. 세션 ID는 유지."""
        with self._lock:
            if self._live(sid) is not None:
                self._visitors[sid] = Visitor(seen_at=self._clock())

    def api_key(self, sid: str) -> str:
        with self._lock:
            visitor = self._live(sid)
            return visitor.api_key if visitor else ""

    def set_api_key(self, sid: str, key: str) -> None:
        with self._lock:
            visitor = self._live(sid)
            if visitor is not None:
                visitor.api_key = key

    def purge_expired(self) -> int:
        """만료된 세션을 정리하고 제거한 수를 반환."""
        now = self._clock()
        with self._lock:
            expired = [sid for sid, v in self._visitors.items() if now - v.seen_at > self.ttl]
            for sid in expired:
                del self._visitors[sid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._visitors)
