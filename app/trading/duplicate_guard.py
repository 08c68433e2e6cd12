import hashlib
import logging
import time
from typing import Callable, Dict

logger = logging.getLogger(__name__)

DUPLICATE_TTL_SECONDS = 30.0


class DuplicateGuard:
    """
    Защита от повторной доставки одного и того же вебхука.
    Хранится только в памяти процесса, устаревшие ключи удаляются при каждой проверке.
    """

    def __init__(self, ttl: float = DUPLICATE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._seen: Dict[str, float] = {}

    @staticmethod
    def key_for(body: bytes) -> str:
        return hashlib.sha256(body).hexdigest()

    def _prune(self, now: float):
        expired = [k for k, ts in self._seen.items() if now - ts > self.ttl]
        for k in expired:
            del self._seen[k]

    def check_and_record(self, key: str) -> bool:
        now = self._clock()
        self._prune(now)
        if key in self._seen:
            logger.debug(f"Duplicate payload {key[:12]}")
            return True
        self._seen[key] = now
        return False

    def __len__(self) -> int:
        return len(self._seen)
