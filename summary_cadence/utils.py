from typing import Callable
import time


Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def age_seconds(since_ms: int, now: int) -> int:
    """Whole seconds elapsed since ``since_ms`` (never negative)"""
    return max(0, (now - since_ms) // 1000)


def preview(text: str, limit: int = 50) -> str:
    """Short single-line preview for log messages"""
    clean = " ".join((text or "").split())
    if len(clean) <= limit:
        return clean
    return clean[:limit] + "..."
