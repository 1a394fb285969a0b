"""
Text Merge/Budgeter - local fallback summarizer

A summary document has two labelled sections:

    Summary so far:
    <core>

    Recent messages:
    <role>: <content>

Each merge folds the previous document's recent messages permanently into its
core, then renders core + new turns under a character budget. When space is
scarce the recent-messages section is reserved first.
"""

from typing import Any, Iterable, NamedTuple, Optional
import re
from .config import Settings, get_settings

SUMMARY_HEADER = "Summary so far:"
RECENT_HEADER = "Recent messages:"
SECTION_SEPARATOR = "\n\n"

CHARS_PER_TOKEN = 8
RECENT_SHARE = 0.4
RECENT_MIN_CHARS = 200

_LEADING_SUMMARY_HEADERS = re.compile(r"^(Summary so far:\s*)+", re.IGNORECASE)
_LEADING_RECENT_HEADERS = re.compile(r"^(Recent messages:\s*)+", re.IGNORECASE)


class SummarySections(NamedTuple):
    core: str = ""
    recents: str = ""

    def folded(self) -> str:
        """Core with the previous recents appended"""
        return "\n".join(part for part in (self.core, self.recents) if part).strip()


def _strip_headers(value: str) -> str:
    value = _LEADING_SUMMARY_HEADERS.sub("", value)
    value = _LEADING_RECENT_HEADERS.sub("", value)
    return value.strip()


def parse_summary(text: Optional[str]) -> SummarySections:
    """
    Split a rendered summary into its core and recent sections.

    Unlabelled text is taken whole as the core. A document holding only a
    recent section is promoted: its content becomes the core.
    """
    s = (text or "").strip()
    if not s:
        return SummarySections()

    idx_summary = s.find(SUMMARY_HEADER)
    idx_recent = s.find(RECENT_HEADER)
    core = ""
    recents = ""

    if idx_summary != -1:
        after_summary = s[idx_summary + len(SUMMARY_HEADER):].lstrip()
        split_at = after_summary.find(RECENT_HEADER) if idx_recent > idx_summary else -1
        if split_at != -1:
            core = after_summary[:split_at].strip()
            recents = after_summary[split_at + len(RECENT_HEADER):].strip()
        else:
            core = after_summary
    elif idx_recent != -1:
        core = s[idx_recent + len(RECENT_HEADER):].strip()
    else:
        core = s

    return SummarySections(core=_strip_headers(core), recents=_strip_headers(recents))


def render_turns(turns: Optional[Iterable[Any]]) -> str:
    """``role: content`` lines for every message-shaped item"""
    lines = []
    for turn in turns or []:
        if isinstance(turn, dict):
            role, content = turn.get("role"), turn.get("content")
        else:
            role, content = getattr(turn, "role", None), getattr(turn, "content", None)
        if isinstance(role, str) and isinstance(content, str):
            lines.append(f"{role}: {content}")
    return "\n".join(lines)


def char_budget(token_budget: Optional[int] = None, settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()
    raw = token_budget * CHARS_PER_TOKEN if token_budget else settings.summary_default_chars
    return max(settings.summary_min_chars, min(settings.summary_max_chars, raw))


def merge_summary(
    prev_summary: Optional[str],
    recent_turns: Optional[Iterable[Any]],
    token_budget: Optional[int] = None,
    settings: Optional[Settings] = None
) -> str:
    folded_core = parse_summary(prev_summary).folded()
    turns_text = render_turns(recent_turns)
    has_recents = bool(turns_text.strip())
    max_chars = char_budget(token_budget, settings)

    if not folded_core and not has_recents:
        return ""
    if not has_recents:
        return f"{SUMMARY_HEADER}\n{folded_core}"[:max_chars]
    if not folded_core:
        return f"{RECENT_HEADER}\n{turns_text}"[:max_chars]

    reserved = max(RECENT_MIN_CHARS, int(max_chars * RECENT_SHARE))
    recent_section = f"{RECENT_HEADER}\n{turns_text}"[:min(reserved, max_chars)]
    remaining = max(0, max_chars - len(recent_section) - len(SECTION_SEPARATOR))
    core_section = f"{SUMMARY_HEADER}\n{folded_core}"[:remaining] if remaining > 0 else ""

    merged = f"{core_section}{SECTION_SEPARATOR}{recent_section}" if core_section else recent_section
    return merged[:max_chars]
