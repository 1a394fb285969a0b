"""
Turn Window Selector

Picks the conversation turns a regeneration round is built from. Policies run
top-down; each returns a list of messages or None to defer to the next:

1. turns newer than the cutoff (capped to the most recent N)
2. turns the client supplied directly
3. the last few raw turns, so generation never runs on an empty context

The generator sees a two-role dialogue: any role other than "assistant"
(including "system") is reported as "user".
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
import logging
from .config import Settings, get_settings
from .models import ChatMessage, Turn

logger = logging.getLogger(__name__)


@dataclass
class WindowContext:
    cutoff_ts: int
    fetched: List[Turn] = field(default_factory=list)
    client_turns: List[Dict[str, Any]] = field(default_factory=list)
    recent_cap: int = 40
    fallback_tail: int = 8


WindowPolicy = Callable[[WindowContext], Optional[List[ChatMessage]]]


def normalize_message(role: Any, text: Any) -> Optional[ChatMessage]:
    content = text if isinstance(text, str) else ("" if text is None else str(text))
    if not content.strip():
        return None
    return ChatMessage(role="assistant" if role == "assistant" else "user", content=content)


def normalize_turns(turns: Iterable[Turn]) -> List[ChatMessage]:
    out: List[ChatMessage] = []
    for turn in turns:
        message = normalize_message(turn.role, turn.text)
        if message:
            out.append(message)
    return out


def normalize_client_turns(turns: Iterable[Any]) -> List[ChatMessage]:
    out: List[ChatMessage] = []
    for turn in turns:
        if not isinstance(turn, dict):
            continue
        text = turn.get("content")
        if text is None:
            text = turn.get("text")
        message = normalize_message(turn.get("role"), text)
        if message:
            out.append(message)
    return out


def recent_after_cutoff(ctx: WindowContext) -> Optional[List[ChatMessage]]:
    fresh = normalize_turns(t for t in ctx.fetched if t.ts > ctx.cutoff_ts)
    if not fresh:
        return None
    return fresh[-ctx.recent_cap:] if ctx.recent_cap > 0 else fresh


def client_provided(ctx: WindowContext) -> Optional[List[ChatMessage]]:
    supplied = normalize_client_turns(ctx.client_turns)
    return supplied or None


def raw_tail(ctx: WindowContext) -> Optional[List[ChatMessage]]:
    if ctx.fallback_tail <= 0:
        return None
    tail = normalize_turns(ctx.fetched[-ctx.fallback_tail:])
    return tail or None


DEFAULT_POLICIES: Sequence[WindowPolicy] = (
    recent_after_cutoff,
    client_provided,
    raw_tail,
)


def apply_policies(ctx: WindowContext, policies: Sequence[WindowPolicy] = DEFAULT_POLICIES) -> List[ChatMessage]:
    for policy in policies:
        selected = policy(ctx)
        if selected:
            logger.debug(f"Window policy {policy.__name__} selected {len(selected)} turns")
            return selected
    return []


class TurnWindowSelector:
    def __init__(
        self,
        transcript,
        settings: Optional[Settings] = None,
        policies: Sequence[WindowPolicy] = DEFAULT_POLICIES
    ):
        self.transcript = transcript
        self.settings = settings or get_settings()
        self.policies = policies

    async def select_window(
        self,
        session_id: str,
        cutoff_ts: int,
        client_turns: Optional[List[Dict[str, Any]]] = None
    ) -> List[ChatMessage]:
        """
        Build the generator input for one round. Never raises for a transcript
        fetch failure; the chain degrades to client turns or nothing.
        """
        fetched: List[Turn] = []
        try:
            fetched = await self.transcript.list_recent_turns(
                session_id,
                self.settings.summary_fetch_limit
            )
        except Exception as e:
            logger.warning(f"Transcript fetch failed for {session_id}, degrading window: {e}")

        ctx = WindowContext(
            cutoff_ts=cutoff_ts or 0,
            fetched=list(fetched or []),
            client_turns=list(client_turns or []),
            recent_cap=self.settings.summary_recent_cap,
            fallback_tail=self.settings.summary_fallback_tail
        )
        return apply_policies(ctx, self.policies)
