from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal


CadenceReason = Literal["assistant_modulo", "time"]
GenerationStatus = Literal["generated", "reused_previous", "skipped_empty", "skipped_locked"]


# Stored records
class CadenceState(BaseModel):
    """One mutable cadence record per session (timestamps in epoch ms)."""
    session_id: str
    turns_since: int = 0
    assistant_msg_since: int = 0
    last_generated_at: int = 0
    last_version: int = 0
    lock_until: int = 0

    def is_locked(self, now_ms: int) -> bool:
        return self.lock_until > now_ms


class Turn(BaseModel):
    sessionId: str
    role: str
    text: Optional[str] = None
    ts: int
    messageId: Optional[str] = None


class SummaryRow(BaseModel):
    sessionId: str
    version: int
    text: str
    lastMessageTs: Optional[int] = None
    createdAt: int
    updatedAt: int
    meta: Optional[Dict[str, Any]] = None


class InsertedSummary(BaseModel):
    version: int
    updatedAt: int


# Generator contract
class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class GeneratedSummary(BaseModel):
    text: str = ""
    provider: Optional[str] = None
    modelId: Optional[str] = None


# Pipeline results
class CadenceVerdict(BaseModel):
    dueNow: bool
    locked: bool
    reason: Optional[CadenceReason] = None
    turnsSince: int
    assistantMsgSince: int
    ageSec: int


class CadenceStateView(BaseModel):
    sessionId: str
    turnsSince: int = 0
    assistantMsgSince: int = 0
    lastGeneratedAt: int = 0
    lastVersion: int = 0
    lockUntil: int = 0
    locked: bool = False
    thresholdTurns: int


class GenerationResult(BaseModel):
    sessionId: str
    status: GenerationStatus
    version: Optional[int] = None
    lastMessageTs: Optional[int] = None
    textLength: int = 0
    reason: Optional[str] = None
    generatedAt: Optional[int] = None


# Request Models
class InteractionRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)
    role: str = Field(..., pattern="^(user|assistant|system)$")
    text: Optional[str] = None
    ts: int
    recentMessages: Optional[List[Dict[str, Any]]] = None


class AssistantTurnRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    lastKnownVersion: Optional[int] = None


class SessionRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)


class RegenerateRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    recentMessages: Optional[List[Dict[str, Any]]] = None


# Response Models
class InteractionResponse(BaseModel):
    ok: bool
    sessionId: str
    cadence: Optional[CadenceVerdict] = None
    generationScheduled: bool = False


class ReleaseLockResponse(BaseModel):
    ok: bool
