"""
LLM call audit trail.
Every generation call, successful or not, reports here exactly once.
Records are emitted as structured log lines; the log pipeline is the sink.
"""
import hashlib
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from formbuilder.core.logging import get_logger

logger = get_logger(__name__)


class LLMCallRecord(BaseModel):
    """One provider invocation. The prompt itself is never recorded, only its hash."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str
    model: str
    operation: str = "generate"
    prompt_hash: str = ""
    prompt_length: int = 0
    system_prompt_length: int = 0
    field_count: int = 0  # size of the form definition sent as context
    success: bool
    latency_ms: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    temperature: float = 0.0
    error: Optional[str] = None


def hash_prompt(prompt: str) -> str:
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


async def log_llm_call(record: LLMCallRecord) -> None:
    """Emit the audit line for one provider invocation."""
    payload = record.model_dump(mode="json", exclude={"timestamp"}, exclude_none=True)
    payload["event"] = "llm_audit"

    if record.success:
        logger.info(f"LLM {record.operation} completed", extra=payload)
    else:
        logger.error(f"LLM {record.operation} failed", extra=payload)
