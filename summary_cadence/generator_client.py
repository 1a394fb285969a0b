"""
Summary generator clients.

Turns (previous summary, recent turns) into new summary text:
- HttpSummaryGenerator: the external AI API, any failure raises GeneratorFailure
- LocalSummaryGenerator: the text merge/budgeter, used when no generator URL
  is configured
"""

import httpx
import logging
from typing import Optional, List
from .config import get_settings
from .errors import GeneratorFailure
from .merge import merge_summary
from .models import ChatMessage, GeneratedSummary
from .utils import preview

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/v1/session-summary/generate"


class HttpSummaryGenerator:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.summary_generator_url or "").rstrip("/")
        self.timeout = float(timeout if timeout is not None else self.settings.summary_generator_timeout)

    async def generate(
        self,
        session_id: str,
        prev_summary: str,
        turns: List[ChatMessage],
        token_budget: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> GeneratedSummary:
        """
        Request a new rolling summary.

        Returns the generator's text verbatim (possibly empty). Raises
        GeneratorFailure on timeout, transport error, non-2xx or a body that is
        not a JSON object.
        """
        if not self.base_url:
            raise GeneratorFailure("summary generator URL is not configured")

        headers = {"Content-Type": "application/json"}
        if request_id:
            headers["x-request-id"] = request_id

        payload = {
            "sessionId": session_id,
            "prevSummary": prev_summary or "",
            "messages": [turn.model_dump() for turn in turns],
            "tokenBudget": token_budget
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{GENERATE_PATH}",
                    headers=headers,
                    json=payload
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Summary generator timed out after {self.timeout}s for {session_id}")
            raise GeneratorFailure(f"generator timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Summary generator transport error for {session_id}: {e}")
            raise GeneratorFailure(f"generator transport error: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Summary generator error: {response.status_code} - {preview(response.text, 200)}")
            raise GeneratorFailure(
                f"generator returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GeneratorFailure("generator returned invalid JSON", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise GeneratorFailure("generator returned a non-object body", status_code=response.status_code)

        text = data.get("text")
        result = GeneratedSummary(
            text=text if isinstance(text, str) else "",
            provider=data.get("provider"),
            modelId=data.get("modelId")
        )
        logger.info(f"Generated rolling summary for {session_id}: {preview(result.text)}")
        return result


class LocalSummaryGenerator:
    provider = "local"

    async def generate(
        self,
        session_id: str,
        prev_summary: str,
        turns: List[ChatMessage],
        token_budget: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> GeneratedSummary:
        text = merge_summary(prev_summary, turns, token_budget)
        return GeneratedSummary(text=text, provider=self.provider, modelId="merge")


def build_generator():
    """HTTP generator when a URL is configured, otherwise the local merge."""
    settings = get_settings()
    if settings.summary_generator_url:
        return HttpSummaryGenerator()
    logger.info("No summary generator URL configured; using local merge generator")
    return LocalSummaryGenerator()
