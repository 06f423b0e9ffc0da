"""
Narrator Client

Thin async client for an Ollama-compatible `/api/chat` endpoint used to
phrase grouping rationales. Returns the reply text; raises on any transport
failure, timeout, non-2xx status or empty reply so the caller can fall back.
"""
import logging
from typing import Optional

import httpx

from classroom.config import NARRATOR_URL, NARRATOR_MODEL, NARRATOR_API_KEY, NARRATOR_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class NarratorError(Exception):
    """Narrator unavailable or returned nothing usable"""


class NarratorClient:

    def __init__(
        self,
        base_url: str = NARRATOR_URL,
        model: str = NARRATOR_MODEL,
        api_key: str = NARRATOR_API_KEY,
        timeout: float = NARRATOR_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def chat(self, prompt: str, temperature: float = 0.3) -> str:
        """
        Send a single-turn, non-streaming chat request.

        Raises:
            NarratorError: on timeout, HTTP error or empty content
        """
        if not self.enabled:
            raise NarratorError("Narrator is not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": 400},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/chat", json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise NarratorError(f"Narrator timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise NarratorError(f"Narrator returned HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise NarratorError(f"Narrator request failed: {exc}") from exc

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise NarratorError("Narrator returned an empty reply")
        return content.strip()
