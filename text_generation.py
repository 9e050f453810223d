"""Client for the hosted text-generation service used to write insights.

The service speaks the OpenAI Responses API. A response that arrives but
flags an error or an incomplete output is returned as a normal result with
``error``/``incomplete`` set; transport failures and timeouts raise
``TextGenerationError`` so the calling job can be retried.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from config import Settings, get_settings

logger = logging.getLogger(__name__)


class TextGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class GenerationResult:
    id: str
    model: str
    output_text: str
    error: Optional[str] = None
    incomplete: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return bool(self.error or self.incomplete)


class TextGenerationClient(ABC):
    @abstractmethod
    def generate(self, instructions: str, input_text: str) -> GenerationResult:
        ...


class OpenAIResponsesClient(TextGenerationClient):
    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> OpenAIResponsesClient:
        settings = settings or get_settings()
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_secs,
        )

    def generate(self, instructions: str, input_text: str) -> GenerationResult:
        url = f"{self._base_url}/responses"
        payload = {
            "model": self._model,
            "instructions": instructions,
            "input": input_text,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        timeout = httpx.Timeout(connect=5.0, read=self._timeout, write=10.0, pool=5.0)

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise TextGenerationError(
                f"Text generation timed out after {self._timeout:.1f}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise TextGenerationError(
                f"Text generation failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise TextGenerationError(f"Text generation request failed: {exc}") from exc

        return parse_response(data, default_model=self._model)


def _output_text(data: dict[str, Any]) -> str:
    if isinstance(data.get("output_text"), str):
        return data["output_text"]
    chunks: list[str] = []
    for item in data.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text":
                chunks.append(content.get("text", ""))
    return "".join(chunks)


def _describe(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, dict):
        return str(value.get("message") or value.get("reason") or value)
    return str(value)


def parse_response(data: dict[str, Any], *, default_model: str = "") -> GenerationResult:
    if not isinstance(data, dict) or "id" not in data:
        raise TextGenerationError("Unexpected text generation response")
    return GenerationResult(
        id=str(data["id"]),
        model=str(data.get("model") or default_model),
        output_text=_output_text(data),
        error=_describe(data.get("error")),
        incomplete=_describe(data.get("incomplete_details")),
    )
