"""Production client that speaks the OpenAI-compatible Responses API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterable, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_RESPONSES_URL", "ResponsesClient", "Transport"]

LOGGER = logging.getLogger(__name__)

DEFAULT_RESPONSES_URL = "https://api.openai.com/v1/responses"
API_KEY_ENV_VARS = ("AITK_API_KEY", "OPENAI_API_KEY")

Transport = Callable[[Dict[str, Any]], str]


class ResponsesClient(LLMClient):
    """Send edit prompts to a Responses endpoint and return the answer text.

    ``transport`` replaces the HTTP call entirely; tests use it to feed
    canned payloads without network access or an API key.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_RESPONSES_URL,
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or next((os.environ[name] for name in API_KEY_ENV_VARS if os.environ.get(name)), None)
        if transport is None and not self._api_key:
            raise ValueError(
                "An API key is required to reach the model endpoint; "
                f"set models.api_key or one of {', '.join(API_KEY_ENV_VARS)}."
            )
        self._endpoint = base_url
        self._timeout = timeout
        self._send = transport or self._post_json

    @property
    def timeout(self) -> float:
        return self._timeout

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            body = self._send(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - custom transports only
            raise LLMTransportError(f"Transport failed: {error}") from error

        text = self._answer_text(body)
        if text is None:
            raise LLMResponseFormatError("Model answer carried no output text.")
        return text

    def _post_json(self, payload: Dict[str, Any]) -> str:
        """POST ``payload`` to the endpoint and return the raw response body."""
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("POST %s model=%s (%d message(s))", self._endpoint, payload.get("model"), len(payload["input"]))

        http_request = urllib.request.Request(
            self._endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(http_request, timeout=self._timeout) as response:
                status = getattr(response, "status", 200)
                body = response.read()
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"No answer from {self._endpoint} within {self._timeout:g}s.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code} from model endpoint: {detail}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Cannot reach model endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Model endpoint answered with HTTP {status}")
        return body.decode("utf-8")

    def _answer_text(self, body: str) -> Optional[str]:
        """Pull the assistant text out of a Responses or chat-completions body."""
        if not body:
            return None
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            # Some gateways return the bare text.
            return body
        if not isinstance(data, dict):
            return body

        direct = data.get("output_text")
        if isinstance(direct, str) and direct.strip():
            return direct

        nested = data.get("response")
        candidates = (
            data.get("output") or data.get("outputs"),
            nested.get("output") if isinstance(nested, dict) else None,
            data.get("choices"),
        )
        for container in candidates:
            text = self._join_text(container)
            if text:
                return text
        return None

    @staticmethod
    def _join_text(container: Any) -> Optional[str]:
        if not container:
            return None
        items: Iterable[Any] = [container] if isinstance(container, dict) else container

        fragments: list[str] = []
        for item in items:
            if not isinstance(item, dict) or item.get("type") == "reasoning":
                continue
            parts = item.get("content")
            if isinstance(parts, list):
                fragments.extend(
                    part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
                )
            elif isinstance(item.get("message"), dict):
                content = item["message"].get("content")
                if isinstance(content, str):
                    fragments.append(content)
            elif isinstance(item.get("text"), str):
                fragments.append(item["text"])

        joined = "".join(fragments)
        return joined if joined.strip() else None
