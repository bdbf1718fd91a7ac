"""Client base class shared by all language-model integrations."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

__all__ = [
    "AttemptLogger",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
]

LOGGER = logging.getLogger(__name__)

METADATA_VALUE_LIMIT = 512


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the provider payload carries no usable text."""


class LLMRetryError(LLMClientError):
    """Raised once every attempt has failed."""


# (payload, raw answer or None, error or None, attempt number)
AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception], int], None]


def _input_message(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "content": [{"type": "input_text", "text": text}]}


def _clip_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    """Render metadata values as strings no longer than the provider limit."""
    clipped: Dict[str, str] = {}
    for key, value in metadata.items():
        text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
        if len(text) > METADATA_VALUE_LIMIT:
            text = text[: METADATA_VALUE_LIMIT - 3] + "..."
        clipped[key] = text
    return clipped


@dataclass(slots=True)
class LLMRequest:
    """Plain-text request sent to a model."""

    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render the request body in Responses API ``input`` form."""
        messages = [_input_message("user", self.prompt)]
        if self.system_prompt:
            messages.insert(0, _input_message("system", self.system_prompt))
        payload: Dict[str, Any] = {"model": self.model or default_model, "input": messages}
        if self.temperature:
            payload["temperature"] = self.temperature
        if self.metadata:
            payload["metadata"] = _clip_metadata(self.metadata)
        return payload


class LLMClient:
    """Blocking request/response helper with transport-level retries.

    Empty answers and transport failures are retried up to ``max_attempts``
    times; anything else propagates immediately.
    """

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        return self._model

    def invoke(self, request: LLMRequest, *, logger: Optional[AttemptLogger] = None) -> str:
        """Return the model's text answer to ``request``."""
        attempts = request.max_attempts or self._max_attempts
        payload = request.to_payload(self._model)
        failure: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            answer: Optional[str] = None
            try:
                answer = self._raw_invoke(payload)
                if not answer or not answer.strip():
                    raise LLMResponseFormatError("Model returned an empty response.")
            except (LLMResponseFormatError, LLMTransportError) as error:
                failure = error
                if logger:
                    logger(payload, answer, error, attempt)
                LOGGER.debug("Model call attempt %d/%d failed: %s", attempt, attempts, error)
                if attempt < attempts:
                    time.sleep(self._retry_delay)
                continue
            if logger:
                logger(payload, answer, None, attempt)
            return answer

        raise LLMRetryError(
            f"Model {request.model or self._model} did not answer after {attempts} attempt(s): {failure}"
        ) from failure

    def ask(self, question: str, *, system_prompt: Optional[str] = None) -> str:
        """Send one free-form question."""
        return self.invoke(LLMRequest(prompt=question, system_prompt=system_prompt))

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform one transport call; subclasses implement this."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
