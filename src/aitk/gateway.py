"""Compose the edit prompt and make the single model call per attempt."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from . import prompts
from .errors import ModelUnavailable, PromptTooLarge
from .models.llm_client import LLMClient, LLMClientError, LLMRequest

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ComposedPrompt:
    """System and user prompts plus budgeting metadata."""

    system_prompt: str
    user_prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ModelGateway:
    """Send one composed prompt to the model client and return raw text.

    The gateway never retries; the client owns transport retries and the
    session owns retries for unparseable answers.
    """

    DEFAULT_MAX_PROMPT_TOKENS = 100_000
    _CHARS_PER_TOKEN = 4

    def __init__(
        self,
        client: LLMClient,
        *,
        max_prompt_tokens: int | None = None,
        system_preamble: str | None = None,
    ) -> None:
        self._client = client
        self._max_prompt_tokens = max_prompt_tokens or self.DEFAULT_MAX_PROMPT_TOKENS
        self._system_prompt = f"{system_preamble or prompts.SYSTEM_PREAMBLE}\n\n{prompts.EDIT_GRAMMAR}"

    @property
    def client(self) -> LLMClient:
        return self._client

    def compose(self, context_text: str, instruction: str, *, feedback: str | None = None) -> ComposedPrompt:
        """Build the prompt, truncating only the context section to fit the budget."""
        instruction_section = prompts.render_instruction(instruction)
        fixed_parts = [self._system_prompt, instruction_section]
        if feedback:
            fixed_parts.append(feedback)
        fixed_tokens = sum(self._estimate_tokens(part) for part in fixed_parts)
        if fixed_tokens > self._max_prompt_tokens:
            raise PromptTooLarge(
                f"Instruction and grammar need ~{fixed_tokens} tokens, above the {self._max_prompt_tokens} token budget.",
                details={"fixed_tokens": fixed_tokens, "budget": self._max_prompt_tokens},
            )

        context_section = prompts.render_context(context_text)
        remaining = self._max_prompt_tokens - fixed_tokens
        context_tokens = self._estimate_tokens(context_section)
        truncated = False
        if context_tokens > remaining:
            context_section = self._truncate_text_to_tokens(context_section, remaining)
            truncated = True
            LOGGER.warning(
                "Project context truncated from ~%d to ~%d tokens to fit the prompt budget",
                context_tokens,
                self._estimate_tokens(context_section),
            )

        user_parts = [part for part in (context_section, instruction_section, feedback) if part]
        user_prompt = "\n\n".join(user_parts)
        metadata = {
            "token_budget": self._max_prompt_tokens,
            "token_estimate": self._estimate_tokens(self._system_prompt) + self._estimate_tokens(user_prompt),
            "context_truncated": truncated,
        }
        return ComposedPrompt(system_prompt=self._system_prompt, user_prompt=user_prompt, metadata=metadata)

    def invoke(self, context_text: str, instruction: str, *, feedback: str | None = None) -> str:
        """Invoke the model exactly once and return its raw answer."""
        composed = self.compose(context_text, instruction, feedback=feedback)
        request = LLMRequest(
            prompt=composed.user_prompt,
            system_prompt=composed.system_prompt,
            metadata={"context_truncated": composed.metadata["context_truncated"]},
        )
        try:
            return self._client.invoke(request)
        except LLMClientError as error:
            raise ModelUnavailable(str(error)) from error

    def _estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self._CHARS_PER_TOKEN))

    def _truncate_text_to_tokens(self, text: str, allowed_tokens: int) -> str:
        if allowed_tokens <= 0:
            return ""
        marker = "\n... (truncated)"
        max_chars = allowed_tokens * self._CHARS_PER_TOKEN - len(marker)
        if len(text) <= max_chars:
            return text
        truncated = text[: max(max_chars, 0)].rstrip()
        if not truncated:
            return ""
        return f"{truncated}{marker}"


__all__ = ["ComposedPrompt", "ModelGateway"]
