"""Edit session controller: snapshot, model call, parse, and apply."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from . import prompts
from .applier import EditApplier, emit_event
from .config import EngineConfig
from .context_builder import ContextBuilder, ProjectSnapshot
from .errors import (
    ConflictDetected,
    EditEngineError,
    MalformedResponse,
    ModelUnavailable,
    OperationFailed,
    RolledBack,
)
from .gateway import ModelGateway
from .models.llm_client import LLMClient
from .parser import EditPlanParser
from .structured import ApplyResult, EditPlan, OperationOutcome, Verdict

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of an edit session."""

    IDLE = "idle"
    BUILDING_CONTEXT = "building_context"
    AWAITING_MODEL = "awaiting_model"
    PARSING = "parsing"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


@dataclass(slots=True)
class SessionSummary:
    """Final report of one edit session."""

    state: SessionState
    verdict: Verdict | None = None
    counts: dict[str, int] = field(default_factory=dict)
    outcomes: tuple[OperationOutcome, ...] = ()
    abort_reason: str | None = None
    offending_paths: tuple[str, ...] = ()
    attempts: int = 0
    dry_run: bool = False

    @property
    def committed(self) -> bool:
        return self.state is SessionState.COMMITTED

    def render(self) -> str:
        """One summary line, followed by per-operation detail when not committed."""
        if self.state is SessionState.COMMITTED:
            counts = self.counts or {}
            totals = (
                f"{counts.get('create', 0)} created, {counts.get('replace', 0)} replaced, "
                f"{counts.get('delete', 0)} deleted, {counts.get('rename', 0)} renamed"
            )
            prefix = "Dry run, nothing written" if self.dry_run else "Committed"
            lines = [f"{prefix}: {totals}."]
            if self.dry_run:
                lines.extend(f"  {outcome.render()}" for outcome in self.outcomes)
            return "\n".join(lines)

        label = "Rolled back" if self.state is SessionState.ROLLED_BACK else "Aborted"
        lines = [f"{label}: {self.abort_reason or 'unknown error'}"]
        lines.extend(f"  {outcome.render()}" for outcome in self.outcomes)
        if self.offending_paths and not self.outcomes:
            lines.extend(f"  - {path}" for path in self.offending_paths)
        return "\n".join(lines)


class EditSession:
    """Drive a single instruction from snapshot to a committed or reverted plan.

    The malformed-response retry counter belongs to the instance; sessions
    share no state.
    """

    def __init__(
        self,
        roots: Sequence[Path | str],
        instruction: str,
        *,
        client: LLMClient,
        config: EngineConfig | None = None,
    ) -> None:
        self._roots = list(roots)
        self._instruction = instruction
        self._config = config or EngineConfig()
        self._builder = ContextBuilder.from_config(self._config)
        self._gateway = ModelGateway(client, max_prompt_tokens=self._config.session.max_prompt_tokens)
        self._max_retries = self._config.session.max_retries
        self._retries = 0
        self._attempts = 0
        self.state = SessionState.IDLE

    @property
    def attempts(self) -> int:
        return self._attempts

    def run(self) -> SessionSummary:
        """Run the session synchronously."""
        try:
            snapshot, context_text = self._gather()
            parser = EditPlanParser.for_snapshot(snapshot)
            feedback: str | None = None
            while True:
                self._enter(SessionState.AWAITING_MODEL)
                self._attempts += 1
                raw = self._gateway.invoke(context_text, self._instruction, feedback=feedback)
                plan, feedback = self._parse(parser, raw)
                if plan is not None:
                    break
            return self._apply(snapshot, plan)
        except EditEngineError as error:
            return self._abort(error)

    async def run_async(self, *, timeout: float | None = None) -> SessionSummary:
        """Run the session, awaiting the model call in a worker thread.

        A model call that exceeds ``timeout`` aborts the session with
        :class:`ModelUnavailable`. The default covers every transport attempt
        of the client (``models.timeout`` per attempt plus retry delays).
        Cancelling the task while the model is pending leaves the filesystem
        untouched.
        """
        models_cfg = self._config.models
        limit = (
            timeout
            if timeout is not None
            else models_cfg.timeout * models_cfg.max_attempts + models_cfg.retry_delay * (models_cfg.max_attempts - 1)
        )
        try:
            snapshot, context_text = self._gather()
            parser = EditPlanParser.for_snapshot(snapshot)
            feedback: str | None = None
            while True:
                self._enter(SessionState.AWAITING_MODEL)
                self._attempts += 1
                try:
                    raw = await asyncio.wait_for(
                        asyncio.to_thread(
                            self._gateway.invoke, context_text, self._instruction, feedback=feedback
                        ),
                        timeout=limit,
                    )
                except asyncio.TimeoutError:
                    raise ModelUnavailable(f"Model did not answer within {limit:g} seconds.") from None
                except asyncio.CancelledError:
                    self._enter(SessionState.ABORTED)
                    raise
                plan, feedback = self._parse(parser, raw)
                if plan is not None:
                    break
            return self._apply(snapshot, plan)
        except EditEngineError as error:
            return self._abort(error)

    def _enter(self, state: SessionState) -> None:
        LOGGER.debug("Edit session %s -> %s", self.state.value, state.value)
        self.state = state

    def _gather(self) -> tuple[ProjectSnapshot, str]:
        self._enter(SessionState.BUILDING_CONTEXT)
        snapshot = self._builder.build(self._roots)
        return snapshot, self._builder.render(snapshot)

    def _parse(self, parser: EditPlanParser, raw: str) -> tuple[EditPlan | None, str | None]:
        """Parse ``raw``; return corrective feedback instead of a plan when a retry is allowed."""
        self._enter(SessionState.PARSING)
        try:
            return parser.parse(raw), None
        except MalformedResponse as error:
            if self._retries >= self._max_retries:
                raise
            self._retries += 1
            LOGGER.info("Model answer rejected (%s); retry %d/%d", error, self._retries, self._max_retries)
            emit_event("session_retry", attempt=self._attempts, retry=self._retries, error=str(error))
            return None, prompts.render_feedback(str(error), self._attempts)

    def _apply(self, snapshot: ProjectSnapshot, plan: EditPlan) -> SessionSummary:
        self._enter(SessionState.APPLYING)
        applier = EditApplier.from_config(snapshot.roots, self._config)
        result = applier.apply(plan)
        if result.committed:
            self._enter(SessionState.COMMITTED)
            return SessionSummary(
                state=self.state,
                verdict=result.verdict,
                counts=result.counts(),
                outcomes=result.outcomes,
                attempts=self._attempts,
                dry_run=result.dry_run,
            )
        return self._abort(result.error or RuntimeError("edit plan was not committed"), result=result)

    def _abort(self, error: Exception, *, result: ApplyResult | None = None) -> SessionSummary:
        if isinstance(error, (OperationFailed, RolledBack)):
            state = SessionState.ROLLED_BACK
        else:
            state = SessionState.ABORTED

        offending: tuple[str, ...] = ()
        if isinstance(error, ConflictDetected):
            offending = error.paths
        elif isinstance(error, OperationFailed):
            offending = (error.path,)
        elif isinstance(error, RolledBack) and isinstance(error.cause, OperationFailed):
            offending = (error.cause.path,)

        self._enter(state)
        LOGGER.warning("Edit session %s: %s", state.value, error)
        emit_event("session_finished", state=state.value, reason=str(error), paths=offending)
        return SessionSummary(
            state=state,
            verdict=result.verdict if result is not None else None,
            outcomes=result.outcomes if result is not None else (),
            abort_reason=str(error),
            offending_paths=offending,
            attempts=self._attempts,
            dry_run=result.dry_run if result is not None else False,
        )


async def run_edit_session(
    roots: Sequence[Path | str],
    instruction: str,
    *,
    client: LLMClient,
    config: EngineConfig | None = None,
    timeout: float | None = None,
) -> SessionSummary:
    """Run one edit session for ``instruction`` over ``roots``."""
    session = EditSession(roots, instruction, client=client, config=config)
    return await session.run_async(timeout=timeout)


__all__ = ["EditSession", "SessionState", "SessionSummary", "run_edit_session"]
