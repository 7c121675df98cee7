"""StepRunner — executes a ``Plan`` against an ``ActionSession``.

Steps run strictly one after another.  Fragile steps (``click`` and
``wait`` for a selector) get several attempts with capped exponential
backoff plus jitter; every other step gets exactly one.  Validation and
policy failures (``BAD_INPUT``, ``SECURITY_BLOCKED``) and a closed session
are never retried.

Once execution starts ``run`` never raises: every failure is folded into the
returned ``RunReport``, which always carries a best-effort final screenshot,
a shallow DOM snippet and the session state.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from agent_eyes.browser.session import ActionSession
from agent_eyes.exceptions import (
    BadInputError,
    ErrorCode,
    EyesError,
    SessionClosedError,
    to_eyes_error,
)
from agent_eyes.models.plan import (
    MAX_PLAN_STEPS,
    ActionType,
    ClickArgs,
    ExecArgs,
    InvalidStep,
    KeysArgs,
    NavigateArgs,
    Plan,
    PlanStep,
    ScrollArgs,
    TypeArgs,
    WaitArgs,
    is_fragile,
)
from agent_eyes.models.report import ErrorInfo, RunArtifacts, RunReport, StepOutcome
from agent_eyes.monitoring.event_bus import EventType
from agent_eyes.settings.config import RunnerSettings

logger = logging.getLogger(__name__)

ARTIFACT_QUALITY = 60
ARTIFACT_DOM_DEPTH = 3

_NON_RETRYABLE = frozenset({ErrorCode.BAD_INPUT, ErrorCode.SECURITY_BLOCKED})


def make_trace_id() -> str:
    """``eyes-run-<epoch ms>-<6 hex chars>``."""
    return f"eyes-run-{int(time.time() * 1000)}-{uuid4().hex[:6]}"


def backoff_delay_ms(attempt: int, settings: RunnerSettings, rng: random.Random | None = None) -> int:
    """Delay before retry number ``attempt + 1`` (``attempt`` is zero-based)."""
    base = min(settings.backoff_cap_ms, settings.backoff_base_ms * (2**attempt))
    jitter = (rng or random).randrange(settings.backoff_jitter_ms) if settings.backoff_jitter_ms > 0 else 0
    return base + jitter


def _is_retryable(err: EyesError) -> bool:
    return err.code not in _NON_RETRYABLE and not isinstance(err, SessionClosedError)


class StepRunner:
    """Sequential plan executor bound to one session.

    Args:
        session: An open ``ActionSession``.
        settings: Retry policy; defaults to the session's ``runner`` settings.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        session: ActionSession,
        settings: RunnerSettings | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or session.settings.runner
        self._rng = rng or random.Random()
        self._handlers: dict[ActionType, Callable[[Any], Awaitable[Any]]] = {
            ActionType.NAVIGATE: self._navigate,
            ActionType.CLICK: self._click,
            ActionType.TYPE: self._type,
            ActionType.WAIT: self._wait,
            ActionType.SCROLL: self._scroll,
            ActionType.KEYS: self._keys,
            ActionType.EXEC: self._exec,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, plan: Plan | dict[str, Any]) -> RunReport:
        """Execute *plan* and return its report.

        A step with an unknown action or invalid args fails on its own as
        ``BAD_INPUT``; the rest of the plan follows ``abort_on_error``.

        Raises:
            BadInputError: If the plan has no ``steps`` list, has more than 50
                steps, or carries malformed run options.  Nothing is executed.
        """
        validated = self.validate(plan)
        started = time.monotonic()
        trace_id = make_trace_id()
        events = self._session.events

        logger.info("Run %s started: %d steps (%s)", trace_id, len(validated.steps), validated.goal or "no goal")
        await events.emit(
            EventType.RUN_STARTED,
            {"trace_id": trace_id, "goal": validated.goal, "steps": len(validated.steps)},
        )

        last_error: EyesError | None = None
        outcomes: list[StepOutcome] = []

        for index, step in enumerate(validated.steps):
            outcome, step_error = await self._execute(index, step, trace_id)
            outcomes.append(outcome)
            if step_error is not None:
                last_error = step_error
                if validated.abort_on_error:
                    logger.info("Run %s aborted at step %d (%s)", trace_id, index, step.action)
                    break
            elapsed_ms = (time.monotonic() - started) * 1000
            if validated.max_duration_ms and elapsed_ms > validated.max_duration_ms:
                logger.info("Run %s stopped: duration budget %dms exceeded", trace_id, validated.max_duration_ms)
                break

        artifacts, last_state = await self._collect_artifacts()
        report = RunReport(
            success=last_error is None,
            trace_id=trace_id,
            goal=validated.goal,
            last_state=last_state,
            artifacts=artifacts,
            error=ErrorInfo.from_error(last_error) if last_error else None,
            steps=outcomes,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        logger.info("Run %s finished: success=%s in %dms", trace_id, report.success, report.duration_ms)
        await events.emit(
            EventType.RUN_COMPLETED,
            {
                "trace_id": trace_id,
                "success": report.success,
                "duration_ms": report.duration_ms,
                "error": report.error.model_dump() if report.error else None,
            },
        )
        return report

    @staticmethod
    def validate(plan: Plan | dict[str, Any] | None) -> Plan:
        """Coerce *plan* into a ``Plan`` or raise ``BadInputError``."""
        if isinstance(plan, Plan):
            return plan
        if not isinstance(plan, dict) or not isinstance(plan.get("steps"), list):
            raise BadInputError("Runner requires steps[]")
        if len(plan["steps"]) > MAX_PLAN_STEPS:
            raise BadInputError(f"Too many steps (>{MAX_PLAN_STEPS})")
        try:
            return Plan.model_validate(plan)
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise BadInputError(
                f"Invalid plan: {first.get('msg', 'validation failed')}",
                hint=location,
            ) from exc

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _execute(self, index: int, step: PlanStep, trace_id: str) -> tuple[StepOutcome, EyesError | None]:
        """Run one step with its retry budget; return the outcome and final error."""
        attempts = self._settings.fragile_attempts if is_fragile(step) else 1
        started = time.monotonic()
        attempt = 0
        err: EyesError | None = None

        while True:
            try:
                await self._dispatch(step)
                err = None
                break
            except Exception as exc:
                err = to_eyes_error(exc)
            attempt += 1
            if attempt >= attempts or not _is_retryable(err):
                break

            delay = backoff_delay_ms(attempt - 1, self._settings, self._rng)
            logger.warning(
                "Step %d (%s) failed (attempt %d/%d): %s — retrying in %dms",
                index,
                step.action,
                attempt,
                attempts,
                err.code.value,
                delay,
            )
            await self._session.events.emit(
                EventType.STEP_RETRY,
                {
                    "trace_id": trace_id,
                    "index": index,
                    "action": step.action,
                    "attempt": attempt,
                    "delay_ms": delay,
                    "error": err.to_dict(),
                },
            )
            try:
                await self._session.pause(delay)
            except SessionClosedError as closed:
                err = closed
                break

        outcome = StepOutcome(
            index=index,
            action=step.action or "unknown",
            success=err is None,
            attempts=max(attempt, 1) if err is not None else attempt + 1,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=ErrorInfo.from_error(err) if err else None,
        )
        return outcome, err

    async def _dispatch(self, step: PlanStep) -> None:
        if isinstance(step, InvalidStep):
            raise BadInputError(step.error, hint=step.hint)
        try:
            handler = self._handlers[ActionType(step.action)]
        except (KeyError, ValueError):
            raise BadInputError(f"Unknown action: {step.action}") from None
        await handler(step.args)

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    async def _navigate(self, args: NavigateArgs) -> None:
        await self._session.navigate(args.url, wait_until=args.wait, timeout_ms=args.timeout_ms)

    async def _click(self, args: ClickArgs) -> None:
        await self._session.click(args.selector, text=args.text, nth=args.nth, timeout_ms=args.timeout_ms)

    async def _type(self, args: TypeArgs) -> None:
        await self._session.type_text(args.selector, args.text, delay_ms=args.delay_ms)

    async def _wait(self, args: WaitArgs) -> None:
        await self._session.wait(args.mode, selector=args.selector, timeout_ms=args.timeout_ms)

    async def _scroll(self, args: ScrollArgs) -> None:
        await self._session.scroll(x=args.x, y=args.y, into_view_selector=args.into_view_selector)

    async def _keys(self, args: KeysArgs) -> None:
        await self._session.key_press(args.press)

    async def _exec(self, args: ExecArgs) -> None:
        await self._session.eval_script(args.expression)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def _collect_artifacts(self) -> tuple[RunArtifacts, Any]:
        """Final screenshot, DOM snippet and state; each ``None`` on failure."""
        session = self._session
        artifacts = RunArtifacts()

        try:
            artifacts.screenshot = await session.screenshot(format="jpeg", quality=ARTIFACT_QUALITY)
        except Exception as e:
            logger.debug("Artifact screenshot unavailable: %s", e)

        try:
            artifacts.dom_snippet = await session.dom_snapshot(max_depth=ARTIFACT_DOM_DEPTH, plaintext=True)
        except Exception as e:
            logger.debug("Artifact DOM snippet unavailable: %s", e)

        try:
            last_state = await session.state()
        except Exception as e:
            logger.debug("Final session state unavailable: %s", e)
            last_state = None

        return artifacts, last_state
