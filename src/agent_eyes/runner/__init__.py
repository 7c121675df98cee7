"""Plan execution with per-step retry and backoff."""

from agent_eyes.runner.runner import StepRunner, backoff_delay_ms, make_trace_id

__all__ = ["StepRunner", "backoff_delay_ms", "make_trace_id"]
