"""Session monitoring: event bus and JSONL action trace.

**Event bus** — decoupled event dispatch for the CLI (JSONL), logging and
test sinks. See ``agent_eyes.monitoring.event_bus`` for details.

**Trace** — one JSON line per action invocation, written lazily in append
mode. See ``agent_eyes.monitoring.trace``.

Usage (event bus)::

    from agent_eyes.monitoring.event_bus import EventBus, EventType, LoggingSink

    bus = EventBus(session_id="abc123")
    bus.add_sink(LoggingSink())
    await bus.emit(EventType.NAVIGATED, {"url": "https://example.com"})
"""
