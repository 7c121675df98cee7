"""Browser layer: engine, navigation guard, session, observation buffers and visual signals."""
