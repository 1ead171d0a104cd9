"""Run orchestration: queueing, sub-flows, cancellation, triggers and events."""
