"""Flow definitions, durable key/value storage and execution history."""
