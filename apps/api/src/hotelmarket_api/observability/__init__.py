"""In-process telemetry stores and tracing bootstrap."""
