"""Structured logging and Prometheus instrumentation for ReflexAgent."""
