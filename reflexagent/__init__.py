"""ReflexAgent: webhook event classification, aggregation and anomaly alerting."""

__version__ = "0.1.0"
