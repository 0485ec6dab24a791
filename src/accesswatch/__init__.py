"""AccessWatch: access-pattern anomaly detection and alerting."""

__version__ = "0.1.0"
