"""Conversational investigation of Azure Application Insights telemetry."""

__version__ = "0.1.0"
