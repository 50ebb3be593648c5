"""Workflow orchestration service for forensic-audit operations."""

__version__ = "2.0.0"
