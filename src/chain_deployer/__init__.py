"""Resumable, idempotent contract deployment orchestrator."""

__version__ = "0.1.0"
