"""Hardening units run by the orchestrator, and the default pipeline."""
