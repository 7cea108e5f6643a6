"""Persistence collaborators — state store and audit event log."""
