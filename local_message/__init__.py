"""Transactional outbox (local message table) engine."""

__version__ = "1.0.0"
