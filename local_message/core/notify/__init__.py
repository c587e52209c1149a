"""
Notify Strategies

Pluggable transports for outbox records, resolved by transport type.
"""

from .base import SKIPPED, NotifyStrategy
from .registry import NotifyStrategyRegistry, build_default_registry

__all__ = [
    "SKIPPED",
    "NotifyStrategy",
    "NotifyStrategyRegistry",
    "build_default_registry",
]
