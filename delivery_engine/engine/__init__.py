"""Lifecycle engine, earnings aggregation and session management."""

from delivery_engine.engine.earnings import EarningsAggregator
from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.engine.poller import GatewayPoller
from delivery_engine.engine.session import SessionRegistry

__all__ = [
    "TaskLifecycleEngine",
    "EarningsAggregator",
    "GatewayPoller",
    "SessionRegistry",
]
