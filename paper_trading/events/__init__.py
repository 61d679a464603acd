"""Event channel for engine lifecycle notifications."""

from paper_trading.events.bus import Event, EventBus, EventType, Handler

__all__ = [
    'Event',
    'EventBus',
    'EventType',
    'Handler',
]
