"""Session event plumbing: the sink contract and the Wire bus."""

from termdeck.session.sink import EventSink, WireSink
from termdeck.session.wire import EventType, Wire, WireEvent

__all__ = ["EventSink", "EventType", "Wire", "WireEvent", "WireSink"]
