"""
monitor/ — Console-side collaborators of the gateway connection

Classifies the live event stream, tracks gateway uptime, polls periodic
snapshots and derives the overview the console shows.
"""

from monitor.events import EventMeta, EventType, classify_event
from monitor.poller import Poller
from monitor.status import GatewayStatusTracker
from monitor.store import EventRow, MonitorStore, Snapshot

__all__ = [
    "EventMeta",
    "EventType",
    "classify_event",
    "Poller",
    "GatewayStatusTracker",
    "EventRow",
    "MonitorStore",
    "Snapshot",
]
