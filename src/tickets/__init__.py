"""
Service Ticket Module
=====================

Bounded Context for the lifecycle of facilities service tickets.

Responsibilities:
- Model tickets and their frozen violation snapshot
- Drive tickets queued -> processing -> assigned -> resolved on durable timers
- Manual fast-forward resolution
- SLA health per ticket on read
- Dashboard queries (status filter, counts, high priority, recent activity)
- Lifecycle policy hot-reload via watchdog
"""

__version__ = "1.0.0"
