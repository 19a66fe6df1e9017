"""
Violation Detection Module
==========================

Bounded Context for turning room telemetry into service tickets.

Responsibilities:
- Validate sensor readings and resolve their rooms
- Classify readings as capacity violations
- Suppress duplicates while a room has an active ticket
- Build fully populated, queued capacity-violation tickets
"""

__version__ = "1.0.0"
