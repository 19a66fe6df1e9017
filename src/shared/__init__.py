"""
Shared Kernel Module
====================

Shared infrastructure used across all bounded contexts (Detection and
Service Tickets).

Architecture Pattern: Modular Monolith
- Each module (detection, tickets) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add detection or ticket business logic to the shared kernel.
"""

__version__ = "1.0.0"
