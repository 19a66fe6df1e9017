"""
Detection Interfaces Layer
==========================

Interface adapters (controllers) for the violation detection module.

Contains:
- Controllers: FastAPI route handlers
"""

from src.detection.interfaces.controllers import detection_router

__all__ = ["detection_router"]
