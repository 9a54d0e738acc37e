"""
Controllers - HTTP routes organized by layer
"""
from insight.controllers import insight_controller

__all__ = [
    "insight_controller",
]
