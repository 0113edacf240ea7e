"""
Models Package - Business logic models
Centralized services shared by the Flask routes
"""

from .event_broadcaster import EventBroadcaster

__all__ = [
    'EventBroadcaster',
]
