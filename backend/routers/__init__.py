"""
API routers package.
Each router handles a specific domain of endpoints.
"""

from routers import auth, notifications, reminders

__all__ = [
    "auth",
    "notifications",
    "reminders",
]
