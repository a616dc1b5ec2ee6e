"""
API Routers
Separate router modules for each domain.
"""

from app.routers import matrix

__all__ = ["matrix"]
