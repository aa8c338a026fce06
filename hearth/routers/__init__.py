"""
Routers Package
"""

from hearth.routers.control import router as control_router
from hearth.routers.popups import router as popups_router
from hearth.routers.public import router as public_router

__all__ = [
    "control_router",
    "popups_router",
    "public_router",
]
