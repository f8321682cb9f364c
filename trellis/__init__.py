"""
Trellis - object-graph persistence on SQLite.

Submodules:
    trellis.store - Entity base class, Store (save / load / transact) and connect()
"""

from . import store
from .store import Entity, Store, connect

__all__ = [
    "store",
    "Entity",
    "Store",
    "connect",
]

__version__ = "0.1.0"
