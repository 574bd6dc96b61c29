"""Relational persistence for imported email."""

from .engine import DatabaseEngine
from .models import Base
from .repositories import Repositories

__all__ = ["Base", "DatabaseEngine", "Repositories"]
