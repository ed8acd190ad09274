"""Application route blueprints."""

from .consolidated import consolidated_bp
from .grades import grades_bp

__all__ = ["consolidated_bp", "grades_bp"]
