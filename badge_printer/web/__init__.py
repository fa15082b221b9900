"""
Web module for Badge Printer.

Exposes blueprints for:
- JSON API (jobs, queue, templates): api_bp
- Printer management: printers_bp
- Server-sent status events: events_bp
- Health endpoint: health_bp
"""

from .api import api_bp
from .events import events_bp
from .health import health_bp
from .printers import printers_bp

__all__ = ["api_bp", "events_bp", "health_bp", "printers_bp"]
