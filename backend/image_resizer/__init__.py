"""
Image Resizer Module

Request-driven image transformation cache. Serves width-resized copies of
origin images, pulling originals and generating derivatives lazily on the
first request, and re-serving cached copies until they expire.

Features:
- Per-tenant cache trees keyed by Host header
- Origin pull with X-Forwarded-For
- PNG / JPEG / GIF (incl. animated) resize with Pillow
- Atomic cache writes, streamed to the first requester
- Single-flight fetch/transform per key
- Access-triggered TTL eviction and usage logging
"""

from .app import create_app
from .config import Settings, load_settings
from .orchestrator import RequestOrchestrator, ServeResult
from .routes_fastapi import router

__all__ = ["create_app", "Settings", "load_settings", "RequestOrchestrator", "ServeResult", "router"]
