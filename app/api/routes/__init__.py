from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.notes import router as notes_router

__all__ = ["health_router", "notes_router"]
