from __future__ import annotations

from admission_gate.api.routes.health import router as health_router
from admission_gate.api.routes.hello import router as hello_router

__all__ = ["health_router", "hello_router"]
