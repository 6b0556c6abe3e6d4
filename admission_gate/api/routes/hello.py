"""Demo protected endpoints.

``POST /v1/hello`` is guarded by the ``enforce_rate_limit`` dependency.
``POST /v1/echo`` calls the gate explicitly through ``evaluate_and_admit``,
the form used by handlers that are not plain FastAPI routes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from admission_gate.core.client_identity import client_id_from_request, hash_client_id
from admission_gate.core.config import settings
from admission_gate.core.rate_limit import enforce_rate_limit, get_admission_gate
from admission_gate.core.window import RateLimitDecision
from admission_gate.schemas.rate_limit import HelloRequest, HelloResponse, QuotaInfo

router = APIRouter(tags=["Demo"])


def _quota(decision: RateLimitDecision | None) -> QuotaInfo:
    if decision is None:
        # Gate disabled: report the configured limit without a live count
        cfg = settings.rate_limit
        return QuotaInfo(limit=cfg.requests, remaining=cfg.requests, reset_at=0)
    return QuotaInfo(
        limit=decision.limit,
        remaining=decision.remaining,
        reset_at=decision.reset_at,
        degraded=decision.degraded,
    )


def _greet(request: Request, payload: HelloRequest | None) -> HelloResponse:
    client_id = client_id_from_request(
        request,
        trusted_proxy_count=settings.rate_limit.trusted_proxy_count,
        anonymous_id=settings.rate_limit.anonymous_client_id,
    )
    return HelloResponse(
        message=f"Hello {(payload.name if payload else None) or 'World'}!",
        timestamp=datetime.now(timezone.utc).isoformat(),
        client_hash=hash_client_id(client_id),
        rate_limit=_quota(getattr(request.state, "rate_limit", None)),
    )


@router.post(
    "/hello",
    response_model=HelloResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def hello(request: Request, payload: HelloRequest | None = None) -> HelloResponse:
    """Greet the caller and report the remaining quota.

    Rate limited per resolved client. Denied requests never reach this
    function and receive HTTP 429.
    """
    return _greet(request, payload)


@router.post("/echo")
async def echo(request: Request, payload: HelloRequest | None = None) -> JSONResponse:
    """Same greeting, admitted through ``AdmissionGate.evaluate_and_admit``."""

    if not settings.rate_limit.enabled:
        return JSONResponse(content=_greet(request, payload).model_dump())

    gate = await get_admission_gate()
    return await gate.evaluate_and_admit(request, lambda: _greet(request, payload))
