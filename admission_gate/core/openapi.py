"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- The shared 429 response (body schema + Retry-After / X-RateLimit-* headers)
  on every operation behind the admission gate

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from admission_gate.schemas.rate_limit import RateLimitExceededResponse

RATE_LIMITED_PATH_PREFIX = "/v1/"

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Maximum admitted requests per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Admissions left in the current window.",
        "schema": {"type": "integer", "minimum": 0},
    },
    "X-RateLimit-Reset": {
        "description": "UNIX epoch seconds when the window is reported to reset.",
        "schema": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to document the admission gate.

    - Registers ``RateLimitExceeded`` under components.schemas
    - Adds a 429 response to every operation under ``/v1/``
    - Documents X-RateLimit-* headers on their 200 responses
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        schemas = components.setdefault("schemas", {})
        schemas.setdefault(
            "RateLimitExceeded",
            RateLimitExceededResponse.model_json_schema(by_alias=True),
        )

        too_many_requests = {
            "description": "Rate limit exceeded",
            "headers": {
                "Retry-After": {
                    "description": "Seconds to wait before retrying.",
                    "schema": {"type": "integer", "minimum": 1},
                },
                **_RATE_LIMIT_HEADERS,
            },
            "content": {
                "application/json": {
                    "schema": {"$ref": "#/components/schemas/RateLimitExceeded"}
                }
            },
        }

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith(RATE_LIMITED_PATH_PREFIX):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                responses = method_obj.setdefault("responses", {})
                responses.setdefault("429", too_many_requests)
                ok = responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", {}).update(_RATE_LIMIT_HEADERS)

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Demo",
                "description": "Rate-limited endpoints protected by the admission gate.",
            },
            {
                "name": "Health",
                "description": "Liveness checks (never rate limited).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
