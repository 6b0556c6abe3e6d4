"""Rate limit store adapters.

This package provides a small abstraction layer over the shared table of
recent request records so the gate can run against an in-memory store in
tests and against SQL or Redis in deployments without changing the
evaluator or the API layer.
"""

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore, RequestRecord
from admission_gate.adapters.rate_limit.factory import create_store

__all__ = ["AbstractRateLimitStore", "RequestRecord", "create_store"]
