"""
Diagnostics API Endpoints.

============================================================
PURPOSE
============================================================
HTTP API exposing provider health, weights, errors and stats.

PRINCIPLES:
- ALL endpoints are READ-ONLY
- NO fetch or control endpoints
- Handlers never trigger outbound provider calls

============================================================
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from aiohttp import web

from data_acquisition.models import DataKind, ErrorType, to_jsonable, utcnow
from data_acquisition.orchestrator import ProviderFallbackOrchestrator


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class DiagnosticsEncoder(json.JSONEncoder):
    """JSON encoder for diagnostics data."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "__dataclass_fields__"):
            return to_jsonable(obj)
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=DiagnosticsEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


# ============================================================
# API HANDLERS
# ============================================================

class DiagnosticsAPI:
    """Read-only view over a running orchestrator."""

    def __init__(self, orchestrator: ProviderFallbackOrchestrator) -> None:
        self._orchestrator = orchestrator

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /api/health

        Service liveness plus a healthy/unhealthy provider count.
        """
        summary = self._orchestrator.health.summary(self._orchestrator.adapters)
        return json_response({
            "status": "ok" if summary["unhealthy"] == 0 else "degraded",
            "timestamp": utcnow().isoformat(),
            "service": "data_acquisition",
            "providers": summary,
        })

    async def list_providers(self, request: web.Request) -> web.Response:
        """
        GET /api/providers

        Registered providers with metadata and diagnostics.
        """
        try:
            health = self._orchestrator.get_all_health()
            providers = [
                {
                    **adapter.metadata(),
                    "health": health[name].to_dict(),
                }
                for name, adapter in self._orchestrator.adapters.items()
            ]
            return json_response({"status": "ok", "data": providers})
        except Exception as e:
            logger.error(f"Error listing providers: {e}")
            return error_response(str(e), 500)

    async def provider_health(self, request: web.Request) -> web.Response:
        """
        GET /api/providers/{name}/health
        """
        name = request.match_info["name"]
        try:
            diagnostics = self._orchestrator.get_provider_health(name)
        except KeyError:
            return error_response(f"Unknown provider: {name}", 404)
        return json_response({"status": "ok", "data": diagnostics.to_dict()})

    async def weights(self, request: web.Request) -> web.Response:
        """
        GET /api/weights/{kind}

        Current dynamic weights for the providers serving a data kind.
        """
        raw_kind = request.match_info["kind"]
        try:
            kind = DataKind(raw_kind)
        except ValueError:
            return error_response(f"Unknown data kind: {raw_kind}", 400)

        weights = self._orchestrator.get_weights(kind)
        metrics = self._orchestrator.metrics.get_all_metrics()
        return json_response({
            "status": "ok",
            "data": {
                "kind": kind.value,
                "weights": weights,
                "metrics": {
                    name: metrics[name].to_dict() for name in weights if name in metrics
                },
            },
        })

    async def errors(self, request: web.Request) -> web.Response:
        """
        GET /api/errors?limit=20&type=network&component=binance
        """
        try:
            limit = int(request.query.get("limit", "20"))
        except ValueError:
            return error_response("limit must be an integer", 400)
        limit = max(1, min(limit, self._orchestrator.errors.max_errors))

        tracker = self._orchestrator.errors
        if "type" in request.query:
            try:
                error_type = ErrorType(request.query["type"])
            except ValueError:
                return error_response(f"Unknown error type: {request.query['type']}", 400)
            events = list(reversed(tracker.get_errors_by_type(error_type)))
        elif "component" in request.query:
            events = list(reversed(tracker.get_errors_by_component(request.query["component"])))
        else:
            events = tracker.get_recent_errors(limit)

        stats = tracker.get_stats()
        return json_response({
            "status": "ok",
            "data": {
                "total_errors": stats["total_errors"],
                "errors_by_type": stats["errors_by_type"],
                "errors_by_component": stats["errors_by_component"],
                "recovery_rate": stats["recovery_rate"],
                "errors": [event.to_dict() for event in events[:limit]],
            },
        })

    async def stats(self, request: web.Request) -> web.Response:
        """
        GET /api/stats

        Cache, deduplication, rate limiter and fallback counters.
        """
        return json_response({"status": "ok", "data": self._orchestrator.get_stats()})


# ============================================================
# APP FACTORY
# ============================================================

def create_app(orchestrator: ProviderFallbackOrchestrator) -> web.Application:
    """
    Create the diagnostics application.

    Every route is a GET.
    """
    api = DiagnosticsAPI(orchestrator)

    app = web.Application()

    app.router.add_get("/api/health", api.health)
    app.router.add_get("/api/providers", api.list_providers)
    app.router.add_get("/api/providers/{name}/health", api.provider_health)
    app.router.add_get("/api/weights/{kind}", api.weights)
    app.router.add_get("/api/errors", api.errors)
    app.router.add_get("/api/stats", api.stats)

    async def on_cleanup(app: web.Application) -> None:
        await orchestrator.close()

    app.on_cleanup.append(on_cleanup)
    return app
