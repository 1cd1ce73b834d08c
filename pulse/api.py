"""
Pulse API Endpoints.

============================================================
PURPOSE
============================================================
HTTP surface of the health/metrics/alerting core, mounted as an
aiohttp sub-application (default prefix `/pulse`).

- Overview, probes, modules, metrics and LLM provider health
  (read-only)
- Alert configuration CRUD, manual trigger and resolve
- `/events` Server-Sent-Events stream

Status codes: 400 on invalid bodies or query parameters, 404 on
unknown alert ids or probe names, 500 on unexpected errors.

============================================================
"""

import asyncio
import dataclasses
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from core.clock import from_iso8601, to_iso8601
from pulse.alerts.schemas import parse_alert_create, parse_alert_update
from pulse.exceptions import AlertNotFoundError, AlertValidationError, PulseError
from pulse.service import PulseService


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class PulseEncoder(json.JSONEncoder):
    """JSON encoder for Pulse payloads."""

    def default(self, obj):
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, datetime):
            return to_iso8601(obj)
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj):
            return dataclasses.asdict(obj)
        return super().default(obj)


def dumps(data: Any) -> str:
    return json.dumps(data, cls=PulseEncoder)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=dumps(data),
        status=status,
        content_type="application/json",
    )


def error_response(error: str, status: int, details: Any = None) -> web.Response:
    body = {"error": error}
    if details is not None:
        body["details"] = details
    return json_response(body, status=status)


def sse_frame(frame_type: str, data: Any) -> bytes:
    return f"data: {dumps({'type': frame_type, 'data': data})}\n\n".encode("utf-8")


def _query_datetime(request: web.Request, name: str) -> Optional[datetime]:
    raw = request.query.get(name)
    if not raw:
        return None
    try:
        return from_iso8601(raw)
    except ValueError:
        raise PulseError(f"Invalid '{name}' timestamp", details={name: raw}) from None


def _query_bool(request: web.Request, name: str) -> bool:
    return request.query.get(name, "false").lower() in ("1", "true", "yes")


# ============================================================
# API HANDLERS
# ============================================================

class PulseAPI:
    """HTTP handlers over a PulseService."""

    def __init__(self, service: PulseService):
        self._service = service

    def _now(self) -> str:
        return to_iso8601(datetime.now(timezone.utc))

    def _failure(self, action: str, error: Exception) -> web.Response:
        if isinstance(error, AlertValidationError):
            return error_response("Invalid input", 400, error.errors)
        if isinstance(error, AlertNotFoundError):
            return error_response("Alert not found", 404)
        if isinstance(error, PulseError):
            return error_response(error.message, 400, error.details)

        logger.error(f"Error {action}: {error}")
        return json_response({
            "status": "error",
            "error": str(error),
        }, status=500)

    async def _json_body(self, request: web.Request) -> Any:
        try:
            return await request.json()
        except json.JSONDecodeError as e:
            raise AlertValidationError([{"field": "body", "message": f"Invalid JSON: {e.msg}"}])

    # --------------------------------------------------------
    # OVERVIEW & HEALTH
    # --------------------------------------------------------

    async def get_overview(self, request: web.Request) -> web.Response:
        """GET /pulse"""
        try:
            return json_response(await self._service.get_pulse_overview())
        except Exception as e:
            return self._failure("getting overview", e)

    async def get_health(self, request: web.Request) -> web.Response:
        """GET /pulse/health[?deep=true]"""
        try:
            deep = _query_bool(request, "deep")
            return json_response(await self._service.get_system_health(deep=deep))
        except Exception as e:
            return self._failure("getting system health", e)

    # --------------------------------------------------------
    # PROBES
    # --------------------------------------------------------

    async def get_probes(self, request: web.Request) -> web.Response:
        """GET /pulse/probes"""
        return await self._probes(deep=False)

    async def get_deep_probes(self, request: web.Request) -> web.Response:
        """GET /pulse/probes/deep"""
        return await self._probes(deep=True)

    async def _probes(self, deep: bool) -> web.Response:
        try:
            probes = await self._service.get_all_probes(deep=deep)
            return json_response({"timestamp": self._now(), "probes": probes})
        except Exception as e:
            return self._failure("running probes", e)

    async def list_probes(self, request: web.Request) -> web.Response:
        """GET /pulse/probes/list"""
        return json_response({"probes": self._service.list_probes()})

    async def get_probe(self, request: web.Request) -> web.Response:
        """GET /pulse/probes/{name}?deep=bool"""
        name = request.match_info["name"]
        try:
            probe = await self._service.get_probe(name, deep=_query_bool(request, "deep"))
            if probe is None:
                return error_response(f"Probe '{name}' not found", 404)
            return json_response({"timestamp": self._now(), "probe": probe})
        except Exception as e:
            return self._failure(f"running probe {name}", e)

    # --------------------------------------------------------
    # LLM PROVIDERS
    # --------------------------------------------------------

    async def get_llm(self, request: web.Request) -> web.Response:
        """GET /pulse/llm"""
        try:
            return json_response(await self._service.get_llm_health())
        except Exception as e:
            return self._failure("getting LLM health", e)

    async def get_openrouter(self, request: web.Request) -> web.Response:
        """GET /pulse/llm/openrouter"""
        try:
            return json_response(await self._service.get_openrouter_health())
        except Exception as e:
            return self._failure("getting OpenRouter health", e)

    async def get_ollama(self, request: web.Request) -> web.Response:
        """GET /pulse/llm/ollama"""
        try:
            return json_response(await self._service.get_ollama_health())
        except Exception as e:
            return self._failure("getting Ollama health", e)

    # --------------------------------------------------------
    # MODULES & METRICS
    # --------------------------------------------------------

    async def get_modules(self, request: web.Request) -> web.Response:
        """GET /pulse/modules"""
        try:
            modules = await self._service.get_modules()
            return json_response({"timestamp": self._now(), "modules": modules})
        except Exception as e:
            return self._failure("getting module health", e)

    async def get_metrics(self, request: web.Request) -> web.Response:
        """GET /pulse/metrics"""
        return json_response(self._service.get_metrics_snapshot())

    async def get_metrics_history(self, request: web.Request) -> web.Response:
        """
        GET /pulse/metrics/history

        Query params:
        - metric: Single metric name (points) instead of snapshots
        - period: Snapshot period class (1m, 5m, 1h, 24h; default: the persisted period)
        - from / to: ISO 8601 bounds (default: last hour)
        """
        try:
            history = await self._service.get_historical_metrics(
                metric=request.query.get("metric") or None,
                period=request.query.get("period") or None,
                start=_query_datetime(request, "from"),
                end=_query_datetime(request, "to"),
            )
            return json_response({"metrics": history})
        except Exception as e:
            return self._failure("getting metric history", e)

    # --------------------------------------------------------
    # ALERTS
    # --------------------------------------------------------

    async def list_alerts(self, request: web.Request) -> web.Response:
        """GET /pulse/alerts"""
        try:
            engine = self._service.alerts
            return json_response({
                "timestamp": self._now(),
                "alerts": engine.list_alerts(),
                "recentEvents": engine.get_recent_events(self._service.config.recent_events_limit),
            })
        except Exception as e:
            return self._failure("listing alerts", e)

    async def create_alert(self, request: web.Request) -> web.Response:
        """POST /pulse/alerts"""
        try:
            body = parse_alert_create(await self._json_body(request))
            alert = self._service.alerts.create_alert(body)
            return json_response(alert, status=201)
        except Exception as e:
            return self._failure("creating alert", e)

    async def get_alert(self, request: web.Request) -> web.Response:
        """GET /pulse/alerts/{alert_id}"""
        alert_id = request.match_info["alert_id"]
        try:
            engine = self._service.alerts
            alert = engine.get_alert(alert_id)
            events = engine.get_alert_events(
                alert_id, limit=self._service.config.alert_detail_events_limit
            )
            return json_response({
                "alert": alert,
                "events": events,
                "onCooldown": engine.is_on_cooldown(alert_id),
            })
        except Exception as e:
            return self._failure(f"getting alert {alert_id}", e)

    async def update_alert(self, request: web.Request) -> web.Response:
        """PUT /pulse/alerts/{alert_id}"""
        alert_id = request.match_info["alert_id"]
        try:
            body = parse_alert_update(await self._json_body(request))
            return json_response(self._service.alerts.update_alert(alert_id, body))
        except Exception as e:
            return self._failure(f"updating alert {alert_id}", e)

    async def delete_alert(self, request: web.Request) -> web.Response:
        """DELETE /pulse/alerts/{alert_id}"""
        alert_id = request.match_info["alert_id"]
        try:
            self._service.alerts.delete_alert(alert_id)
            return web.Response(status=204)
        except Exception as e:
            return self._failure(f"deleting alert {alert_id}", e)

    async def trigger_alert(self, request: web.Request) -> web.Response:
        """
        POST /pulse/alerts/{alert_id}/trigger

        Operator drill. Optional body: {"details": {...}}.
        """
        alert_id = request.match_info["alert_id"]
        try:
            details = None
            if request.can_read_body:
                body = await self._json_body(request)
                if isinstance(body, dict):
                    details = body.get("details")
            outcome = await self._service.alerts.trigger_manual_alert(alert_id, details)
            return json_response(outcome)
        except Exception as e:
            return self._failure(f"triggering alert {alert_id}", e)

    async def resolve_alert(self, request: web.Request) -> web.Response:
        """
        POST /pulse/alerts/{alert_id}/resolve

        Optional body: {"eventId": "..."}. Returns `resolved: false`
        when there is nothing to resolve.
        """
        alert_id = request.match_info["alert_id"]
        try:
            event_id = None
            if request.can_read_body:
                body = await self._json_body(request)
                if isinstance(body, dict):
                    event_id = body.get("eventId")
            outcome = await self._service.alerts.resolve_alert(alert_id, event_id)
            if outcome is None:
                return json_response({"resolved": False})
            return json_response({"resolved": True, **outcome.to_dict()})
        except Exception as e:
            return self._failure(f"resolving alert {alert_id}", e)

    # --------------------------------------------------------
    # REAL-TIME EVENTS (SSE)
    # --------------------------------------------------------

    async def stream_events(self, request: web.Request) -> web.StreamResponse:
        """
        GET /pulse/events

        Sends a `snapshot` frame, then `alert`/`notification`
        frames as they happen and an `update` frame after each
        scheduler cycle (or every SSE interval when idle).
        """
        response = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        })
        await response.prepare(request)

        subscription = self._service.subscribe()
        interval = self._service.config.sse_update_interval_seconds
        try:
            overview = await self._service.get_pulse_overview()
            await response.write(sse_frame("snapshot", overview))

            while not subscription.closed:
                try:
                    frame = await asyncio.wait_for(subscription.queue.get(), timeout=interval)
                except asyncio.TimeoutError:
                    frame = {"type": "update", "data": await self._service.get_pulse_overview()}
                await response.write(sse_frame(frame["type"], frame["data"]))
        except ConnectionResetError:
            logger.debug("SSE client disconnected")
        finally:
            self._service.unsubscribe(subscription)

        return response


# ============================================================
# ROUTER FACTORY
# ============================================================

def _add_routes(app: web.Application, api: PulseAPI) -> None:
    app.router.add_get("/", api.get_overview)
    app.router.add_get("/health", api.get_health)

    app.router.add_get("/probes", api.get_probes)
    app.router.add_get("/probes/deep", api.get_deep_probes)
    app.router.add_get("/probes/list", api.list_probes)
    app.router.add_get("/probes/{name}", api.get_probe)

    app.router.add_get("/llm", api.get_llm)
    app.router.add_get("/llm/openrouter", api.get_openrouter)
    app.router.add_get("/llm/ollama", api.get_ollama)

    app.router.add_get("/modules", api.get_modules)
    app.router.add_get("/metrics", api.get_metrics)
    app.router.add_get("/metrics/history", api.get_metrics_history)

    app.router.add_get("/alerts", api.list_alerts)
    app.router.add_post("/alerts", api.create_alert)
    app.router.add_get("/alerts/{alert_id}", api.get_alert)
    app.router.add_put("/alerts/{alert_id}", api.update_alert)
    app.router.add_delete("/alerts/{alert_id}", api.delete_alert)
    app.router.add_post("/alerts/{alert_id}/trigger", api.trigger_alert)
    app.router.add_post("/alerts/{alert_id}/resolve", api.resolve_alert)

    app.router.add_get("/events", api.stream_events)


def create_pulse_app(service: PulseService) -> web.Application:
    """
    Create the Pulse API application.

    Returns an aiohttp Application with all routes configured.
    """
    app = web.Application()
    _add_routes(app, PulseAPI(service))
    return app


def setup_pulse_routes(
    app: web.Application,
    service: PulseService,
    prefix: str = "/pulse",
) -> None:
    """
    Mount the Pulse API on an existing application.

    `GET {prefix}` (no trailing slash) also serves the overview.
    """
    api = PulseAPI(service)
    app.router.add_get(prefix, api.get_overview)

    pulse_app = web.Application()
    _add_routes(pulse_app, api)
    app.add_subapp(prefix, pulse_app)
