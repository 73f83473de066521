"""HTTP + SSE server for the openwork workspace bridge.

Exposes the bridge operations as a REST API on localhost, with one
Server-Sent Events stream per session for agent output, approval
requests and workspace change notifications.

Usage:
    openwork [--host HOST] [--port PORT] [--config PATH]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from typing import Any

from aiohttp import web

from openwork.adapters.events import event_to_dict
from openwork.adapters.orchestrator import WorkspaceBridge
from openwork.engine.errors import ErrorKind, NotFoundError

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 30.0

_STATUS_BY_KIND: dict[str, int] = {
    ErrorKind.ACCESS_DENIED.value: 403,
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.NO_WORKSPACE_LINKED.value: 409,
    ErrorKind.IS_A_DIRECTORY.value: 400,
    ErrorKind.NOT_A_DIRECTORY.value: 400,
    ErrorKind.IO_ERROR.value: 500,
    ErrorKind.PROVIDER_UNCONFIGURED.value: 409,
    ErrorKind.CONFLICT.value: 409,
    ErrorKind.INVALID.value: 400,
}


def _respond(result: dict[str, Any], ok_status: int = 200) -> web.Response:
    if result.get("success", True):
        return web.json_response(result, status=ok_status)
    return web.json_response(result, status=_STATUS_BY_KIND.get(result.get("kind"), 500))


def _bad_request(message: str) -> web.Response:
    return web.json_response(
        {"success": False, "error": message, "kind": ErrorKind.INVALID.value}, status=400,
    )


class OpenworkServer:
    """HTTP routing and SSE fan-out over a WorkspaceBridge.

    Thin adapter: all state lives in the bridge and its stores.
    """

    def __init__(self, bridge: WorkspaceBridge, host: str = "127.0.0.1", port: int = 0) -> None:
        self._bridge = bridge
        self._host = host
        self._port = port
        self._started_at = time.time()
        self._sse_sessions: set[str] = set()
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()
        logger.info("OpenworkServer init host=%s port=%s pid=%s", host, port, os.getpid())

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-openwork-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s", request.method, request.path, req_id)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path, req_id, elapsed_ms,
            )
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        # Models and providers
        r.add_get("/models", self._handle_list_models)
        r.add_get("/models/default", self._handle_get_default_model)
        r.add_put("/models/default", self._handle_set_default_model)
        r.add_get("/providers", self._handle_list_providers)
        r.add_get("/providers/{provider}/api-key", self._handle_get_api_key)
        r.add_put("/providers/{provider}/api-key", self._handle_set_api_key)
        r.add_delete("/providers/{provider}/api-key", self._handle_delete_api_key)
        r.add_get("/providers/{provider}/api-key/status", self._handle_has_api_key)
        # Legacy global workspace slot
        r.add_get("/workspace", self._handle_get_global_workspace)
        r.add_put("/workspace", self._handle_set_global_workspace)
        # Sessions
        r.add_get("/sessions", self._handle_list_sessions)
        r.add_post("/sessions", self._handle_create_session)
        r.add_get("/sessions/{id}", self._handle_get_session)
        r.add_delete("/sessions/{id}", self._handle_delete_session)
        # Session workspace
        r.add_get("/sessions/{id}/workspace", self._handle_get_workspace)
        r.add_put("/sessions/{id}/workspace", self._handle_set_workspace)
        r.add_post("/sessions/{id}/workspace/select", self._handle_select_workspace)
        r.add_get("/sessions/{id}/workspace/files", self._handle_load_workspace)
        r.add_get("/sessions/{id}/workspace/file", self._handle_read_file)
        # Runs
        r.add_post("/sessions/{id}/run", self._handle_run)
        r.add_post("/sessions/{id}/interrupt", self._handle_interrupt)
        r.add_post("/sessions/{id}/decisions", self._handle_decision)
        r.add_get("/sessions/{id}/events", self._handle_sse)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            raise RuntimeError("openwork server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("openwork server listening on %s:%d", self._host, actual_port)

        await self._bridge.start()

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await self._bridge.shutdown()
            await runner.cleanup()

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── Helpers ──

    @staticmethod
    async def _read_body(request: web.Request) -> tuple[dict[str, Any] | None, web.Response | None]:
        if not request.can_read_body:
            return {}, None
        try:
            body = await request.json()
        except ValueError:
            return None, _bad_request("Request body must be JSON")
        if not isinstance(body, dict):
            return None, _bad_request("Request body must be a JSON object")
        return body, None

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "watched_sessions": len(self._bridge.watcher.active_sessions),
        })

    async def _handle_list_models(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.list_models())

    async def _handle_get_default_model(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.get_default_model())

    async def _handle_set_default_model(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        model_id = body.get("model_id")
        if not model_id:
            return _bad_request("model_id is required")
        return _respond(self._bridge.set_default_model(model_id))

    async def _handle_list_providers(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.list_providers())

    async def _handle_get_api_key(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.get_api_key(request.match_info["provider"]))

    async def _handle_set_api_key(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        api_key = body.get("api_key")
        if not isinstance(api_key, str):
            return _bad_request("api_key is required")
        return _respond(self._bridge.set_api_key(request.match_info["provider"], api_key))

    async def _handle_delete_api_key(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.delete_api_key(request.match_info["provider"]))

    async def _handle_has_api_key(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.has_api_key(request.match_info["provider"]))

    async def _handle_get_global_workspace(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.get_workspace(None))

    async def _handle_set_global_workspace(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        return _respond(await self._bridge.set_workspace(None, body.get("path")))

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.list_sessions())

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        result = await self._bridge.create_session(
            title=body.get("title"),
            workspace_path=body.get("workspace_path"),
            session_id=body.get("session_id"),
        )
        return _respond(result, ok_status=201)

    async def _handle_get_session(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.get_session(request.match_info["id"]))

    async def _handle_delete_session(self, request: web.Request) -> web.Response:
        return _respond(await self._bridge.delete_session(request.match_info["id"]))

    async def _handle_get_workspace(self, request: web.Request) -> web.Response:
        return _respond(self._bridge.get_workspace(request.match_info["id"]))

    async def _handle_set_workspace(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        return _respond(await self._bridge.set_workspace(request.match_info["id"], body.get("path")))

    async def _handle_select_workspace(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        return _respond(await self._bridge.select_workspace(request.match_info["id"], body.get("path")))

    async def _handle_load_workspace(self, request: web.Request) -> web.Response:
        return _respond(await self._bridge.load_workspace(request.match_info["id"]))

    async def _handle_read_file(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        path = request.query.get("path")
        if not path:
            return _bad_request("path query parameter is required")
        encoding = request.query.get("encoding", "text")
        if encoding == "text":
            return _respond(await self._bridge.read_file(session_id, path))
        if encoding == "base64":
            return _respond(await self._bridge.read_binary_file(session_id, path))
        return _bad_request("encoding must be text or base64")

    async def _handle_run(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        prompt = body.get("prompt", "")
        if not prompt:
            return _bad_request("No prompt provided")
        result = await self._bridge.run(request.match_info["id"], prompt, body.get("model_id"))
        return _respond(result, ok_status=202)

    async def _handle_interrupt(self, request: web.Request) -> web.Response:
        return _respond(await self._bridge.interrupt(request.match_info["id"]))

    async def _handle_decision(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        return _respond(self._bridge.resolve_decision(request.match_info["id"], body))

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        session_id = request.match_info["id"]
        try:
            bus = self._bridge.events(session_id)
        except NotFoundError as exc:
            return _respond(exc.to_result())
        if session_id in self._sse_sessions:
            return web.json_response(
                {"success": False, "error": "Session stream already has a consumer",
                 "kind": ErrorKind.CONFLICT.value},
                status=409,
            )

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)
        self._sse_sessions.add(session_id)
        logger.info("SSE client connected session=%s req=%s", session_id, request.get("req_id", "unknown"))

        try:
            await response.write(
                f"event: connected\ndata: {json.dumps({'session_id': session_id})}\n\n".encode()
            )
            while not bus.exhausted:
                event = await bus.next_event(timeout=SSE_KEEPALIVE_SECONDS)
                try:
                    if event is None:
                        if bus.exhausted:
                            break
                        await response.write(b": keepalive\n\n")
                        continue
                    data = json.dumps(event_to_dict(event), default=str)
                    await response.write(
                        f"id: {event.seq}\nevent: {event.type}\ndata: {data}\n\n".encode()
                    )
                except ConnectionResetError:
                    break
        except asyncio.CancelledError:
            pass
        finally:
            self._sse_sessions.discard(session_id)
            logger.info("SSE client disconnected session=%s", session_id)
        return response
