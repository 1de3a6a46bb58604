"""HTTP API and WSGI application for the permit tracker."""

from __future__ import annotations

import csv
import io
import json
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any, Callable
from urllib.parse import parse_qs, quote, unquote
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from .dashboard import render_dashboard
from .licensing import (
    LICENSE_FILENAME,
    Limits,
    default_limits,
    is_valid_license_key,
    persist_license,
    tier_info,
)
from .store import Database, Permit

logger = logging.getLogger(__name__)

RESOURCE = "permits"
CONFIG_FILENAME = "config.json"
ACTIVATE_PATH = "/api/license/activate"
MAX_ACTIVATE_BODY = 10 * 1024

_LOCKED_BODY = (
    json.dumps(
        {
            "error": "License required. Start a 14-day free trial — or paste an "
            'existing license key in the dashboard under "Activate License".',
            "tier": "locked",
        },
        ensure_ascii=False,
    )
).encode("utf-8")

_CSV_HEADER = (
    "id",
    "permit_type",
    "holder_name",
    "holder_email",
    "permit_number",
    "issued_date",
    "expiry_date",
    "issuing_authority",
    "status",
    "cost",
    "notes",
    "created_at",
)
_MERGED_FIELDS = (
    "permit_type",
    "holder_name",
    "holder_email",
    "permit_number",
    "issued_date",
    "expiry_date",
    "issuing_authority",
    "status",
    "notes",
)
_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class Response:
    """A complete HTTP response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


def _encode_json(value: Any) -> bytes:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return (text + "\n").encode("utf-8")


def _json_response(status: int, value: Any) -> Response:
    return Response(status, {"Content-Type": "application/json"}, _encode_json(value))


def _error(status: int, message: str) -> Response:
    return _json_response(status, {"error": message})


def _text_response(status: int, text: str) -> Response:
    return Response(
        status,
        {"Content-Type": "text/plain; charset=utf-8", "X-Content-Type-Options": "nosniff"},
        text.encode("utf-8"),
    )


def _format_number(value: float) -> str:
    """Format a float the shortest way, with no trailing ``.0`` on whole numbers."""
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _decode_object(body: bytes) -> dict[str, Any]:
    """Decode a JSON object leniently: anything else yields an empty mapping."""
    try:
        data = json.loads(body.decode("utf-8", "replace"))
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class _Request:
    method: str
    path: str
    query: dict[str, list[str]]
    body: bytes
    params: dict[str, str]

    def arg(self, name: str) -> str:
        values = self.query.get(name)
        return values[0] if values else ""


@dataclass(frozen=True)
class _Route:
    method: str
    segments: tuple[str, ...]
    subtree: bool

    @classmethod
    def parse(cls, method: str, pattern: str) -> "_Route":
        core = pattern.strip("/")
        segments = tuple(core.split("/")) if core else ()
        return cls(method, segments, pattern.endswith("/"))

    def accepts(self, method: str) -> bool:
        return method == self.method or (self.method == "GET" and method == "HEAD")

    def match(self, parts: list[str]) -> dict[str, str] | None:
        if self.subtree:
            if len(parts) <= len(self.segments):
                return None
        elif len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for pattern, part in zip(self.segments, parts):
            if pattern.startswith("{") and pattern.endswith("}"):
                if not part:
                    return None
                params[pattern[1:-1]] = part
            elif pattern != part:
                return None
        return params


class Server:
    """The permit API, dashboard and license gate."""

    def __init__(
        self, db: Database, limits: Limits, data_dir: str | os.PathLike
    ) -> None:
        self._db = db
        self._limits = limits
        self._limits_lock = threading.Lock()
        self._data_dir = os.fspath(data_dir)
        self._config = self._load_personal_config()
        # Ordered from the most specific pattern to the least.
        table: list[tuple[str, str, Callable[[_Request], Response]]] = [
            ("GET", "/api/permits/export.csv", self._export_permits),
            ("GET", "/api/permits", self._list_permits),
            ("POST", "/api/permits", self._create_permit),
            ("GET", "/api/permits/{id}", self._get_permit),
            ("PUT", "/api/permits/{id}", self._update_permit),
            ("DELETE", "/api/permits/{id}", self._delete_permit),
            ("GET", "/api/stats", self._stats),
            ("GET", "/api/health", self._health),
            ("GET", "/health", self._health),
            ("GET", "/api/tier", self._tier),
            ("POST", ACTIVATE_PATH, self._activate_license),
            ("GET", "/api/config", self._config_handler),
            ("GET", "/api/extras/{resource}", self._list_extras),
            ("GET", "/api/extras/{resource}/{id}", self._get_extras),
            ("PUT", "/api/extras/{resource}/{id}", self._put_extras),
            ("GET", "/ui", self._dashboard),
            ("GET", "/ui/", self._dashboard),
            ("GET", "/", self._root),
        ]
        self._routes = [
            (_Route.parse(method, pattern), handler)
            for method, pattern, handler in table
        ]

    @property
    def limits(self) -> Limits:
        with self._limits_lock:
            return self._limits

    def _load_personal_config(self) -> dict[str, Any] | None:
        path = os.path.join(self._data_dir, CONFIG_FILENAME)
        try:
            with open(path, "rb") as handle:
                raw = handle.read()
        except OSError:
            return None
        try:
            config = json.loads(raw.decode("utf-8", "replace"))
        except ValueError as exc:
            logger.warning("warning: could not parse config.json: %s", exc)
            return None
        if config is None:
            return None
        if not isinstance(config, dict):
            logger.warning("warning: could not parse config.json: not an object")
            return None
        logger.info("loaded personalization from %s", path)
        return config

    def should_block_write(self, method: str, path: str) -> bool:
        """Whether a request must be refused because no usable license is active."""
        if self.limits.tier not in ("none", "expired"):
            return False
        if method in ("GET", "HEAD", "OPTIONS"):
            return False
        return path != ACTIVATE_PATH

    def handle(self, method: str, target: str, body: bytes | str | None = b"") -> Response:
        """Answer one request for ``target`` (a path with an optional query)."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        body = body or b""
        raw_path, _, query_string = target.partition("?")
        if not raw_path.startswith("/"):
            raw_path = "/" + raw_path
        parts = [unquote(part) for part in raw_path[1:].split("/")]
        path = "/".join([""] + parts) or "/"

        if self.should_block_write(method, path):
            return Response(402, {"Content-Type": "application/json"}, _LOCKED_BODY)

        response = None
        path_matched = False
        for route, handler in self._routes:
            params = route.match(parts)
            if params is None:
                continue
            path_matched = True
            if route.accepts(method):
                request = _Request(
                    method,
                    path,
                    parse_qs(query_string, keep_blank_values=True),
                    body,
                    params,
                )
                response = handler(request)
                break
        if response is None:
            if path_matched:
                response = _text_response(405, "Method Not Allowed\n")
            else:
                response = _text_response(404, "404 page not found\n")
        if method == "HEAD":
            response = replace(response, body=b"")
        return response

    def __call__(self, environ: dict[str, Any], start_response: Callable) -> list[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        path_info = environ.get("PATH_INFO", "") or "/"
        path = quote(
            path_info.encode("latin-1", "replace").decode("utf-8", "replace"), safe="/"
        )
        query = environ.get("QUERY_STRING", "")
        target = f"{path}?{query}" if query else path
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        response = self.handle(method, target, body)
        try:
            phrase = HTTPStatus(response.status).phrase
        except ValueError:
            phrase = ""
        headers = list(response.headers.items())
        headers.append(("Content-Length", str(len(response.body))))
        start_response(f"{response.status} {phrase}".rstrip(), headers)
        return [response.body]

    # Handlers

    def _root(self, request: _Request) -> Response:
        if request.path != "/":
            return _text_response(404, "404 page not found\n")
        return Response(
            302,
            {"Location": "/ui", "Content-Type": "text/html; charset=utf-8"},
            b'<a href="/ui">Found</a>.\n\n',
        )

    def _dashboard(self, request: _Request) -> Response:
        return Response(200, {"Content-Type": "text/html"}, render_dashboard().encode("utf-8"))

    def _list_permits(self, request: _Request) -> Response:
        query = request.arg("q")
        filters = {}
        status = request.arg("status")
        if status:
            filters["status"] = status
        if query or filters:
            permits = self._db.search_permits(query, filters)
        else:
            permits = self._db.list_permits()
        return _json_response(200, {RESOURCE: [p.to_dict() for p in permits]})

    def _create_permit(self, request: _Request) -> Response:
        limits = self.limits
        if limits.tier == "none":
            return _error(402, "No license key. Start a 14-day trial to continue.")
        if limits.trial_expired:
            return _error(402, "Trial expired. Subscribe to continue.")
        permit = Permit.from_dict(_decode_object(request.body))
        if not permit.permit_type:
            return _error(400, "permit_type required")
        if not permit.holder_name:
            return _error(400, "holder_name required")
        stored = self._db.create_permit(permit)
        created = self._db.get_permit(stored.id)
        return _json_response(201, created.to_dict() if created else None)

    def _get_permit(self, request: _Request) -> Response:
        permit = self._db.get_permit(request.params["id"])
        if permit is None:
            return _error(404, "not found")
        return _json_response(200, permit.to_dict())

    def _update_permit(self, request: _Request) -> Response:
        existing = self._db.get_permit(request.params["id"])
        if existing is None:
            return _error(404, "not found")
        patch = Permit.from_dict(_decode_object(request.body))
        kept = {
            name: getattr(existing, name)
            for name in _MERGED_FIELDS
            if not getattr(patch, name)
        }
        merged = replace(patch, id=existing.id, created_at=existing.created_at, **kept)
        self._db.update_permit(merged)
        updated = self._db.get_permit(merged.id)
        return _json_response(200, updated.to_dict() if updated else None)

    def _delete_permit(self, request: _Request) -> Response:
        permit_id = request.params["id"]
        self._db.delete_permit(permit_id)
        self._db.delete_extras(RESOURCE, permit_id)
        return _json_response(200, {"deleted": "ok"})

    def _export_permits(self, request: _Request) -> Response:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(_CSV_HEADER)
        for p in self._db.list_permits():
            writer.writerow(
                [
                    p.id,
                    p.permit_type,
                    p.holder_name,
                    p.holder_email,
                    p.permit_number,
                    p.issued_date,
                    p.expiry_date,
                    p.issuing_authority,
                    p.status,
                    _format_number(p.cost),
                    p.notes,
                    p.created_at,
                ]
            )
        return Response(
            200,
            {
                "Content-Type": "text/csv",
                "Content-Disposition": "attachment; filename=permits.csv",
            },
            buffer.getvalue().encode("utf-8"),
        )

    def _stats(self, request: _Request) -> Response:
        return _json_response(200, {"permits_total": self._db.count_permits()})

    def _health(self, request: _Request) -> Response:
        return _json_response(
            200,
            {"status": "ok", "service": "permit", "permits": self._db.count_permits()},
        )

    def _tier(self, request: _Request) -> Response:
        return _json_response(200, tier_info(self.limits))

    def _activate_license(self, request: _Request) -> Response:
        text = request.body[:MAX_ACTIVATE_BODY].decode("utf-8", "replace")
        try:
            data = json.loads(text, parse_constant=_reject_constant)
        except ValueError as exc:
            return _error(400, f"invalid json: {exc}")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return _error(400, "invalid json: request body must be an object")
        raw_key = data.get("license_key")
        if raw_key is None:
            raw_key = ""
        if not isinstance(raw_key, str):
            return _error(400, "invalid json: license_key must be a string")
        key = raw_key.strip()
        if not key:
            return _error(400, "license_key is required")
        if not is_valid_license_key(key):
            return _error(
                400,
                "license key is not valid for this product — make sure you copied "
                "the entire key from the welcome email, including the SY- prefix",
            )
        try:
            persist_license(self._data_dir, key)
        except (OSError, ValueError) as exc:
            logger.error("permit: license persist failed: %s", exc)
            return _error(500, f"could not save the license key to disk: {exc}")
        with self._limits_lock:
            self._limits = default_limits(self._data_dir)
            new_tier = self._limits.tier
        logger.info(
            "permit: license activated via dashboard, persisted to %s/%s, tier=%s",
            self._data_dir,
            LICENSE_FILENAME,
            new_tier,
        )
        return _json_response(200, {"ok": True, "tier": new_tier})

    def _config_handler(self, request: _Request) -> Response:
        return _json_response(200, self._config if self._config is not None else {})

    def _list_extras(self, request: _Request) -> Response:
        out: dict[str, Any] = {}
        for record_id, data in self._db.all_extras(request.params["resource"]).items():
            try:
                out[record_id] = json.loads(data)
            except ValueError:
                logger.warning("skipping malformed extras for %s", record_id)
        return _json_response(200, out)

    def _get_extras(self, request: _Request) -> Response:
        data = self._db.get_extras(request.params["resource"], request.params["id"])
        return Response(200, {"Content-Type": "application/json"}, data.encode("utf-8"))

    def _put_extras(self, request: _Request) -> Response:
        text = request.body.decode("utf-8", "replace")
        try:
            probe = json.loads(text, parse_constant=_reject_constant)
        except ValueError:
            return _error(400, "invalid json")
        if probe is not None and not isinstance(probe, dict):
            return _error(400, "invalid json")
        try:
            self._db.set_extras(request.params["resource"], request.params["id"], text)
        except sqlite3.Error:
            return _error(500, "save failed")
        return _json_response(200, {"ok": "saved"})


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        pass


def serve(server: Server, port: int | str) -> None:
    """Serve the application on every interface until interrupted."""
    with make_server(
        "",
        int(port),
        server,
        server_class=_ThreadingWSGIServer,
        handler_class=_QuietHandler,
    ) as httpd:
        httpd.serve_forever()