"""HTTP control surface (aiohttp).

Thin endpoints over ``AgentState``: status, listener toggle, roster refresh,
recent senders, pairing code and QR pages. When an API token is configured
every endpoint requires it as ``Authorization: Bearer <token>`` or
``?token=``. The HTML pages and the QR image stay reachable without one so a
browser can open them; they only reject a wrong token passed in the URL.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any, Callable, Optional
from urllib.parse import quote

from aiohttp import web

from core.config import QR_TTL_SECONDS
from core.identity import digits
from core.models import ConnectionState
from core.ports import TransportPort
from core.state import AgentState

LOGGER = logging.getLogger(__name__)

PAGE_PATHS = frozenset({"/admin", "/qr", "/qr.png"})

STATE_KEY = web.AppKey("state", AgentState)
TRANSPORT_KEY = web.AppKey("transport", object)
TOKEN_KEY = web.AppKey("api_token", str)
QR_RENDER_KEY = web.AppKey("qr_render", object)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


def _token_matches(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def request_token(request: web.Request) -> str:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return request.query.get("token", "")


@web.middleware
async def auth_middleware(request: web.Request, handler):
    expected = request.app[TOKEN_KEY]
    if not expected:
        return await handler(request)

    if request.path in PAGE_PATHS:
        url_token = request.query.get("token", "")
        if url_token and not _token_matches(url_token, expected):
            return _error(401, "unauthorized")
        return await handler(request)

    if not _token_matches(request_token(request), expected):
        return _error(401, "unauthorized")
    return await handler(request)


async def _json_body(request: web.Request) -> Optional[dict[str, Any]]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


async def get_status(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response({"ok": True, **state.status()})


async def post_listener(request: web.Request) -> web.Response:
    body = await _json_body(request)
    enabled = (body or {}).get("enabled")
    if not isinstance(enabled, bool):
        return _error(400, "body.enabled must be a boolean")
    state = request.app[STATE_KEY]
    state.set_listening(enabled)
    LOGGER.info("Listener %s via control surface", "enabled" if enabled else "disabled")
    return web.json_response({"ok": True, "listeningEnabled": enabled})


async def post_groups_refresh(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    snapshot = await state.roster.refresh(request.app[TRANSPORT_KEY])
    if snapshot is None:
        return _error(502, "group refresh failed")
    groups = [{"id": group.id, "subject": group.subject} for group in state.roster.tracked_groups()]
    return web.json_response({"ok": True, "groupsActiveCount": len(groups), "groups": groups})


async def get_recent_senders(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response({"ok": True, "items": [entry.as_dict() for entry in state.recent_senders()]})


async def post_pairing_code(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    if state.connection_state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
        return _error(503, "transport not ready")
    body = await _json_body(request)
    phone = digits(str((body or {}).get("phone") or ""))
    if not phone:
        return _error(400, "body.phone is required (E.164 without +)")
    try:
        code = await request.app[TRANSPORT_KEY].request_pairing_code(phone)
    except Exception as exc:
        LOGGER.exception("Pairing code request failed")
        return _error(500, str(exc))
    return web.json_response({"ok": True, "code": code})


async def get_qr_png(request: web.Request) -> web.Response:
    qr = request.app[STATE_KEY].current_qr()
    if not qr:
        return web.Response(status=404, text="QR not available (yet or expired)")
    try:
        png = request.app[QR_RENDER_KEY](qr)
    except Exception:
        LOGGER.exception("QR rendering failed")
        return web.Response(status=500, text="QR rendering failed")
    return web.Response(body=png, content_type="image/png")


def _token_query(request: web.Request) -> str:
    token = request_token(request)
    return f"token={quote(token, safe='')}&" if token else ""


async def get_qr_page(request: web.Request) -> web.Response:
    has_qr = request.app[STATE_KEY].current_qr() is not None
    if has_qr:
        body = f'<img src="/qr.png?{_token_query(request)}" alt="QR" width="320">'
    else:
        body = "<p>QR not available yet. Keep this page open, it refreshes every 8s.</p>"
    page = (
        "<!doctype html><html><head><meta http-equiv=\"refresh\" content=\"8\">"
        "<title>Pair WhatsApp</title></head>"
        "<body style=\"font:16px system-ui;text-align:center\">"
        "<h1>Scan the QR in WhatsApp &gt; Linked devices</h1>"
        f"{body}<p><small>TTL ~{QR_TTL_SECONDS}s</small></p></body></html>"
    )
    return web.Response(text=page, content_type="text/html")


ADMIN_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>wareact</title></head>
<body style="font:15px system-ui;max-width:760px;margin:24px auto">
<h1>wareact</h1>
<p id="status">Loading...</p>
<button id="on">Enable</button> <button id="off">Disable</button>
<button id="refresh">Refresh groups</button> <a id="qr" href="/qr">QR</a>
<h2>Recent senders</h2><ul id="senders"></ul>
<script>
(function () {
  const qs = new URLSearchParams(location.search);
  if (qs.get("token")) {
    localStorage.setItem("apiToken", qs.get("token"));
    history.replaceState(null, "", location.pathname);
  }
  const TOKEN = localStorage.getItem("apiToken") || "";
  const headers = Object.assign({"Content-Type": "application/json"},
    TOKEN ? {"Authorization": "Bearer " + TOKEN} : {});
  async function api(path, opts) {
    const r = await fetch(path, Object.assign({headers: headers}, opts || {}));
    if (!r.ok) throw new Error("HTTP " + r.status);
    return r.json();
  }
  function text(value) { const n = document.createElement("span"); n.textContent = value; return n.innerHTML; }
  async function load() {
    try {
      const s = await api("/status");
      document.getElementById("status").textContent =
        (s.listeningEnabled ? "Listening" : "Paused") + " | " + s.connection +
        " | groups: " + s.groupsActiveCount + " | reacted: " + s.reactedCacheSize;
      const r = await api("/recent-senders");
      document.getElementById("senders").innerHTML = r.items.slice(0, 10).map(function (i) {
        return "<li><b>" + text(i.jid) + "</b> [" + text(i.group) + "] " + text(i.text) + "</li>";
      }).join("");
    } catch (e) {
      document.getElementById("status").textContent = "Error: " + e.message;
    }
  }
  async function setEnabled(v) {
    await api("/listener", {method: "POST", body: JSON.stringify({enabled: v})});
    load();
  }
  document.getElementById("on").onclick = function () { setEnabled(true); };
  document.getElementById("off").onclick = function () { setEnabled(false); };
  document.getElementById("refresh").onclick = function () {
    api("/groups/refresh", {method: "POST"}).then(load);
  };
  if (TOKEN) document.getElementById("qr").href = "/qr?token=" + encodeURIComponent(TOKEN);
  load();
  setInterval(load, 5000);
})();
</script>
</body></html>
"""


async def get_admin_page(request: web.Request) -> web.Response:
    return web.Response(text=ADMIN_PAGE, content_type="text/html")


def create_app(
    state: AgentState,
    transport: TransportPort,
    api_token: str = "",
    qr_render: Optional[Callable[[str], bytes]] = None,
) -> web.Application:
    """Build the control surface application."""

    if qr_render is None:
        from adapters.qr_render import render_qr_png

        qr_render = render_qr_png

    app = web.Application(middlewares=[auth_middleware], client_max_size=64 * 1024)
    app[STATE_KEY] = state
    app[TRANSPORT_KEY] = transport
    app[TOKEN_KEY] = api_token or ""
    app[QR_RENDER_KEY] = qr_render

    app.router.add_get("/status", get_status)
    app.router.add_post("/listener", post_listener)
    app.router.add_post("/groups/refresh", post_groups_refresh)
    app.router.add_get("/recent-senders", get_recent_senders)
    app.router.add_post("/pairing-code", post_pairing_code)
    app.router.add_get("/qr.png", get_qr_png)
    app.router.add_get("/qr", get_qr_page)
    app.router.add_get("/admin", get_admin_page)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving ``app`` on the running loop and return the runner for cleanup."""

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    LOGGER.info("HTTP control surface on http://%s:%s", host, port)
    return runner
