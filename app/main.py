"""DeskRelay web surface: profile listing plus the console WebSocket."""

from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse

from app.session_transport import SessionTransport
from src.deskrelay.runtime.service import get_runtime_service

logger = logging.getLogger(__name__)

app = FastAPI(title="DeskRelay Bulk Ticket Console")


@app.on_event("startup")
def _init_runtime() -> None:
    get_runtime_service().start(source="app")


@app.on_event("shutdown")
async def _stop_runtime() -> None:
    await get_runtime_service().stop(source="app")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.get("/api/profiles")
def list_profiles():
    try:
        return get_runtime_service().list_profiles()
    except (FileNotFoundError, ValueError) as exc:
        logger.error("could not load profiles: %s", exc)
        return JSONResponse(status_code=500, content={"message": "Could not load profiles."})


@app.get("/api/jobs")
def list_jobs() -> dict:
    return get_runtime_service().list_jobs()


def _connection_session_id(label: str | None) -> str | None:
    """Scope a client-supplied session label to this one connection."""
    clean = (label or "").strip()
    if not clean:
        return None
    return f"{clean}-{uuid4().hex[:6]}"


@app.websocket("/ws")
async def console_socket(ws: WebSocket) -> None:
    await ws.accept()
    transport = SessionTransport(
        send=ws.send_text,
        runtime=get_runtime_service(),
        session_id=_connection_session_id(ws.query_params.get("session")),
    )
    logger.info("session=%s connected", transport.session_id)
    await transport.emit("sessionReady", {"sessionId": transport.session_id})
    try:
        while True:
            text = await ws.receive_text()
            await transport.handle_text(text)
    except WebSocketDisconnect:
        logger.info("session=%s disconnected", transport.session_id)
    finally:
        await transport.close()


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
    html = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>DeskRelay Console</title>
  <style>
    body { font-family: system-ui, sans-serif; margin: 2rem; max-width: 960px; }
    textarea, input, select { width: 100%; margin-bottom: .5rem; }
    #log { background: #111; color: #ddd; padding: 1rem; height: 320px; overflow-y: auto; font-size: 12px; }
    .row { display: flex; gap: .5rem; }
  </style>
</head>
<body>
  <h1>DeskRelay Console</h1>
  <select id="profile"></select>
  <textarea id="emails" rows="6" placeholder="one email per line"></textarea>
  <input id="subject" placeholder="Subject" />
  <textarea id="description" rows="3" placeholder="Description"></textarea>
  <div class="row">
    <label>Delay (s) <input id="delay" type="number" min="0" value="1" /></label>
    <label><input id="reply" type="checkbox" /> Send direct reply</label>
    <label><input id="verify" type="checkbox" /> Verify email</label>
  </div>
  <div class="row">
    <button data-cmd="checkApiStatus">Check API</button>
    <button data-cmd="startBulkCreate">Start</button>
    <button data-cmd="pauseJob">Pause</button>
    <button data-cmd="resumeJob">Resume</button>
    <button data-cmd="endJob">End</button>
    <button data-cmd="getEmailFailures">Email failures</button>
  </div>
  <pre id="log"></pre>
  <script>
    const log = (line) => {
      const el = document.getElementById("log");
      el.textContent += line + "\\n";
      el.scrollTop = el.scrollHeight;
    };
    fetch("/api/profiles").then((r) => r.json()).then((profiles) => {
      const select = document.getElementById("profile");
      for (const p of profiles) {
        const opt = document.createElement("option");
        opt.value = p.profileName;
        opt.textContent = p.profileName;
        select.appendChild(opt);
      }
    });
    const proto = location.protocol === "https:" ? "wss" : "ws";
    const ws = new WebSocket(`${proto}://${location.host}/ws`);
    ws.onmessage = (msg) => {
      const frame = JSON.parse(msg.data);
      log(`${frame.event} ${JSON.stringify(frame.data)}`);
    };
    const payload = () => ({
      profileName: document.getElementById("profile").value,
      emails: document.getElementById("emails").value.split("\\n"),
      subject: document.getElementById("subject").value,
      description: document.getElementById("description").value,
      delay: Number(document.getElementById("delay").value || 0),
      sendDirectReply: document.getElementById("reply").checked,
      verifyEmail: document.getElementById("verify").checked,
    });
    for (const btn of document.querySelectorAll("button[data-cmd]")) {
      btn.addEventListener("click", () => ws.send(JSON.stringify({ event: btn.dataset.cmd, data: payload() })));
    }
  </script>
</body>
</html>
"""
    return HTMLResponse(content=html, headers={"Cache-Control": "no-store, max-age=0"})
