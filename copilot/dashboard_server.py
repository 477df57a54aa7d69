"""Local dashboard API server for the meeting copilot (on-device only).

Provides:
- REST endpoints for lifecycle commands and state snapshots
- Saved meeting browsing (list, search, get, retitle, delete)
- SSE stream of outbound events for live UI updates
- localhost-only default behavior
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Callable

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from copilot.core.config import (
    CopilotConfig,
    CopilotError,
    InvalidTransition,
    PermissionDenied,
    TranscriptionUnavailable,
)
from copilot.core.events import EventHub, StateUpdate, event_payload
from copilot.main import MeetingCopilot

logger = logging.getLogger(__name__)


class SavePayload(BaseModel):
    title: str | None = None


class TitlePayload(BaseModel):
    title: str


_ERROR_STATUS = {
    PermissionDenied: 403,
    TranscriptionUnavailable: 502,
    InvalidTransition: 409,
}


def _http_error(exc: CopilotError) -> HTTPException:
    status = _ERROR_STATUS.get(type(exc), 500)
    return HTTPException(status_code=status, detail={"message": exc.message, "detail": exc.detail})


DASHBOARD_HTML = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>Meeting Copilot</title>
<style>
  body { font-family: system-ui, sans-serif; margin: 2rem; max-width: 60rem; }
  button { margin-right: .4rem; }
  #status { font-weight: bold; }
  #transcript { color: #555; font-style: italic; min-height: 1.2em; }
  #error { color: #b00020; min-height: 1.2em; }
  section { margin-top: 1rem; }
</style>
</head>
<body>
<h2>Meeting Copilot <small id="status">idle</small> <small id="language"></small></h2>
<div>
  <button data-cmd="start">Start</button>
  <button data-cmd="pause">Pause</button>
  <button data-cmd="resume">Resume</button>
  <button data-cmd="save">Save</button>
  <button data-cmd="reset">Reset</button>
</div>
<p id="transcript"></p>
<p id="error"></p>
<section><h3>Summary</h3><ul id="live_summary"></ul></section>
<section><h3>Decisions</h3><ul id="decisions"></ul></section>
<section><h3>Actions</h3><ul id="actions"></ul></section>
<section><h3>Open questions</h3><ul id="open_questions"></ul></section>
<section><h3>Suggestion</h3><p id="last_direct_response"></p></section>
<script>
const $ = (id) => document.getElementById(id);
const fill = (id, items, label) => {
  $(id).replaceChildren(...items.map((item) => {
    const li = document.createElement("li");
    li.textContent = label(item);
    return li;
  }));
};
const render = (s) => {
  $("status").textContent = s.status;
  $("language").textContent = s.detected_language;
  fill("live_summary", s.live_summary, (x) => x);
  fill("decisions", s.decisions, (d) => d.text);
  fill("actions", s.actions, (a) => a.owner ? `${a.text} (${a.owner})` : a.text);
  fill("open_questions", s.open_questions, (q) => q.text);
  $("last_direct_response").textContent = s.last_direct_response || "";
};
document.querySelectorAll("button[data-cmd]").forEach((b) => {
  b.onclick = async () => {
    const resp = await fetch(`/api/meeting/${b.dataset.cmd}`, { method: "POST" });
    $("error").textContent = resp.ok ? "" : (await resp.json()).detail.message;
  };
});
const events = new EventSource("/api/stream");
events.addEventListener("meeting:stateUpdate", (e) => render(JSON.parse(e.data)));
events.addEventListener("transcription:update", (e) => {
  $("transcript").textContent = JSON.parse(e.data).fragment.text;
});
events.addEventListener("error", (e) => {
  if (e.data) $("error").textContent = JSON.parse(e.data).message;
});
</script>
</body>
</html>
"""


def _assert_local_policy(cfg: CopilotConfig):
    cfg.validate()
    if not CopilotConfig.is_loopback_host(cfg.dashboard_host):
        raise ValueError("Dashboard host must be localhost/127.0.0.1 for local desktop mode")


async def _event_stream(hub: EventHub, snapshot: Callable[[], dict[str, Any]], heartbeat_s: float):
    """SSE items: the current snapshot, then hub events with heartbeats in between.

    Ends once the hub has dropped this subscriber and its backlog is flushed,
    so the browser reconnects and starts again from a fresh snapshot.
    """
    q = hub.subscribe()
    try:
        yield {
            "event": StateUpdate.type,
            "data": json.dumps(snapshot()),
        }

        while True:
            if q.empty() and not hub.is_subscribed(q):
                logger.warning("SSE subscriber fell behind; closing stream")
                return
            try:
                event = await asyncio.wait_for(q.get(), timeout=heartbeat_s)
                yield {
                    "event": event.type,
                    "data": json.dumps(event_payload(event), default=str),
                }
            except asyncio.TimeoutError:
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({"ok": True}),
                }
    finally:
        hub.unsubscribe(q)


def create_dashboard_app(config: CopilotConfig | None = None, copilot: MeetingCopilot | None = None) -> FastAPI:
    cfg = config or CopilotConfig.from_env()
    _assert_local_policy(cfg)

    app = FastAPI(title="Meeting Copilot Local Dashboard", version="0.1.0")
    app.state.cfg = cfg
    app.state.copilot = copilot or MeetingCopilot(cfg)

    @app.get("/", response_class=HTMLResponse)
    async def dashboard_home():
        return DASHBOARD_HTML

    @app.get("/api/health")
    async def health():
        mc: MeetingCopilot = app.state.copilot
        return {"ok": True, "health": mc.health}

    @app.get("/api/state")
    async def state():
        mc: MeetingCopilot = app.state.copilot
        return mc.snapshot()

    @app.post("/api/meeting/start")
    async def start_meeting():
        mc: MeetingCopilot = app.state.copilot
        try:
            await mc.start()
        except CopilotError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "state": mc.snapshot()}

    @app.post("/api/meeting/pause")
    async def pause_meeting():
        mc: MeetingCopilot = app.state.copilot
        try:
            mc.pause()
        except CopilotError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "state": mc.snapshot()}

    @app.post("/api/meeting/resume")
    async def resume_meeting():
        mc: MeetingCopilot = app.state.copilot
        try:
            mc.resume()
        except CopilotError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "state": mc.snapshot()}

    @app.post("/api/meeting/reset")
    async def reset_meeting():
        mc: MeetingCopilot = app.state.copilot
        await mc.reset()
        return {"ok": True, "state": mc.snapshot()}

    @app.post("/api/meeting/save")
    async def save_meeting(payload: SavePayload | None = None):
        mc: MeetingCopilot = app.state.copilot
        try:
            saved = await mc.save_meeting(payload.title if payload else None)
        except CopilotError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "meeting": asdict(saved)}

    @app.get("/api/meetings")
    async def list_meetings():
        mc: MeetingCopilot = app.state.copilot
        items = await run_in_threadpool(mc.store.list_meetings)
        return {"meetings": [asdict(m) for m in items]}

    @app.get("/api/meetings/search")
    async def search_meetings(q: str = ""):
        mc: MeetingCopilot = app.state.copilot
        results = await run_in_threadpool(mc.store.search_meetings, q)
        return {"results": [asdict(r) for r in results]}

    @app.get("/api/meetings/{meeting_id}")
    async def get_meeting(meeting_id: str):
        mc: MeetingCopilot = app.state.copilot
        meeting = await run_in_threadpool(mc.store.get_meeting, meeting_id)
        if meeting is None:
            raise HTTPException(status_code=404, detail="Meeting not found")
        return asdict(meeting)

    @app.patch("/api/meetings/{meeting_id}")
    async def update_meeting_title(meeting_id: str, payload: TitlePayload):
        mc: MeetingCopilot = app.state.copilot
        title = payload.title.strip()
        if not title:
            raise HTTPException(status_code=422, detail="Title must not be empty")
        if not await run_in_threadpool(mc.store.update_meeting_title, meeting_id, title):
            raise HTTPException(status_code=404, detail="Meeting not found")
        return {"ok": True, "id": meeting_id, "title": title}

    @app.delete("/api/meetings/{meeting_id}")
    async def delete_meeting(meeting_id: str):
        mc: MeetingCopilot = app.state.copilot
        if not await run_in_threadpool(mc.store.delete_meeting, meeting_id):
            raise HTTPException(status_code=404, detail="Meeting not found")
        return {"ok": True, "id": meeting_id}

    @app.get("/api/stream")
    async def stream():
        cfg_local: CopilotConfig = app.state.cfg
        mc: MeetingCopilot = app.state.copilot

        return EventSourceResponse(_event_stream(mc.hub, mc.snapshot, cfg_local.sse_heartbeat_s))

    return app


def run_dashboard_server(config: CopilotConfig | None = None, copilot: MeetingCopilot | None = None):
    cfg = config or CopilotConfig.from_env()
    _assert_local_policy(cfg)
    app = create_dashboard_app(cfg, copilot)
    logger.info(
        "Starting meeting copilot dashboard on http://%s:%d (stt=%s, llm=%s)",
        cfg.dashboard_host,
        cfg.dashboard_port,
        cfg.stt_backend,
        cfg.llm_backend,
    )
    uvicorn.run(app, host=cfg.dashboard_host, port=cfg.dashboard_port)
