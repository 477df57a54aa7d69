#!/usr/bin/env python3
"""Meeting Copilot Pipeline — one live meeting in the terminal.

Architecture
  Capture:   Mic (sounddevice) or typed lines (--stdin)
  STT:       Deepgram live streaming, or local faster-whisper chunks
  Analysis:  every --interval seconds, the new transcript delta plus the
             previous state go to the model; results merge into one state

On exit (Ctrl+C or --duration) the meeting is saved to data/meetings.db.

Usage
  python pipeline_main.py                       # mic + Deepgram + Anthropic
  python pipeline_main.py --stt whisper         # local STT
  python pipeline_main.py --stdin --llm lmstudio
  python pipeline_main.py --duration 120 --ui   # 2-min demo with dashboard
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import time
from typing import Any

from copilot.core.config import CopilotConfig, CopilotError, MeetingState
from copilot.core.events import ErrorEvent, StateUpdate, TranscriptionEnded, TranscriptReceived
from copilot.main import MeetingCopilot

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
log = logging.getLogger("pipeline")
log.setLevel(logging.INFO)

for _n in ("httpx", "httpcore", "urllib3", "websockets", "faster_whisper", "uvicorn.access"):
    logging.getLogger(_n).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════
#  Terminal output
# ══════════════════════════════════════════════════════════════════════

def fmt_state(s: MeetingState) -> str:
    return (
        f"status={s.status} | lang={s.detected_language} | "
        f"decs={len(s.decisions)} acts={len(s.actions)} "
        f"qs={len(s.open_questions)} loops={len(s.loops)} "
        f"contras={len(s.contradictions)}"
    )


class TerminalPrinter:
    """Hub listener: prints final fragments and what each merge changed."""

    def __init__(self):
        self._seen_decisions = 0
        self._seen_actions = 0
        self._last_response: str | None = None
        self._last_update = 0

    def __call__(self, event: Any) -> None:
        if isinstance(event, TranscriptReceived):
            if event.fragment.is_final:
                print(f"  [{event.fragment.language}] {event.fragment.text}")
        elif isinstance(event, StateUpdate):
            self._on_state(event.state)
        elif isinstance(event, ErrorEvent):
            print(f"  !! {event.message}" + (f" ({event.detail})" if event.detail else ""))
        elif isinstance(event, TranscriptionEnded):
            print("  -- transcription ended --")

    def _on_state(self, state: dict) -> None:
        decisions = state.get("decisions", [])
        actions = state.get("actions", [])
        if len(decisions) < self._seen_decisions or len(actions) < self._seen_actions:
            self._seen_decisions = self._seen_actions = 0
            self._last_response = None
        for d in decisions[self._seen_decisions:]:
            print(f"  ✓ decision (p{d['priority']}): {d['text']}")
        for a in actions[self._seen_actions:]:
            owner = a.get("owner") or "?"
            print(f"  → action (p{a['priority']}) {owner}: {a['text']}")
        self._seen_decisions = len(decisions)
        self._seen_actions = len(actions)

        if state.get("last_update_time", 0) != self._last_update:
            self._last_update = state.get("last_update_time", 0)
            for point in state.get("live_summary", [])[:3]:
                print(f"    · {point[:100]}")
            for c in state.get("contradictions", []):
                print(f"  ⚠️ contradiction [{c['topic']}]: {c['earlier']} ↔ {c['later']}")
            for lp in state.get("loops", []):
                print(f"  ↻ loop [{lp['topic']}] x{lp['occurrences']}: {lp['suggestion']}")

        response = state.get("last_direct_response")
        if response and response != self._last_response:
            self._last_response = response
            print(f"  💬 copilot: {response}")


# ══════════════════════════════════════════════════════════════════════
#  Runtime
# ══════════════════════════════════════════════════════════════════════

async def serve_dashboard(copilot: MeetingCopilot, cfg: CopilotConfig) -> None:
    """Run the dashboard on this event loop so it shares the copilot's hub."""
    import uvicorn

    from copilot.dashboard_server import create_dashboard_app

    app = create_dashboard_app(cfg, copilot)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=cfg.dashboard_host,
        port=cfg.dashboard_port,
        log_level="warning",
    ))
    await server.serve()


async def run(args: argparse.Namespace) -> int:
    cfg = CopilotConfig.from_env(
        stt_backend="stdin" if args.stdin else args.stt,
        llm_backend=args.llm,
        analysis_interval_s=args.interval,
        stt_language=args.language,
        dashboard_port=args.port,
    )
    cfg.validate()

    copilot = MeetingCopilot(cfg)
    copilot.hub.add_listener(TerminalPrinter())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    ui_task: asyncio.Task | None = None
    if args.ui:
        ui_task = loop.create_task(serve_dashboard(copilot, cfg))

    try:
        await copilot.start()
    except CopilotError as e:
        log.error(f"Could not start meeting: {e}")
        if ui_task is not None:
            ui_task.cancel()
        return 1

    dur = f"{args.duration:.0f}s" if args.duration > 0 else "unlimited"
    print()
    print("=" * 60)
    print("  Meeting Copilot — Live")
    print(f"  STT:       {cfg.stt_backend} ({cfg.stt_language})")
    print(f"  LLM:       {cfg.llm_backend}")
    print(f"  Interval:  every {cfg.analysis_interval_s:.0f}s  |  Duration: {dur}")
    if ui_task is not None:
        print(f"  Dashboard: http://{cfg.dashboard_host}:{cfg.dashboard_port}")
    print("=" * 60)
    print("  Listening… (Ctrl+C to stop)\n")

    t0 = time.monotonic()
    try:
        await asyncio.wait_for(stop.wait(), timeout=args.duration if args.duration > 0 else None)
    except asyncio.TimeoutError:
        log.info("Duration reached")

    # ── Shutdown ─────────────────────────────────────────────────────
    elapsed = time.monotonic() - t0
    copilot.scheduler.disarm()
    await copilot.scheduler.drain()
    state = copilot.state

    print()
    print("=" * 60)
    print("  Session Complete")
    print(f"  Duration:    {elapsed:.0f}s")
    print(f"  {fmt_state(state)}")
    for d in state.decisions:
        print(f"    ✓ {d.text}")
    for a in state.actions:
        print(f"    → {a.owner or '?'}: {a.text}" + (f" (by {a.deadline})" if a.deadline else ""))

    if copilot.status != "idle" and (copilot.transcript or state.decisions or state.actions):
        saved = await copilot.save_meeting(args.title)
        print(f"  Saved:       {saved.id}  \"{saved.title}\"")
    else:
        await copilot.reset()
        print("  Nothing to save")
    print("=" * 60)

    if ui_task is not None:
        ui_task.cancel()
        await asyncio.gather(ui_task, return_exceptions=True)
    return 0


# ══════════════════════════════════════════════════════════════════════
#  CLI
# ══════════════════════════════════════════════════════════════════════


def main():
    p = argparse.ArgumentParser(
        description="Meeting Copilot Pipeline — live meeting analysis in the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python pipeline_main.py                      # mic + Deepgram
  python pipeline_main.py --stt whisper        # local faster-whisper
  python pipeline_main.py --stdin              # type input (testing)
  python pipeline_main.py --llm lmstudio       # local model via LM Studio
  python pipeline_main.py --ui --stdin         # dashboard + manual input
""",
    )
    p.add_argument("--stdin", action="store_true", help="Stdin text instead of mic")
    p.add_argument("--stt", choices=["deepgram", "whisper"], default=None, help="Speech-to-text backend")
    p.add_argument("--llm", choices=["anthropic", "lmstudio"], default=None, help="Analysis model backend")
    p.add_argument("--language", default=None, help="STT language (default: fr)")
    p.add_argument(
        "--interval", type=float, default=None, help="Analysis interval sec (default: 8)"
    )
    p.add_argument(
        "--duration", type=float, default=0, help="Auto-stop after N sec (0=unlimited)"
    )
    p.add_argument("--title", default=None, help="Title for the saved meeting")
    p.add_argument("--ui", action="store_true", help="Launch live dashboard UI")
    p.add_argument("--port", type=int, default=None, help="Dashboard port (default: 8765)")

    args = p.parse_args()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
