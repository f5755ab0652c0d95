from __future__ import annotations

import logging
import sys
import threading
import traceback

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

LOGGER = logging.getLogger("load_simulator.diagnostics")

DIAGNOSTICS_HOST = "localhost"
DIAGNOSTICS_PORT_DEFAULT = 6060


def format_thread_dump() -> str:
    names = {thread.ident: thread.name for thread in threading.enumerate()}
    sections = []
    for ident, frame in sys._current_frames().items():
        header = f"thread {names.get(ident, '<unknown>')} ({ident})"
        stack = "".join(traceback.format_stack(frame))
        sections.append(f"{header}\n{stack}")
    return "\n".join(sections)


def create_diagnostics_app() -> FastAPI:
    app = FastAPI(title="load-simulator diagnostics", docs_url=None, redoc_url=None)

    @app.get("/debug/threads", response_class=PlainTextResponse)
    def threads() -> str:
        return format_thread_dump()

    return app


def start_diagnostics_server(
    host: str = DIAGNOSTICS_HOST,
    port: int = DIAGNOSTICS_PORT_DEFAULT,
) -> uvicorn.Server:
    """Serve thread stack dumps at ``/debug/threads`` on a daemon thread."""
    config = uvicorn.Config(
        create_diagnostics_app(),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    # Signals belong to the load run, not to this server.
    server.install_signal_handlers = lambda: None  # type: ignore[assignment]

    thread = threading.Thread(target=server.run, name="diagnostics-server", daemon=True)
    thread.start()
    LOGGER.info("diagnostics server listening on http://%s:%d/debug/threads", host, port)
    return server


__all__ = [
    "DIAGNOSTICS_PORT_DEFAULT",
    "create_diagnostics_app",
    "format_thread_dump",
    "start_diagnostics_server",
]
