from __future__ import annotations

# Load environment variables FIRST (before any other imports)
from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from config import load_settings
from core.kv_store import SqliteKeyValueStore
from core.runtime import PulseRuntime

# Silence verbose loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logger = logging.getLogger("web_server")

app = FastAPI(title="Pulse")
app.state.runtime = None


class VisibilityToggle(BaseModel):
    visible: bool


def _runtime() -> PulseRuntime:
    runtime: Optional[PulseRuntime] = app.state.runtime
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime not started")
    return runtime


@app.on_event("startup")
async def startup_event():
    """Build the runtime from settings and start its timers."""
    if app.state.runtime is None:
        settings = load_settings()
        app.state.runtime = PulseRuntime(settings, SqliteKeyValueStore(settings.database_path))
    await app.state.runtime.start()


@app.on_event("shutdown")
async def shutdown_event():
    if app.state.runtime is not None:
        await app.state.runtime.stop()


@app.get("/api/pulse")
async def get_pulse() -> Dict[str, Any]:
    """Countdown, campaign day, price window stats and session peak."""
    return _runtime().view()


@app.get("/api/pulse/drivers")
async def get_drivers() -> Dict[str, Any]:
    return {d.name: d.status() for d in _runtime().drivers}


@app.post("/api/visibility")
async def set_visibility(toggle: VisibilityToggle) -> Dict[str, Any]:
    """Pause polling while no one is watching; resume (and poll) when visible."""
    runtime = _runtime()
    runtime.set_visible(toggle.visible)
    logger.info(f"Surface {'visible' if toggle.visible else 'hidden'}")
    return {"visible": toggle.visible}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
