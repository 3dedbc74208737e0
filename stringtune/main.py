from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from collections import OrderedDict
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from stringtune.pipeline.engine import PitchEngine
from stringtune.pipeline.tunings import TuningRegistrationError, TuningRegistry

logger = logging.getLogger(__name__)

app = FastAPI(title="stringtune")


# Helper parsers
def parse_bool_env(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


# Allow CORS for a browser front end
allowed_origins_env = os.getenv("STRINGTUNE_ALLOWED_ORIGINS")
allowed_origins = (
    [origin.strip() for origin in allowed_origins_env.split(",") if origin.strip()]
    if allowed_origins_env
    else ["http://localhost:5173"]
)
allow_credentials = parse_bool_env(os.getenv("STRINGTUNE_ALLOW_CREDENTIALS"), False)

# Browsers block wildcard origins when allow_credentials=True
if "*" in allowed_origins and allow_credentials:
    allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One registry per process, shared by every session
registry = TuningRegistry.with_defaults()


# Sessions are dropped after this long without a detect call, and the least
# recently used one is evicted once the cap is reached
MAX_SESSIONS = int(os.getenv("STRINGTUNE_MAX_SESSIONS", "64"))
SESSION_IDLE_S = float(os.getenv("STRINGTUNE_SESSION_IDLE_S", "600"))


class _Session:
    def __init__(self, engine: PitchEngine, tuning: str):
        self.engine = engine
        self.tuning = tuning
        self.lock = threading.Lock()
        self.last_used = time.monotonic()


_sessions: "OrderedDict[str, _Session]" = OrderedDict()
_sessions_lock = threading.Lock()


def _prune_sessions(now: float) -> None:
    """Drop idle sessions, then evict LRU ones until there is room for one more. Caller holds the lock."""
    for session_id in [sid for sid, s in _sessions.items() if now - s.last_used > SESSION_IDLE_S]:
        del _sessions[session_id]
        logger.info("Expired idle session %s", session_id)
    while _sessions and len(_sessions) >= MAX_SESSIONS:
        session_id, _ = _sessions.popitem(last=False)
        logger.warning("Session cap %d reached; evicted %s", MAX_SESSIONS, session_id)


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class TuningIn(BaseModel):
    id: str
    label: Optional[str] = None
    note_names: List[str]
    frequencies: Optional[List[float]] = None


class SessionIn(BaseModel):
    preset: Optional[str] = None
    sample_rate: int = 48000
    block_size: Optional[int] = None
    tuning: str = "standard-e"
    expected_frequency: Optional[float] = None
    agc: bool = False
    octave_correction: bool = False
    string_filters: bool = False


class DetectIn(BaseModel):
    samples: List[float] = Field(default_factory=list)
    tuning: Optional[str] = None


def _get_session(session_id: str) -> _Session:
    with _sessions_lock:
        session = _sessions.get(session_id)
        if session is not None:
            session.last_used = time.monotonic()
            _sessions.move_to_end(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
    return session


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------
@app.get("/health")
def health_check():
    with _sessions_lock:
        n_sessions = len(_sessions)
    return {"status": "ok", "tunings": len(registry), "sessions": n_sessions}


@app.get("/api/tunings")
def list_tunings():
    return [scheme.to_dict() for scheme in registry.list_tunings()]


@app.post("/api/tunings")
def register_tuning(body: TuningIn):
    """
    Register or overwrite a tuning scheme.

    With ``frequencies`` the names and Hz values are taken as given; without,
    equal-tempered frequencies are derived from the note names.
    """
    try:
        if body.frequencies is None:
            registry.register_from_note_names(body.id, body.label or body.id, body.note_names)
            table = registry.list_tunings()
        else:
            table = registry.register_tuning(body.id, body.label or body.id, body.note_names, body.frequencies)
    except TuningRegistrationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [scheme.to_dict() for scheme in table]


@app.post("/api/sessions")
def create_session(body: SessionIn):
    try:
        engine = PitchEngine.from_preset(
            body.preset, registry, sample_rate=body.sample_rate, block_size=body.block_size
        )
        if body.expected_frequency:
            engine.set_expected_frequency(body.expected_frequency)
        engine.enable_agc(body.agc)
        engine.enable_octave_correction(body.octave_correction)
        if body.string_filters:
            engine.add_tuning_string_filters(body.tuning)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Unknown tuning: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session_id = uuid.uuid4().hex
    with _sessions_lock:
        _prune_sessions(time.monotonic())
        _sessions[session_id] = _Session(engine, body.tuning)
    logger.info("Created session %s (preset=%s)", session_id, engine.config.preset)
    return {"session_id": session_id, "preset": engine.config.preset, "tuning": body.tuning}


@app.post("/api/sessions/{session_id}/detect")
def detect(session_id: str, body: DetectIn):
    session = _get_session(session_id)
    tuning = body.tuning or session.tuning
    with session.lock:
        result = session.engine.detect(body.samples, tuning)
    return {"result": result.to_dict() if result is not None else None}


@app.delete("/api/sessions/{session_id}")
def delete_session(session_id: str):
    with _sessions_lock:
        session = _sessions.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
    return {"deleted": session_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
