"""
FastAPI backend for interview rehearsal.

REST endpoints cover topics and stored interview results; the practice loop
itself runs over the /ws/interview WebSocket, one session per connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from rehearsal import transcription
from rehearsal.capture import ClientCaptureDevice
from rehearsal.catalog import list_topics
from rehearsal.db import init_db
from rehearsal.errors import NotFoundError, PersistenceError, RehearsalError, ValidationError
from rehearsal.interviews import InterviewStore
from rehearsal.practice import PracticeService
from rehearsal.session import InterviewSession
from rehearsal.storage import SqlStore

CORS_ORIGIN = os.getenv("CORS_ORIGIN", "*")
CAPTURE_TIMEOUT_SECONDS = float(os.getenv("CAPTURE_TIMEOUT_SECONDS", "20"))
LOG = logging.getLogger("interview")

app = FastAPI(title="Interview Rehearsal", version="0.1.0")
interview_store = InterviewStore()
progress_store = SqlStore()
service = PracticeService(progress_store, interview_store)


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()
    transcription.load_model()


app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in CORS_ORIGIN.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    LOG.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/")
async def root() -> Dict[str, Any]:
    return {"ok": True, "message": "Interview Feedback API", "docs": "/health"}


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/topics")
async def topics() -> Dict[str, Any]:
    return {"items": list_topics()}


class SubmitPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    category: Optional[str] = None
    questions: Optional[List[Any]] = None
    answers: Optional[List[Any]] = None
    expected_answers: Optional[List[Any]] = Field(default=None, alias="expectedAnswers")


@app.post("/api/interviews/submit")
async def submit_interview(payload: SubmitPayload) -> Dict[str, Any]:
    if not payload.user_id or payload.questions is None or payload.answers is None:
        raise ValidationError("userId, questions, answers required")
    result = await interview_store.submit(
        payload.user_id,
        payload.category,
        payload.questions,
        payload.answers,
        payload.expected_answers,
    )
    return {"ok": True, **result.to_dict()}


@app.get("/api/me/interviews")
async def my_interviews(user_id: Optional[str] = Query(default=None, alias="userId")) -> Dict[str, Any]:
    return {"items": await interview_store.list(user_id)}


@app.get("/api/interviews/{interview_id}")
async def interview_detail(
    interview_id: int, user_id: Optional[str] = Query(default=None, alias="userId")
) -> Dict[str, Any]:
    return await interview_store.get(interview_id, user_id)


@app.delete("/api/interviews/{interview_id}")
async def delete_interview(
    interview_id: int, user_id: Optional[str] = Query(default=None, alias="userId")
) -> Dict[str, bool]:
    await interview_store.delete(interview_id, user_id)
    return {"ok": True}


@app.get("/api/me/stats")
async def my_stats(user_id: Optional[str] = Query(default=None, alias="userId")) -> Dict[str, int]:
    return await interview_store.stats(user_id)


@app.post("/stt")
async def transcribe_audio(
    file: UploadFile = File(...),
    language: Optional[str] = Form(default=None),
) -> Dict[str, Any]:
    """Speech-to-text for spoken answers. Feed the transcript back as a `transcript` frame."""
    suffix = os.path.splitext(file.filename or "audio.webm")[1] or ".webm"
    payload = await file.read()
    return await asyncio.to_thread(transcription.transcribe, payload, suffix, language)


class Connection:
    """Per-socket state: at most one live practice session at a time."""

    def __init__(self, ws: WebSocket) -> None:
        self.ws = ws
        self.capture = ClientCaptureDevice(self.send, timeout=CAPTURE_TIMEOUT_SECONDS)
        self.session: Optional[InterviewSession] = None
        self.start_task: Optional[asyncio.Task] = None

    async def send(self, event: Dict[str, Any]) -> None:
        try:
            await self.ws.send_json(event)
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOG.debug("Dropped %s frame for closed socket: %s", event.get("type"), exc)

    async def error(self, message: str) -> None:
        await self.send({"type": "error", "message": message})

    async def run_start(self, session: InterviewSession) -> None:
        try:
            await session.start()
        except RehearsalError as exc:
            LOG.warning("Session start failed (topic=%s): %s", session.topic_id, exc)
            await session.close()
            if self.session is session:
                self.session = None
            await self.error(str(exc))

    async def close(self) -> None:
        if self.start_task is not None and not self.start_task.done():
            self.start_task.cancel()
            try:
                await self.start_task
            except asyncio.CancelledError:
                pass
        if self.session is not None and not self.session.finished:
            await self.session.close()


async def start_session(conn: Connection, payload: Dict[str, Any]) -> None:
    if conn.session is not None and not conn.session.finished and not conn.session.closed:
        await conn.error("A session is already running on this connection")
        return
    topic = payload.get("topic")
    if not isinstance(topic, str) or not topic:
        await conn.error("topic required")
        return
    count = payload.get("count")
    if count is not None and (not isinstance(count, int) or isinstance(count, bool)):
        await conn.error("count must be an integer")
        return

    session = await service.open_session(
        payload.get("userId"),
        topic,
        conn.capture,
        listener=conn.send,
        count=count,
        generate=bool(payload.get("generate")),
    )
    conn.session = session
    await conn.send(
        {
            "type": "session_started",
            "topic": session.topic_id,
            "title": session.title,
            "questions": session.questions,
            "questionCount": len(session.questions),
        }
    )
    conn.start_task = asyncio.create_task(conn.run_start(session))


async def handle_message(conn: Connection, payload: Dict[str, Any]) -> None:
    msg_type = payload.get("type")

    if msg_type == "ping":
        await conn.send({"type": "pong"})
        return
    if msg_type == "start_session":
        await start_session(conn, payload)
        return
    if msg_type == "capture_ready":
        conn.capture.resolve(True)
        return
    if msg_type == "capture_denied":
        conn.capture.resolve(False, payload.get("reason"))
        return
    if msg_type == "capture_lost":
        conn.capture.signal_loss()
        return

    session = conn.session
    if msg_type in ("answer_edit", "transcript", "next_question", "confirm_warning") and session is None:
        await conn.error("No session started")
        return

    if msg_type in ("answer_edit", "transcript"):
        text = payload.get("text")
        if not isinstance(text, str):
            await conn.error("text must be a string")
            return
        await session.edit_answer(text, source="speech" if msg_type == "transcript" else "text")
        return
    if msg_type == "next_question":
        await session.advance()
        return
    if msg_type == "confirm_warning":
        await session.confirm_warning()
        return

    await conn.error(f"Unrecognized message type: {msg_type}")


@app.websocket("/ws/interview")
async def interview_socket(ws: WebSocket) -> None:
    await ws.accept()
    conn = Connection(ws)
    await conn.send({"type": "session_ready", "topics": list_topics()})

    try:
        while True:
            raw = await ws.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await conn.error("Payload must be JSON")
                continue
            if not isinstance(payload, dict):
                await conn.error("Payload must be a JSON object")
                continue

            try:
                await handle_message(conn, payload)
            except RehearsalError as exc:
                # Finalize failures were already reported by the session itself.
                if conn.session is None or exc is not conn.session.error:
                    await conn.error(str(exc))
            await asyncio.sleep(0)  # yield control
    except WebSocketDisconnect:
        LOG.info("Interview socket disconnected")
    finally:
        await conn.close()
