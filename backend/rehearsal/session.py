"""
Question-by-question interview session.

Phases:
    INITIALIZING -> AWAITING_CAPABILITY -> ACTIVE (advance loops) -> COMPLETED
    AWAITING_CAPABILITY / ACTIVE -> WARNING -> TERMINATED

Progress is written to the store after every edit and navigation so a reload
inside the freshness window resumes where the candidate left off. Losing the
camera opens a countdown; when it runs out (or the candidate confirms) the
session is finalized with whatever answers it holds. Finalization happens at
most once, whichever path gets there first.

Every event runs on the caller's event loop; there is no locking because a
session is driven by a single socket.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from rehearsal.capture import CaptureDevice, CaptureHandle
from rehearsal.errors import CapabilityError, RehearsalError, SessionStateError
from rehearsal.sampler import Selection
from rehearsal.storage import KeyValueStore, progress_key

LOG = logging.getLogger("interview.session")

PROGRESS_TTL_SECONDS = 3600
WARNING_COUNTDOWN_SECONDS = 5


class SessionPhase(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_CAPABILITY = "awaiting_capability"
    ACTIVE = "active"
    WARNING = "warning"
    COMPLETED = "completed"
    TERMINATED = "terminated"


TERMINAL_PHASES = frozenset({SessionPhase.COMPLETED, SessionPhase.TERMINATED})


@dataclass
class SessionProgress:
    current_index: int
    answers: List[str]
    timestamp: float
    signature: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentIndex": self.current_index,
            "answers": list(self.answers),
            "timestamp": self.timestamp,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SessionProgress"]:
        if not isinstance(data, dict):
            return None
        answers = data.get("answers")
        index = data.get("currentIndex")
        timestamp = data.get("timestamp")
        if not isinstance(answers, list) or not all(isinstance(a, str) for a in answers):
            return None
        if not isinstance(index, int) or not isinstance(timestamp, (int, float)):
            return None
        return cls(
            current_index=index,
            answers=list(answers),
            timestamp=float(timestamp),
            signature=str(data.get("signature") or ""),
        )

    def is_restorable(self, question_count: int, signature: str, now: float, max_age: float) -> bool:
        return (
            len(self.answers) == question_count
            and 0 <= self.current_index < max(question_count, 1)
            and self.signature == signature
            and now - self.timestamp < max_age
        )


@dataclass(frozen=True)
class CompletedInterview:
    user_id: str
    topic_id: str
    title: str
    questions: List[str]
    answers: List[str]
    reference_answers: List[str]
    phase: SessionPhase
    reason: str = "finished"


CompletionHandler = Callable[[CompletedInterview], Awaitable[Optional[Dict[str, Any]]]]
Listener = Callable[[Dict[str, Any]], Awaitable[None]]


class InterviewSession:
    def __init__(
        self,
        *,
        user_id: str,
        topic_id: str,
        selection: Selection,
        progress_store: KeyValueStore,
        capture: CaptureDevice,
        on_complete: CompletionHandler,
        listener: Optional[Listener] = None,
        title: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        freshness_seconds: float = PROGRESS_TTL_SECONDS,
        countdown_seconds: int = WARNING_COUNTDOWN_SECONDS,
        tick_seconds: float = 1.0,
    ) -> None:
        self.user_id = user_id
        self.topic_id = topic_id
        self.title = title or topic_id
        self.selection = selection
        self.phase = SessionPhase.INITIALIZING
        self.answers: List[str] = [""] * len(selection)
        self.current_index = 0
        self.countdown: Optional[int] = None
        self.warning_reason: Optional[str] = None
        self.restored = False
        self.result: Optional[Dict[str, Any]] = None
        self.error: Optional[RehearsalError] = None

        self._progress = progress_store
        self._capture = capture
        self._on_complete = on_complete
        self._listener = listener
        self._clock = clock
        self._freshness = freshness_seconds
        self._countdown_start = countdown_seconds
        self._tick = tick_seconds
        self._handle: Optional[CaptureHandle] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self._finalized = False
        self._closed = False
        self._done = asyncio.Event()

    @property
    def key(self) -> str:
        return progress_key(self.user_id, self.topic_id)

    @property
    def questions(self) -> List[str]:
        return [q.text for q in self.selection.questions]

    @property
    def current_question(self) -> Optional[str]:
        if not self.selection.questions:
            return None
        return self.selection.questions[self.current_index].text

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.answers) - 1

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def holds_capture(self) -> bool:
        return self._handle is not None and not self._handle.released

    def snapshot(self) -> Dict[str, Any]:
        return {
            "topic": self.topic_id,
            "title": self.title,
            "phase": self.phase.value,
            "currentIndex": self.current_index,
            "question": self.current_question,
            "questionCount": len(self.answers),
            "answers": list(self.answers),
            "countdown": self.countdown,
            "restored": self.restored,
        }

    async def start(self) -> None:
        if self.phase is not SessionPhase.INITIALIZING or self._closed:
            raise SessionStateError(f"Cannot start a session in phase {self.phase.value}")
        await self._restore_progress()
        await self._persist()

        self.phase = SessionPhase.AWAITING_CAPABILITY
        await self._emit_state()
        try:
            handle = await self._capture.acquire()
        except CapabilityError as exc:
            LOG.warning("Capture unavailable (topic=%s): %s", self.topic_id, exc)
            if self.phase is SessionPhase.AWAITING_CAPABILITY and not self._closed:
                self._enter_warning(str(exc) or "capture_unavailable")
            return

        if self._closed or self.phase is not SessionPhase.AWAITING_CAPABILITY:
            # Torn down or already warned while the permission prompt was open.
            handle.release()
            return
        self._handle = handle
        handle.on_loss(self.capability_lost)
        self.phase = SessionPhase.ACTIVE
        await self._emit_state()

    async def edit_answer(self, text: str, source: str = "text") -> None:
        """Overwrite the current slot. Typed text and transcribed speech behave the same."""
        self._require(SessionPhase.ACTIVE)
        self.answers[self.current_index] = text or ""
        LOG.debug(
            "Answer edit (topic=%s index=%s source=%s len=%s)",
            self.topic_id,
            self.current_index,
            source,
            len(text or ""),
        )
        await self._persist()

    async def advance(self) -> bool:
        """Move to the next question, or finish from the last one. Returns True when finished."""
        self._require(SessionPhase.ACTIVE)
        if not self.is_last_question:
            self.current_index += 1
            await self._persist()
            await self._emit_state()
            return False
        await self._finalize(SessionPhase.COMPLETED, "finished")
        return True

    async def finish(self) -> None:
        self._require(SessionPhase.ACTIVE)
        if not self.is_last_question:
            raise SessionStateError("Finish is only available on the last question")
        await self._finalize(SessionPhase.COMPLETED, "finished")

    def capability_lost(self) -> None:
        if self._closed or self.phase not in (SessionPhase.ACTIVE, SessionPhase.AWAITING_CAPABILITY):
            return
        self._enter_warning("capture_lost")

    async def confirm_warning(self) -> None:
        self._require(SessionPhase.WARNING)
        await self._finalize(SessionPhase.TERMINATED, "confirmed")

    async def close(self) -> None:
        """Tear down without finishing. Persisted progress stays for a later reload."""
        if self._closed:
            return
        self._closed = True
        task = self._countdown_task
        self._countdown_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._release_capture()
        self._done.set()
        LOG.info("Session closed (topic=%s phase=%s)", self.topic_id, self.phase.value)

    async def wait_finished(self) -> None:
        await self._done.wait()

    def _require(self, phase: SessionPhase) -> None:
        if self._closed:
            raise SessionStateError("Session is closed")
        if self.phase is not phase:
            raise SessionStateError(f"Not allowed while {self.phase.value}")

    async def _restore_progress(self) -> None:
        raw = await self._progress.get(self.key)
        if raw is None:
            return
        progress = SessionProgress.from_dict(raw)
        if progress and progress.is_restorable(
            len(self.answers), self.selection.signature, self._clock(), self._freshness
        ):
            self.answers = list(progress.answers)
            self.current_index = progress.current_index
            self.restored = True
            LOG.info("Restored progress (topic=%s index=%s)", self.topic_id, self.current_index)
        else:
            LOG.info("Discarding stale or mismatched progress (topic=%s)", self.topic_id)

    async def _persist(self) -> None:
        progress = SessionProgress(
            current_index=self.current_index,
            answers=self.answers,
            timestamp=self._clock(),
            signature=self.selection.signature,
        )
        await self._progress.set(self.key, progress.to_dict())

    def _enter_warning(self, reason: str) -> None:
        self.phase = SessionPhase.WARNING
        self.warning_reason = reason
        self.countdown = self._countdown_start
        self._release_capture()
        self._countdown_task = asyncio.create_task(self._run_countdown())

    async def _run_countdown(self) -> None:
        try:
            await self._emit_warning()
            while self.countdown and self.countdown > 0:
                await asyncio.sleep(self._tick)
                if self._finalized or self._closed:
                    return
                self.countdown -= 1
                await self._emit_warning()
            await self._finalize(SessionPhase.TERMINATED, "countdown")
        except RehearsalError as exc:
            # Already reported to the listener by _finalize.
            LOG.error("Forced finalize failed (topic=%s): %s", self.topic_id, exc)

    async def _finalize(self, phase: SessionPhase, reason: str) -> None:
        if self._finalized:
            return
        self._finalized = True
        task = self._countdown_task
        self._countdown_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._release_capture()
        self.phase = phase

        outcome = CompletedInterview(
            user_id=self.user_id,
            topic_id=self.topic_id,
            title=self.title,
            questions=self.questions,
            answers=list(self.answers),
            reference_answers=self.selection.reference_answers,
            phase=phase,
            reason=reason,
        )
        LOG.info("Finalizing session (topic=%s phase=%s reason=%s)", self.topic_id, phase.value, reason)
        try:
            self.result = await self._on_complete(outcome)
            await self._progress.clear(self.key)
        except RehearsalError as exc:
            self.error = exc
            await self._emit({"type": "error", "message": str(exc), "phase": phase.value})
            raise
        finally:
            self._done.set()
        await self._emit(
            {
                "type": "session_ended",
                "phase": phase.value,
                "reason": reason,
                "answers": list(self.answers),
                "result": self.result,
            }
        )

    def _release_capture(self) -> None:
        if self._handle is not None:
            self._handle.release()
            self._handle = None

    async def _emit_state(self) -> None:
        await self._emit({"type": "session_state", **self.snapshot()})

    async def _emit_warning(self) -> None:
        await self._emit({"type": "warning", "countdown": self.countdown, "reason": self.warning_reason})

    async def _emit(self, event: Dict[str, Any]) -> None:
        if self._listener is not None:
            await self._listener(event)
