import asyncio

import pytest

from rehearsal.capture import ClientCaptureDevice, StaticCaptureDevice
from rehearsal.catalog import QuestionItem
from rehearsal.errors import PersistenceError, SessionStateError
from rehearsal.sampler import Selection
from rehearsal.session import InterviewSession, SessionPhase, SessionProgress
from rehearsal.storage import progress_key

POOL = (
    QuestionItem("What is a closure?", "A function with its enclosing scope"),
    QuestionItem("What is a promise?", "An object for a future value"),
    QuestionItem("What is hoisting?", "Declarations move to the top of scope"),
    QuestionItem("What is the DOM?", "Document object model tree"),
)
NOW = 10_000.0


class Handoff:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def __call__(self, outcome):
        self.calls.append(outcome)
        if self.error is not None:
            raise self.error
        return {"interviewId": len(self.calls), "overall": 0, "improved": None}


class Events(list):
    async def __call__(self, event):
        self.append(event)

    def of(self, kind):
        return [e for e in self if e["type"] == kind]


def make_session(store, capture=None, handoff=None, indices=(2, 0, 1), listener=None, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    kwargs.setdefault("tick_seconds", 0.01)
    return InterviewSession(
        user_id="u1",
        topic_id="web-frontend",
        title="Web Frontend",
        selection=Selection.from_indices(POOL, list(indices)),
        progress_store=store,
        capture=capture or StaticCaptureDevice(),
        on_complete=handoff or Handoff(),
        listener=listener,
        **kwargs,
    )


KEY = progress_key("u1", "web-frontend")


@pytest.mark.asyncio
async def test_start_acquires_capture_and_persists_blank_progress(memory_store):
    events = Events()
    session = make_session(memory_store, listener=events)

    await session.start()

    assert session.phase is SessionPhase.ACTIVE
    assert session.holds_capture
    assert session.answers == ["", "", ""]
    assert await memory_store.get(KEY) == {
        "currentIndex": 0,
        "answers": ["", "", ""],
        "timestamp": NOW,
        "signature": "2,0,1",
    }
    assert [e["phase"] for e in events.of("session_state")] == ["awaiting_capability", "active"]
    assert events[-1]["question"] == "What is hoisting?"


@pytest.mark.asyncio
async def test_fresh_progress_is_restored(memory_store):
    await memory_store.set(
        KEY,
        SessionProgress(current_index=2, answers=["a", "b", ""], timestamp=NOW - 60, signature="2,0,1").to_dict(),
    )
    session = make_session(memory_store)

    await session.start()

    assert session.restored
    assert session.current_index == 2
    assert session.answers == ["a", "b", ""]


@pytest.mark.parametrize(
    "progress",
    [
        SessionProgress(current_index=1, answers=["a", "b", ""], timestamp=NOW - 3600, signature="2,0,1"),
        SessionProgress(current_index=1, answers=["a", "b", ""], timestamp=NOW - 10, signature="0,1,2"),
        SessionProgress(current_index=1, answers=["a", "b"], timestamp=NOW - 10, signature="2,0,1"),
        SessionProgress(current_index=3, answers=["a", "b", ""], timestamp=NOW - 10, signature="2,0,1"),
    ],
)
@pytest.mark.asyncio
async def test_stale_or_mismatched_progress_is_discarded(memory_store, progress):
    await memory_store.set(KEY, progress.to_dict())
    session = make_session(memory_store)

    await session.start()

    assert not session.restored
    assert session.current_index == 0
    assert session.answers == ["", "", ""]
    assert (await memory_store.get(KEY))["answers"] == ["", "", ""]


@pytest.mark.asyncio
async def test_edits_and_navigation_are_persisted(memory_store):
    session = make_session(memory_store)
    await session.start()

    await session.edit_answer("scope chain")
    await session.edit_answer("scope chain and closures", source="speech")
    finished = await session.advance()

    assert finished is False
    stored = await memory_store.get(KEY)
    assert stored["currentIndex"] == 1
    assert stored["answers"] == ["scope chain and closures", "", ""]
    assert len(session.answers) == len(session.questions)


@pytest.mark.asyncio
async def test_advancing_past_last_question_completes_once(memory_store):
    handoff = Handoff()
    events = Events()
    capture = StaticCaptureDevice()
    session = make_session(memory_store, capture=capture, handoff=handoff, listener=events)
    await session.start()

    for answer in ("first", "second", "third"):
        await session.edit_answer(answer)
        finished = await session.advance()

    assert finished is True
    assert session.phase is SessionPhase.COMPLETED
    assert len(handoff.calls) == 1
    outcome = handoff.calls[0]
    assert outcome.answers == ["first", "second", "third"]
    assert outcome.questions == [POOL[2].text, POOL[0].text, POOL[1].text]
    assert outcome.reference_answers == [POOL[2].reference_answer, POOL[0].reference_answer, POOL[1].reference_answer]
    assert await memory_store.get(KEY) is None
    assert capture.handles[0].released
    assert events.of("session_ended")[0]["result"] == {"interviewId": 1, "overall": 0, "improved": None}

    with pytest.raises(SessionStateError):
        await session.edit_answer("late")
    with pytest.raises(SessionStateError):
        await session.advance()
    session.capability_lost()
    assert session.phase is SessionPhase.COMPLETED


@pytest.mark.asyncio
async def test_finish_is_only_allowed_on_last_question(memory_store):
    handoff = Handoff()
    session = make_session(memory_store, handoff=handoff, indices=(0, 1))
    await session.start()

    with pytest.raises(SessionStateError):
        await session.finish()
    await session.advance()
    await session.finish()

    assert session.phase is SessionPhase.COMPLETED
    assert len(handoff.calls) == 1


@pytest.mark.asyncio
async def test_edit_before_capture_is_rejected(memory_store):
    session = make_session(memory_store)
    with pytest.raises(SessionStateError):
        await session.edit_answer("too early")


@pytest.mark.asyncio
async def test_capture_loss_warns_then_confirm_terminates_once(memory_store):
    handoff = Handoff()
    events = Events()
    capture = StaticCaptureDevice()
    session = make_session(memory_store, capture=capture, handoff=handoff, listener=events)
    await session.start()
    await session.edit_answer("partial answer")

    capture.handles[0].signal_loss()

    assert session.phase is SessionPhase.WARNING
    assert session.countdown == 5
    assert not session.holds_capture
    with pytest.raises(SessionStateError):
        await session.edit_answer("typing during warning")

    await session.confirm_warning()
    await asyncio.sleep(0.1)

    assert session.phase is SessionPhase.TERMINATED
    assert len(handoff.calls) == 1
    assert handoff.calls[0].answers == ["partial answer", "", ""]
    assert handoff.calls[0].reason == "confirmed"
    assert await memory_store.get(KEY) is None
    assert len(events.of("session_ended")) == 1


@pytest.mark.asyncio
async def test_countdown_expiry_forces_termination(memory_store):
    handoff = Handoff()
    events = Events()
    capture = StaticCaptureDevice()
    session = make_session(memory_store, capture=capture, handoff=handoff, listener=events)
    await session.start()

    capture.handles[0].signal_loss()
    await asyncio.wait_for(session.wait_finished(), timeout=2)

    assert session.phase is SessionPhase.TERMINATED
    assert [e["countdown"] for e in events.of("warning")] == [5, 4, 3, 2, 1, 0]
    assert len(handoff.calls) == 1
    assert handoff.calls[0].reason == "countdown"
    assert session.result == {"interviewId": 1, "overall": 0, "improved": None}

    with pytest.raises(SessionStateError):
        await session.confirm_warning()


@pytest.mark.asyncio
async def test_denied_capture_enters_warning(memory_store):
    handoff = Handoff()
    events = Events()
    session = make_session(memory_store, capture=StaticCaptureDevice(available=False), handoff=handoff, listener=events)

    await session.start()
    await asyncio.sleep(0)

    assert session.phase is SessionPhase.WARNING
    assert session.warning_reason == "Camera and microphone are unavailable"
    assert events.of("warning")[0]["countdown"] == 5

    await session.confirm_warning()
    assert session.phase is SessionPhase.TERMINATED
    assert handoff.calls[0].answers == ["", "", ""]


@pytest.mark.asyncio
async def test_close_cancels_countdown_and_keeps_progress(memory_store):
    handoff = Handoff()
    capture = StaticCaptureDevice()
    session = make_session(memory_store, capture=capture, handoff=handoff)
    await session.start()
    await session.edit_answer("keep me")

    capture.handles[0].signal_loss()
    await session.close()
    await asyncio.sleep(0.15)

    assert handoff.calls == []
    assert session.phase is SessionPhase.WARNING
    assert (await memory_store.get(KEY))["answers"] == ["keep me", "", ""]
    with pytest.raises(SessionStateError):
        await session.confirm_warning()


@pytest.mark.asyncio
async def test_close_releases_capture(memory_store):
    capture = StaticCaptureDevice()
    session = make_session(memory_store, capture=capture)
    await session.start()

    await session.close()

    assert capture.handles[0].released
    assert session.closed
    with pytest.raises(SessionStateError):
        await session.start()


@pytest.mark.asyncio
async def test_failed_handoff_keeps_progress_and_reports_error(memory_store):
    events = Events()
    session = make_session(
        memory_store, handoff=Handoff(error=PersistenceError("Failed to save interview")), indices=(0,), listener=events
    )
    await session.start()
    await session.edit_answer("only answer")

    with pytest.raises(PersistenceError):
        await session.advance()

    assert session.phase is SessionPhase.COMPLETED
    assert isinstance(session.error, PersistenceError)
    assert events.of("error")[0]["message"] == "Failed to save interview"
    assert (await memory_store.get(KEY))["answers"] == ["only answer"]


@pytest.mark.asyncio
async def test_capture_granted_after_close_is_released(memory_store):
    sent = []

    async def send(frame):
        sent.append(frame)

    device = ClientCaptureDevice(send, timeout=2)
    session = make_session(memory_store, capture=device)

    task = asyncio.create_task(session.start())
    while not sent:
        await asyncio.sleep(0)
    await session.close()
    assert device.resolve(True)
    await task

    assert sent[0] == {"type": "capture_request", "video": True, "audio": True}
    assert device.handle is None
    assert session.phase is SessionPhase.AWAITING_CAPABILITY
    assert not session.holds_capture
