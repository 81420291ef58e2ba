from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from rehearsal.capture import CaptureDevice
from rehearsal.catalog import Topic, get_topic
from rehearsal.errors import ValidationError
from rehearsal.generation import QuestionGenerator
from rehearsal.interviews import InterviewStore
from rehearsal.sampler import DEFAULT_COUNT, Selection, SelectionSampler
from rehearsal.session import (
    PROGRESS_TTL_SECONDS,
    WARNING_COUNTDOWN_SECONDS,
    CompletedInterview,
    InterviewSession,
    Listener,
    SessionProgress,
)
from rehearsal.storage import ANONYMOUS_USER, KeyValueStore, progress_key

QUESTIONS_PER_SESSION = int(os.getenv("QUESTIONS_PER_SESSION", str(DEFAULT_COUNT)))
SESSION_PROGRESS_TTL = float(os.getenv("PROGRESS_TTL_SECONDS", str(PROGRESS_TTL_SECONDS)))
SESSION_WARNING_COUNTDOWN = int(os.getenv("WARNING_COUNTDOWN_SECONDS", str(WARNING_COUNTDOWN_SECONDS)))
LOG = logging.getLogger("interview.practice")


class PracticeService:
    """
    Opens practice sessions for a (user, topic).

    A fresh in-progress snapshot for the same pair wins over a new sample, so
    reloading the page resumes the same questions instead of drawing new ones.
    """

    def __init__(
        self,
        store: KeyValueStore,
        interviews: InterviewStore,
        sampler: Optional[SelectionSampler] = None,
        generator: Optional[QuestionGenerator] = None,
        freshness_seconds: float = SESSION_PROGRESS_TTL,
        countdown_seconds: int = SESSION_WARNING_COUNTDOWN,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.interviews = interviews
        self.sampler = sampler or SelectionSampler(store)
        self.generator = generator or QuestionGenerator(cache=store)
        self.freshness_seconds = freshness_seconds
        self.countdown_seconds = countdown_seconds
        self.tick_seconds = tick_seconds
        self._clock = clock

    async def open_session(
        self,
        user_id: Optional[str],
        topic_id: str,
        capture: CaptureDevice,
        listener: Optional[Listener] = None,
        count: Optional[int] = None,
        generate: bool = False,
    ) -> InterviewSession:
        user = user_id or ANONYMOUS_USER
        topic = get_topic(topic_id)
        wanted = count if count is not None else QUESTIONS_PER_SESSION
        if wanted < 1:
            raise ValidationError("count must be at least 1")

        selection = await self._resumable_selection(user, topic)
        if selection is None:
            selection = await self.sampler.select(topic.id, topic.pool, user, wanted)
            if generate:
                generated = await self.generator.generate(
                    topic.title, wanted, selection.questions, user_id=user, topic_id=topic.id
                )
                if generated != selection.questions:
                    selection = Selection.generated(generated)
        if not len(selection):
            raise ValidationError(f"Topic {topic.id} has no questions")

        return InterviewSession(
            user_id=user,
            topic_id=topic.id,
            title=topic.title,
            selection=selection,
            progress_store=self.store,
            capture=capture,
            on_complete=self._submit,
            listener=listener,
            freshness_seconds=self.freshness_seconds,
            countdown_seconds=self.countdown_seconds,
            tick_seconds=self.tick_seconds,
            clock=self._clock,
        )

    async def _resumable_selection(self, user: str, topic: Topic) -> Optional[Selection]:
        progress = SessionProgress.from_dict(await self.store.get(progress_key(user, topic.id)))
        if progress is None or not progress.signature:
            return None
        selection = Selection.from_signature(topic.pool, progress.signature)
        if selection is None:
            return None
        if not progress.is_restorable(len(selection), selection.signature, self._clock(), self.freshness_seconds):
            return None
        LOG.info("Resuming previous selection (user=%s topic=%s)", user, topic.id)
        return selection

    async def _submit(self, outcome: CompletedInterview) -> Dict[str, Any]:
        result = await self.interviews.submit(
            outcome.user_id,
            outcome.title,
            outcome.questions,
            outcome.answers,
            outcome.reference_answers,
        )
        return result.to_dict()
