"""
Per-user, per-topic question sampling that avoids repeating the previous
session's questions whenever the pool allows it.

History is read-modify-write without locking. That is safe only while a given
(user, topic) pair has a single active session, which the practice flow
guarantees; concurrent devices for the same pair would need a versioned write.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set

from rehearsal.catalog import QuestionItem
from rehearsal.storage import KeyValueStore, history_key

LOG = logging.getLogger("interview.sampler")

DEFAULT_COUNT = 5


@dataclass(frozen=True)
class Selection:
    questions: List[QuestionItem]
    indices: List[int]
    source: str = "pool"

    @property
    def signature(self) -> str:
        joined = ",".join(str(i) for i in self.indices)
        return joined if self.source == "pool" else f"{self.source}:{joined}"

    @property
    def reference_answers(self) -> List[str]:
        return [q.reference_answer for q in self.questions]

    def __len__(self) -> int:
        return len(self.indices)

    @classmethod
    def from_indices(cls, pool: Sequence[QuestionItem], indices: Sequence[int]) -> "Selection":
        idx = list(indices)
        if len(set(idx)) != len(idx) or any(not 0 <= i < len(pool) for i in idx):
            raise ValueError(f"indices {idx} do not fit a pool of {len(pool)}")
        return cls(questions=[pool[i] for i in idx], indices=idx)

    @classmethod
    def from_signature(cls, pool: Sequence[QuestionItem], signature: str) -> Optional["Selection"]:
        try:
            indices = [int(part) for part in signature.split(",") if part != ""]
            return cls.from_indices(pool, indices)
        except ValueError:
            return None

    @classmethod
    def generated(cls, items: Sequence[QuestionItem]) -> "Selection":
        return cls(questions=list(items), indices=list(range(len(items))), source="generated")


def _previous_indices(record: Optional[dict]) -> Set[int]:
    if not record:
        return set()
    raw: Any = record.get("indices")
    if not isinstance(raw, list):
        LOG.warning("Ignoring malformed selection history: %r", record)
        return set()
    return {i for i in raw if isinstance(i, int) and not isinstance(i, bool)}


class SelectionSampler:
    def __init__(
        self,
        store: KeyValueStore,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._clock = clock

    async def select(
        self,
        topic_id: str,
        pool: Sequence[QuestionItem],
        user_id: Optional[str],
        count: int = DEFAULT_COUNT,
    ) -> Selection:
        effective = max(0, min(count, len(pool)))
        key = history_key(user_id, topic_id)

        order = list(range(len(pool)))
        self._rng.shuffle(order)  # Fisher-Yates

        last = _previous_indices(await self._store.get(key))
        fresh = [i for i in order if i not in last]
        stale = [i for i in order if i in last]
        chosen = (fresh + stale)[:effective]

        await self._store.set(key, {"indices": chosen, "ts": self._clock()})
        LOG.info(
            "Selected %s/%s questions (topic=%s fresh=%s repeats=%s)",
            len(chosen),
            len(pool),
            topic_id,
            min(len(fresh), effective),
            max(0, effective - len(fresh)),
        )
        return Selection(questions=[pool[i] for i in chosen], indices=chosen)
