"""Completed-interview records: submit, history, detail, delete and stats."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from rehearsal.db import SessionFactory, get_session
from rehearsal.errors import NotFoundError, PersistenceError, ValidationError
from rehearsal.models import InterviewItemRecord, InterviewRecord
from rehearsal.scoring import overall_score, round_half_up, score_answer

LOG = logging.getLogger("interview.store")


@dataclass(frozen=True)
class SubmitResult:
    interview_id: int
    overall: int
    improved: Optional[bool]

    def to_dict(self) -> Dict[str, Any]:
        return {"interviewId": self.interview_id, "overall": self.overall, "improved": self.improved}


def _require_user(user_id: Optional[str]) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("userId required")
    return user_id


def _as_texts(value: Any, name: str) -> List[str]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list")
    return ["" if v is None else str(v) for v in value]


class InterviewStore:
    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def submit(
        self,
        user_id: str,
        topic: Optional[str],
        questions: Sequence[str],
        answers: Sequence[str],
        reference_answers: Optional[Sequence[str]] = None,
    ) -> SubmitResult:
        user_id = _require_user(user_id)
        questions = _as_texts(questions, "questions")
        answers = _as_texts(answers, "answers")
        references = _as_texts(reference_answers or [], "expectedAnswers")
        if len(answers) != len(questions):
            raise ValidationError("questions and answers length mismatch")
        if not questions:
            raise ValidationError("at least one question is required")

        scored = [
            score_answer(answers[i], references[i] if i < len(references) else "")
            for i in range(len(questions))
        ]
        overall = overall_score([s.score for s in scored])

        async with self._session_factory() as session:
            try:
                previous = (
                    await session.exec(
                        select(InterviewRecord)
                        .where(InterviewRecord.user_id == user_id, col(InterviewRecord.overall_score).is_not(None))
                        .order_by(col(InterviewRecord.created_at).desc(), col(InterviewRecord.id).desc())
                        .limit(1)
                    )
                ).first()
                improved = None if previous is None else overall >= previous.overall_score

                record = InterviewRecord(
                    user_id=user_id,
                    category=topic or "general",
                    total_questions=len(questions),
                    overall_score=overall,
                    improved=improved,
                )
                session.add(record)
                await session.flush()
                for idx, (question, answer, result) in enumerate(zip(questions, answers, scored)):
                    session.add(
                        InterviewItemRecord(
                            interview_id=record.id,
                            question_idx=idx,
                            question=question,
                            expected_answer=references[idx] if idx < len(references) else "",
                            answer=answer,
                            score=result.score,
                            tier=result.tier.value,
                            feedback=result.feedback,
                        )
                    )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                LOG.error("Failed to save interview (user=%s): %s", user_id, exc)
                raise PersistenceError("Failed to save interview") from exc

        LOG.info(
            "Saved interview %s (user=%s questions=%s overall=%s improved=%s)",
            record.id,
            user_id,
            len(questions),
            overall,
            improved,
        )
        return SubmitResult(interview_id=record.id, overall=overall, improved=improved)

    async def list(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = _require_user(user_id)
        async with self._session_factory() as session:
            try:
                rows = (
                    await session.exec(
                        select(InterviewRecord)
                        .where(InterviewRecord.user_id == user_id)
                        .order_by(col(InterviewRecord.created_at).desc(), col(InterviewRecord.id).desc())
                    )
                ).all()
            except SQLAlchemyError as exc:
                LOG.error("Failed to list interviews (user=%s): %s", user_id, exc)
                raise PersistenceError("Failed to load interviews") from exc
        return [
            {
                "id": row.id,
                "category": row.category,
                "total_questions": row.total_questions,
                "overall_score": row.overall_score,
                "improved": row.improved,
                "created_at": row.created_at,
            }
            for row in rows
        ]

    async def get(self, interview_id: int, user_id: str) -> Dict[str, Any]:
        user_id = _require_user(user_id)
        if not interview_id:
            raise ValidationError("id required")
        async with self._session_factory() as session:
            try:
                meta = (
                    await session.exec(
                        select(InterviewRecord).where(
                            InterviewRecord.id == interview_id, InterviewRecord.user_id == user_id
                        )
                    )
                ).first()
                items = (
                    await session.exec(
                        select(InterviewItemRecord)
                        .where(InterviewItemRecord.interview_id == interview_id)
                        .order_by(col(InterviewItemRecord.question_idx).asc())
                    )
                ).all()
            except SQLAlchemyError as exc:
                LOG.error("Failed to load interview %s (user=%s): %s", interview_id, user_id, exc)
                raise PersistenceError("Failed to load interview") from exc
        if meta is None:
            raise NotFoundError("Not found")
        return {
            "interview": meta.model_dump(),
            "items": [item.model_dump(exclude={"id", "interview_id"}) for item in items],
        }

    async def delete(self, interview_id: int, user_id: str) -> bool:
        user_id = _require_user(user_id)
        if not interview_id:
            raise ValidationError("id required")
        async with self._session_factory() as session:
            try:
                meta = (
                    await session.exec(
                        select(InterviewRecord).where(
                            InterviewRecord.id == interview_id, InterviewRecord.user_id == user_id
                        )
                    )
                ).first()
                if meta is None:
                    raise NotFoundError("Not found")
                items = (
                    await session.exec(
                        select(InterviewItemRecord).where(InterviewItemRecord.interview_id == interview_id)
                    )
                ).all()
                for item in items:
                    await session.delete(item)
                await session.delete(meta)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                LOG.error("Failed to delete interview %s (user=%s): %s", interview_id, user_id, exc)
                raise PersistenceError("Failed to delete interview") from exc
        LOG.info("Deleted interview %s (user=%s)", interview_id, user_id)
        return True

    async def stats(self, user_id: str) -> Dict[str, int]:
        user_id = _require_user(user_id)
        scored = (InterviewRecord.user_id == user_id, col(InterviewRecord.overall_score).is_not(None))
        async with self._session_factory() as session:
            try:
                row = (
                    await session.exec(
                        select(
                            func.count(),
                            func.avg(InterviewRecord.overall_score),
                            func.max(InterviewRecord.overall_score),
                            func.min(InterviewRecord.overall_score),
                        ).where(*scored)
                    )
                ).one()
                flags = (
                    await session.exec(
                        select(InterviewRecord.improved).where(*scored, col(InterviewRecord.improved).is_not(None))
                    )
                ).all()
            except SQLAlchemyError as exc:
                LOG.error("Failed to compute stats (user=%s): %s", user_id, exc)
                raise PersistenceError("Failed to load stats") from exc
        total, average, best, worst = row
        return {
            "total_interviews": total or 0,
            "average_score": round_half_up(average or 0),
            "best_score": best or 0,
            "worst_score": worst or 0,
            "improved_count": sum(1 for flag in flags if flag),
            "declined_count": sum(1 for flag in flags if not flag),
        }
