# Ordered Survey <-> Question associations
from __future__ import annotations
import logging
from typing import Iterable, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session

from models import Survey, Question, SurveyQuestion

logger = logging.getLogger(__name__)


def unknown_question_ids(db: Session, question_ids: Iterable[str]) -> list[str]:
    """Return the ids (in first-seen order) that do not name an existing question."""
    wanted = list(dict.fromkeys(question_ids))
    if not wanted:
        return []
    found = set(db.execute(select(Question.id).where(Question.id.in_(wanted))).scalars().all())
    return [qid for qid in wanted if qid not in found]


def attach_questions(db: Session, survey: Survey, question_ids: Sequence[str]) -> int:
    """Insert one association per id with order = position in the list.

    Duplicates are kept and land at distinct positions. The caller owns the
    transaction; nothing is committed here.

    Returns:
        int: number of association rows added.
    """
    rows = [
        SurveyQuestion(survey_id=survey.id, question_id=qid, order=idx)
        for idx, qid in enumerate(question_ids)
    ]
    db.add_all(rows)
    return len(rows)


def replace_questions(db: Session, survey: Survey, question_ids: Sequence[str]) -> int:
    """Swap the survey's whole question list for `question_ids`.

    Old rows are deleted and flushed before the new ones are added so the
    (survey_id, order) unique constraint never sees both generations at once.
    """
    result = db.execute(
        delete(SurveyQuestion)
        .where(SurveyQuestion.survey_id == survey.id)
        .execution_options(synchronize_session=False)
    )
    db.expire(survey, ["question_links"])
    db.flush()
    added = attach_questions(db, survey, question_ids)
    survey.edited_at = func.now()
    logger.debug("survey %s: replaced %s question links with %s", survey.id, result.rowcount, added)
    return added


def ordered_questions(survey: Survey) -> list[Question]:
    """Questions of a survey in ascending `order`; association rows stay internal."""
    return [link.question for link in sorted(survey.question_links, key=lambda link: link.order)]


def delete_survey(db: Session, survey: Survey) -> None:
    """Remove the survey's associations, then the survey, in one commit."""
    try:
        db.execute(
            delete(SurveyQuestion)
            .where(SurveyQuestion.survey_id == survey.id)
            .execution_options(synchronize_session=False)
        )
        db.expire(survey, ["question_links"])
        db.delete(survey)
        db.commit()
    except Exception:
        db.rollback()
        raise
