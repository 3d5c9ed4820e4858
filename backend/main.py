import logging
from html import escape
from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from config import settings
from db import Base, engine, get_db
from models import Survey, Question, SurveyQuestion, AdminUser
from schemas import QuestionCreate, QuestionUpdate, SurveyCreate, SurveyUpdate
from security import Identity, require_admin
from survey_questions import attach_questions, replace_questions, ordered_questions, delete_survey as delete_survey_rows, unknown_question_ids

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Survey API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report schema violations as 400 with the per-field error list."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Response shaping
def question_out(q: Question) -> dict:
    return {
        "id": q.id,
        "question": q.question,
        "meta": q.meta,
        "addedAt": q.added_at,
        "editedAt": q.edited_at,
    }

def survey_out(s: Survey) -> dict:
    """Serialize a survey with its questions expanded in stored order."""
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description,
        "synopsis": s.synopsis,
        "active": s.active,
        "meta": s.meta,
        "addedAt": s.added_at,
        "editedAt": s.edited_at,
        "questions": [question_out(q) for q in ordered_questions(s)],
    }

# questions ride along in two batched selects instead of one lazy load per link
WITH_QUESTIONS = selectinload(Survey.question_links).selectinload(SurveyQuestion.question)

def _get_survey_or_404(db: Session, survey_id: str, *options) -> Survey:
    s = db.get(Survey, survey_id, options=options)
    if not s:
        raise HTTPException(404, "Survey not found")
    return s

def _check_question_ids(db: Session, question_ids) -> None:
    missing = unknown_question_ids(db, question_ids)
    if missing:
        raise HTTPException(400, {"questions": missing, "msg": "Unknown question ids"})


@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

# ------------------------
# Questions
# ------------------------
@app.post("/api/questions", status_code=201)
def create_question(payload: QuestionCreate, db: Session = Depends(get_db)):
    """Create a standalone question.

    Args:
        payload (QuestionCreate): {question (required), meta}.
        db (Session): DB session.

    Returns:
        dict: The created question.
    """
    q = Question(question=payload.question, meta=payload.meta)
    db.add(q)
    db.commit()
    db.refresh(q)
    return question_out(q)

@app.get("/api/questions")
def list_questions(db: Session = Depends(get_db)):
    rows = db.execute(select(Question).order_by(Question.added_at)).scalars().all()
    return [question_out(q) for q in rows]

@app.get("/api/questions/{question_id}")
def get_question(question_id: str, db: Session = Depends(get_db)):
    q = db.get(Question, question_id)
    if not q:
        raise HTTPException(404, "Question not found")
    return question_out(q)

@app.put("/api/questions/{question_id}")
def update_question(question_id: str, payload: QuestionUpdate, db: Session = Depends(get_db)):
    """Partially update a question; only fields present in the body change.

    Raises:
        HTTPException: 404 if question not found.
    """
    q = db.get(Question, question_id)
    if not q:
        raise HTTPException(404, "Question not found")
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(q, key, value)
    db.commit()
    db.refresh(q)
    return question_out(q)

@app.delete("/api/questions/{question_id}", status_code=204)
def delete_question(question_id: str, db: Session = Depends(get_db)):
    """Delete a question; surveys that listed it drop it via FK cascade.

    Raises:
        HTTPException: 404 if question not found.
    """
    q = db.get(Question, question_id)
    if not q:
        raise HTTPException(status_code=404, detail="Question not found")
    db.delete(q)
    db.commit()
    return Response(status_code=204)

# ------------------------
# Surveys
# ------------------------
@app.post("/api/surveys", status_code=201)
def create_survey(payload: SurveyCreate, db: Session = Depends(get_db)):
    """Create a survey and link its questions in the submitted order.

    Args:
        payload (SurveyCreate): name (required), description, synopsis, active, questions[], meta.
        db (Session): DB session.

    Returns:
        dict: The survey with `questions` expanded to full question objects.

    Raises:
        HTTPException: 400 if any question id is unknown.
    """
    _check_question_ids(db, payload.questions)

    survey = Survey(
        name=payload.name,
        description=payload.description,
        synopsis=payload.synopsis,
        active=payload.active,
        meta=payload.meta,
    )
    try:
        db.add(survey)
        db.flush()
        attach_questions(db, survey, payload.questions)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(survey)
    return survey_out(survey)

@app.get("/api/surveys")
def list_surveys(db: Session = Depends(get_db)):
    rows = db.execute(select(Survey).options(WITH_QUESTIONS).order_by(Survey.added_at)).scalars().all()
    return [survey_out(s) for s in rows]

@app.get("/api/surveys/{survey_id}")
def get_survey(survey_id: str, db: Session = Depends(get_db)):
    return survey_out(_get_survey_or_404(db, survey_id, WITH_QUESTIONS))

@app.put("/api/surveys/{survey_id}")
def update_survey(survey_id: str, payload: SurveyUpdate, db: Session = Depends(get_db)):
    """Partially update a survey.

    A `questions` list replaces every existing association; field updates and
    the replacement commit together.

    Raises:
        HTTPException: 404 if survey not found; 400 if any question id is unknown.
    """
    survey = _get_survey_or_404(db, survey_id)
    data = payload.model_dump(exclude_unset=True)
    question_ids = data.pop("questions", None)
    if question_ids is not None:
        _check_question_ids(db, question_ids)

    try:
        for key, value in data.items():
            setattr(survey, key, value)
        if question_ids is not None:
            replace_questions(db, survey, question_ids)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(survey)
    return survey_out(survey)

@app.delete("/api/surveys/{survey_id}", status_code=204)
def delete_survey(survey_id: str, db: Session = Depends(get_db)):
    """Hard-delete a survey together with its question links.

    Raises:
        HTTPException: 404 if survey not found.
    """
    survey = _get_survey_or_404(db, survey_id)
    delete_survey_rows(db, survey)
    return Response(status_code=204)

# ------------------------
# Admin
# ------------------------
@app.get("/api/admin/protected")
def admin_protected(request: Request, user: AdminUser = Depends(require_admin)):
    """Echo the resolved admin and token identity.

    Returns:
        dict: {"message", "user": {id, email}, "identity": {email, oid}}
    """
    identity: Identity = request.state.auth
    return {
        "message": "You are an admin",
        "user": {"id": user.id, "email": user.email},
        "identity": {"email": identity.email, "oid": identity.oid},
    }

@app.get("/api/admin/surveys/{survey_id}/embed", dependencies=[Depends(require_admin)])
def survey_embed(survey_id: str, db: Session = Depends(get_db)):
    """Build an iframe snippet that embeds the public view of a survey.

    Returns:
        dict: {"surveyId", "url", "snippet"}

    Raises:
        HTTPException: 404 if survey not found.
    """
    s = _get_survey_or_404(db, survey_id)
    url = f"{settings.public_base_url}/survey/{s.id}"
    snippet = (
        f'<iframe src="{escape(url)}" title="{escape(s.name)}" '
        'width="100%" height="800" style="border:0" loading="lazy"></iframe>'
    )
    return {"surveyId": s.id, "url": url, "snippet": snippet}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.port)
