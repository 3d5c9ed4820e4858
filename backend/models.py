import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base

def _uuid() -> str:
    return str(uuid.uuid4())

class Question(Base):
    __tablename__ = "questions"
    id = Column(String(36), primary_key=True, default=_uuid)
    question = Column(Text, nullable=False)
    meta = Column(JSON, nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    edited_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    survey_links = relationship("SurveyQuestion", back_populates="question", passive_deletes=True)

class Survey(Base):
    __tablename__ = "surveys"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    synopsis = Column(Text, nullable=True)
    active = Column(Boolean, nullable=True)
    meta = Column(JSON, nullable=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    edited_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    question_links = relationship(
        "SurveyQuestion",
        back_populates="survey",
        cascade="all, delete-orphan",
        order_by="SurveyQuestion.order",
    )

class SurveyQuestion(Base):
    __tablename__ = "survey_questions"
    __table_args__ = (UniqueConstraint("survey_id", "order", name="uq_survey_question_order"),)
    id = Column(String(36), primary_key=True, default=_uuid)
    survey_id = Column(String(36), ForeignKey("surveys.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    order = Column(Integer, nullable=False)
    survey = relationship("Survey", back_populates="question_links")
    question = relationship("Question", back_populates="survey_links")

class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(String(36), primary_key=True, default=_uuid)
    azure_id = Column(String(255), unique=True, index=True, nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
