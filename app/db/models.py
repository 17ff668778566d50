"""SQLAlchemy models for the Pronunciation Mastery engine."""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float, Boolean, JSON,
    CheckConstraint, UniqueConstraint, Index
)
from app.db.database import Base


class PronunciationAttempt(Base):
    """One scored submission. Rows are only ever appended."""
    __tablename__ = "pronunciation_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(String(64), nullable=False)
    target_unit_id = Column(String(128), nullable=False)
    attempt_number = Column(Integer, nullable=False)
    reference_text = Column(Text, nullable=False)
    overall_score = Column(Float, nullable=False)
    fluency_score = Column(Float, nullable=True)
    passing_threshold = Column(Float, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    word_scores = Column(JSON, nullable=False, default=list)  # [{text, score, phonemes: [{phoneme, score}]}]
    weak_letters = Column(JSON, nullable=False, default=list)
    weak_phonemes = Column(JSON, nullable=False, default=list)
    text_feedback = Column(Text, nullable=True)
    source_drill_id = Column(String(128), nullable=True)
    idempotency_key = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('learner_id', 'target_unit_id', 'attempt_number', name='uq_attempt_number'),
        UniqueConstraint('learner_id', 'idempotency_key', name='uq_attempt_idempotency_key'),
        CheckConstraint('attempt_number >= 1', name='ck_attempt_number_positive'),
        CheckConstraint('overall_score >= 0 AND overall_score <= 100', name='ck_attempt_score_range'),
        Index('idx_attempt_learner_created', 'learner_id', 'created_at'),
    )


class PronunciationProgress(Base):
    """Cumulative per-learner per-target-unit pronunciation state."""
    __tablename__ = "pronunciation_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(String(64), nullable=False)
    target_unit_id = Column(String(128), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    best_score = Column(Float, nullable=False, default=0.0)
    last_score = Column(Float, nullable=True)
    accuracy_running_average = Column(Float, nullable=False, default=0.0)
    weak_letters = Column(JSON, nullable=False, default=list)
    weak_phonemes = Column(JSON, nullable=False, default=list)
    passed = Column(Boolean, nullable=False, default=False)
    passed_at = Column(DateTime, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)
    is_challenging = Column(Boolean, nullable=False, default=False)
    challenge_level = Column(Text, CheckConstraint("challenge_level IN ('low', 'medium', 'high')"), nullable=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('learner_id', 'target_unit_id', name='uq_progress_learner_unit'),
        Index('idx_progress_challenging', 'learner_id', 'is_challenging', 'passed'),
    )

    __mapper_args__ = {"version_id_col": version}


class WordMastery(Base):
    """Per-learner per-word mastery shared by every drill type touching the word."""
    __tablename__ = "word_mastery"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(String(64), nullable=False)
    word = Column(String(128), nullable=False)  # lowercased, trimmed
    total_attempts = Column(Integer, nullable=False, default=0)
    successful_attempts = Column(Integer, nullable=False, default=0)
    average_score = Column(Float, nullable=False, default=0.0)
    best_score = Column(Float, nullable=False, default=0.0)
    worst_score = Column(Float, nullable=False, default=100.0)
    difficulty_score = Column(Float, nullable=False, default=100.0)
    initial_difficulty = Column(Float, nullable=True)
    improvement_rate = Column(Float, nullable=False, default=0.0)
    mastery_level = Column(
        Text,
        CheckConstraint("mastery_level IN ('struggling', 'learning', 'practicing', 'mastered')"),
        nullable=False,
        default="struggling"
    )
    score_history = Column(JSON, nullable=False, default=list)  # [{timestamp, score, source_drill_id}]
    contexts = Column(JSON, nullable=False, default=list)
    drill_types = Column(JSON, nullable=False, default=list)
    first_encountered = Column(DateTime, nullable=True)
    last_practiced = Column(DateTime, nullable=True)
    mastered_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('learner_id', 'word', name='uq_mastery_learner_word'),
        Index('idx_mastery_level', 'learner_id', 'mastery_level', 'difficulty_score'),
        Index('idx_mastery_last_practiced', 'learner_id', 'last_practiced'),
    )

    __mapper_args__ = {"version_id_col": version}


class LearnerConfidence(Base):
    """Last computed confidence snapshot plus its bounded history."""
    __tablename__ = "learner_confidence"

    learner_id = Column(String(64), primary_key=True)
    drills_assigned = Column(Integer, nullable=False, default=0)
    drills_completed = Column(Integer, nullable=False, default=0)
    completion_rate = Column(Float, nullable=False, default=0.0)
    pronunciation_confidence = Column(Float, nullable=False, default=0.0)
    confidence_score = Column(Integer, nullable=False, default=0)
    label = Column(Text, nullable=False)
    trend = Column(
        Text,
        CheckConstraint("trend IN ('improving', 'stable', 'declining')"),
        nullable=False,
        default="stable"
    )
    words_tracked = Column(Integer, nullable=False, default=0)
    history = Column(JSON, nullable=False, default=list)  # [{score, label, computed_at, drills_completed}]
    last_computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class DrillAssignment(Base):
    """Read-only mirror of the external drill assignment store."""
    __tablename__ = "drill_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    learner_id = Column(String(64), nullable=False)
    drill_id = Column(String(128), nullable=False)
    drill_type = Column(String(32), nullable=True)
    status = Column(Text, CheckConstraint("status IN ('assigned', 'in_progress', 'completed')"), nullable=False, default="assigned")
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_assignment_learner_status', 'learner_id', 'status'),
    )
