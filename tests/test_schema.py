"""
Tests for the database schema and index migrations.

Tests cover:
1. Tables, constraints and version columns
2. Index migrations on databases created without them
"""
import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from app.db.init_db import INDEX_MIGRATIONS, apply_schema_migrations
from app.db.models import PronunciationAttempt, WordMastery


class TestSchema:
    """Test schema structure and constraints."""

    def test_tables_exist(self, test_db):
        tables = inspect(test_db.bind).get_table_names()
        for table in ("pronunciation_attempts", "pronunciation_progress", "word_mastery",
                      "learner_confidence", "drill_assignments"):
            assert table in tables

    def test_versioned_tables_have_version_column(self, test_db):
        inspector = inspect(test_db.bind)
        for table in ("pronunciation_progress", "word_mastery", "learner_confidence"):
            assert "version" in [col["name"] for col in inspector.get_columns(table)]

    def test_attempt_number_unique_per_pair(self, test_db):
        for _ in range(2):
            test_db.add(PronunciationAttempt(
                learner_id="learner-1", target_unit_id="rural", attempt_number=1,
                reference_text="rural", overall_score=50, passing_threshold=70, passed=False
            ))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()

    def test_mastery_level_constraint(self, test_db):
        test_db.add(WordMastery(learner_id="learner-1", word="rural", mastery_level="expert"))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()

    def test_version_starts_at_one_and_increments(self, test_db):
        mastery = WordMastery(learner_id="learner-1", word="rural")
        test_db.add(mastery)
        test_db.commit()
        assert mastery.version == 1

        mastery.total_attempts = 1
        test_db.commit()
        assert mastery.version == 2


class TestIndexMigrations:
    """Test idempotent index creation on existing databases."""

    def test_fresh_schema_needs_nothing(self, test_db):
        assert apply_schema_migrations(test_db, bind=test_db.bind) == []

    def test_missing_index_recreated(self, test_db):
        test_db.execute(text("DROP INDEX idx_mastery_level"))
        test_db.commit()

        applied = apply_schema_migrations(test_db, bind=test_db.bind)

        assert applied == ["Created index idx_mastery_level"]
        indexes = [i["name"] for i in inspect(test_db.bind).get_indexes("word_mastery")]
        assert "idx_mastery_level" in indexes

    def test_every_migration_targets_a_model_index(self, test_db):
        inspector = inspect(test_db.bind)
        for table, index_name, _ in INDEX_MIGRATIONS:
            assert index_name in [i["name"] for i in inspector.get_indexes(table)]
