"""
Tests for kernel infrastructure: sequence allocation, fingerprints, clock and
engine helpers.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID

import pytest
from sqlalchemy import text

from etl_kernel.db.engine import create_engine_for_url, drop_tables, session_scope
from etl_kernel.domain.clock import EPOCH, DeterministicClock, SystemClock
from etl_kernel.services.sequence_service import SequenceService
from etl_kernel.utils.hashing import canonical_json, fingerprint, to_json_value


# =============================================================================
# SequenceService
# =============================================================================


class TestSequenceService:
    def test_first_value_is_one(self, session_factory):
        with session_scope(session_factory) as session:
            assert SequenceService(session).next_value("demo") == 1

    def test_strictly_monotonic_across_transactions(self, session_factory):
        values = []
        for _ in range(5):
            with session_scope(session_factory) as session:
                values.append(SequenceService(session).next_value("demo"))
        assert values == [1, 2, 3, 4, 5]

    def test_rolled_back_value_is_not_consumed(self, session_factory):
        with session_scope(session_factory) as session:
            SequenceService(session).next_value("demo")

        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                SequenceService(session).next_value("demo")
                raise RuntimeError("abort")

        with session_scope(session_factory) as session:
            service = SequenceService(session)
            assert service.current_value("demo") == 1
            assert service.next_value("demo") == 2

    def test_sequences_are_independent(self, session_factory):
        with session_scope(session_factory) as session:
            service = SequenceService(session)
            service.next_value("a")
            service.next_value("a")
            assert service.next_value("b") == 1
            assert service.current_value("unused") is None


# =============================================================================
# Hashing
# =============================================================================


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": "x"}) == fingerprint({"b": "x", "a": 1})

    def test_value_changes_fingerprint(self):
        assert fingerprint({"run.id": 1}) != fingerprint({"run.id": 2})

    def test_equivalent_spellings_match(self):
        assert fingerprint({"input": Path("/data/in.csv"), "rate": Decimal("1.50")}) == (
            fingerprint({"input": "/data/in.csv", "rate": "1.5"})
        )

    def test_fingerprint_is_sha256_hex(self):
        digest = fingerprint({})
        assert len(digest) == 64
        int(digest, 16)

    def test_canonical_form(self):
        data = {
            "b": Decimal("1.50"),
            "a": Path("/data/in.csv"),
            "c": UUID("12345678-1234-5678-1234-567812345678"),
            "d": (1, 2),
        }
        assert canonical_json(data) == (
            '{"a":"/data/in.csv","b":"1.5",'
            '"c":"12345678-1234-5678-1234-567812345678","d":[1,2]}'
        )

    def test_to_json_value_nested(self):
        assert to_json_value({"when": datetime(2024, 1, 2, tzinfo=timezone.utc), 3: [Path("x")]}) == {
            "when": "2024-01-02T00:00:00+00:00",
            "3": ["x"],
        }

    def test_unsupported_type_raises(self):
        with pytest.raises(TypeError):
            canonical_json({"x": object()})


# =============================================================================
# Clock
# =============================================================================


class TestClock:
    def test_deterministic_clock_is_fixed(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == EPOCH

    def test_advance_by_seconds_or_timedelta(self):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        assert clock.advance(10) == start + timedelta(seconds=10)
        assert clock.advance(timedelta(minutes=1)) == start + timedelta(seconds=70)
        assert clock.now() == start + timedelta(seconds=70)

    def test_step_spaces_successive_readings(self):
        clock = DeterministicClock(step=timedelta(seconds=5))
        first, second = clock.now(), clock.now()
        assert second - first == timedelta(seconds=5)
        assert clock.peek() == second + timedelta(seconds=5)

    def test_set_time(self):
        clock = DeterministicClock()
        clock.advance(30)
        target = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is timezone.utc


# =============================================================================
# Engine helpers
# =============================================================================


class TestSqliteEngine:
    def test_wal_mode(self, tmp_path):
        engine = create_engine_for_url(f"sqlite:///{tmp_path / 'wal.db'}")
        try:
            with engine.connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
            assert mode.lower() == "wal"
        finally:
            engine.dispose()

    def test_session_scope_rolls_back_on_error(self, engine, session_factory):
        with pytest.raises(ValueError):
            with session_scope(session_factory) as session:
                session.execute(
                    text(
                        "INSERT INTO people (age, first_name, email) "
                        "VALUES (1, 'x', 'x@example.com')"
                    )
                )
                raise ValueError("boom")

        with engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM people")).scalar() == 0

    def test_savepoint_rollback_keeps_outer_work(self, engine, session_factory):
        with session_scope(session_factory) as session:
            session.execute(
                text(
                    "INSERT INTO people (age, first_name, email) "
                    "VALUES (1, 'kept', 'k@example.com')"
                )
            )
            savepoint = session.begin_nested()
            session.execute(
                text(
                    "INSERT INTO people (age, first_name, email) "
                    "VALUES (2, 'dropped', 'd@example.com')"
                )
            )
            savepoint.rollback()

        with engine.connect() as conn:
            names = conn.execute(text("SELECT first_name FROM people")).scalars().all()
        assert names == ["kept"]

    def test_drop_tables_removes_schema(self, engine):
        drop_tables(engine)
        with engine.connect() as conn:
            tables = conn.exec_driver_sql(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).scalars().all()
        assert "people" not in tables
        assert "batch_job_executions" not in tables
