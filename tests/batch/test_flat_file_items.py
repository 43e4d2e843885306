"""
Tests for the delimited flat-file reader and writer.

Covers record mapping, restart offsets, malformed-line reporting, and the
writer's commit / rollback coupling with the chunk session.
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import event

from etl_kernel.db.engine import session_scope
from etl_kernel.exceptions import SourceReadError
from etl_batch.items.flat_file import (
    DelimitedLineAggregator,
    DelimitedRecordMapper,
    FlatFileItemReader,
    FlatFileItemWriter,
)
from etl_people.domain.records import AgeCount, Person

PERSON_FIELDS = ("first_name", "age", "email")


@dataclass(frozen=True)
class Reading:
    sensor: str
    value: Decimal
    valid: bool
    note: str | None = None


def _person_reader(path, **kwargs) -> FlatFileItemReader[Person]:
    return FlatFileItemReader(
        "file-reader", path, PERSON_FIELDS, DelimitedRecordMapper(Person), **kwargs,
    )


# =============================================================================
# DelimitedRecordMapper
# =============================================================================


class TestDelimitedRecordMapper:
    def test_converts_annotated_types(self):
        mapper = DelimitedRecordMapper(Reading)
        record = mapper({"sensor": "t1", "value": " 21.50", "valid": "yes", "note": ""})
        assert record == Reading("t1", Decimal("21.50"), True, None)

    def test_field_map_renames_columns(self):
        mapper = DelimitedRecordMapper(Person, field_map={"name": "first_name"})
        assert mapper({"name": "alice", "age": "30", "email": "a@x.org"}) == Person(
            "alice", 30, "a@x.org",
        )

    def test_unknown_column_is_error_when_strict(self):
        mapper = DelimitedRecordMapper(Person)
        with pytest.raises(ValueError, match="matches no field"):
            mapper({"first_name": "a", "age": "1", "email": "e", "phone": "5"})

    def test_unknown_column_dropped_when_lenient(self):
        mapper = DelimitedRecordMapper(Person, strict=False)
        record = mapper({"first_name": "a", "age": "1", "email": "e", "phone": "5"})
        assert record == Person("a", 1, "e")

    def test_bad_value_names_field(self):
        mapper = DelimitedRecordMapper(Person)
        with pytest.raises(ValueError, match="field 'age'"):
            mapper({"first_name": "a", "age": "thirty", "email": "e"})

    def test_rejects_non_dataclass(self):
        with pytest.raises(TypeError):
            DelimitedRecordMapper(dict)


# =============================================================================
# FlatFileItemReader
# =============================================================================


class TestFlatFileItemReader:
    def test_reads_records_in_order(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("alice,30,alice@example.com\nbob,40,bob@example.com\n")

        assert list(_person_reader(path).read()) == [
            Person("alice", 30, "alice@example.com"),
            Person("bob", 40, "bob@example.com"),
        ]

    def test_blank_and_comment_lines_are_not_items(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text(
            "# exported 2024-01-01\n"
            "alice,30,alice@example.com\n"
            "\n"
            "bob,40,bob@example.com\n"
        )
        reader = _person_reader(path, comment_prefixes=("#",))
        assert [p.first_name for p in reader.read()] == ["alice", "bob"]

    def test_hash_is_data_without_comment_prefixes(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("#hash,30,h@example.com\n")
        assert list(_person_reader(path).read()) == [Person("#hash", 30, "h@example.com")]

    def test_quoted_field_is_never_a_comment(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text('"#hash",30,h@example.com\n')
        reader = _person_reader(path, comment_prefixes=("#",))
        assert [p.first_name for p in reader.read()] == ["#hash"]

    def test_quoted_line_break_spans_lines(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text(
            '"multi\nline",30,m@example.com\n'
            "dave,41\n"
        )
        items = _person_reader(path).read()
        assert next(items) == Person("multi\nline", 30, "m@example.com")
        with pytest.raises(SourceReadError) as exc_info:
            next(items)
        assert exc_info.value.line_number == 3
        assert exc_info.value.position == 1

    def test_empty_comment_prefix_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="non-empty"):
            _person_reader(tmp_path / "people.csv", comment_prefixes=("",))

    def test_lines_to_skip_header(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("first_name,age,email\ncarol,30,carol@example.com\n")
        assert list(_person_reader(path, lines_to_skip=1).read()) == [
            Person("carol", 30, "carol@example.com"),
        ]

    def test_start_at_skips_committed_items(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("".join(f"p{i},{20 + i},p{i}@example.com\n" for i in range(5)))

        assert [p.first_name for p in _person_reader(path).read(start_at=3)] == [
            "p3", "p4",
        ]

    def test_start_at_does_not_map_skipped_lines(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("broken line\nbob,40,bob@example.com\n")
        assert list(_person_reader(path).read(start_at=1)) == [
            Person("bob", 40, "bob@example.com"),
        ]

    def test_custom_delimiter_and_quoting(self, tmp_path):
        path = tmp_path / "people.psv"
        path.write_text('"smith|jones"|30|sj@example.com\n')
        reader = _person_reader(path, delimiter="|")
        assert list(reader.read()) == [Person("smith|jones", 30, "sj@example.com")]

    def test_utf8_bom_is_stripped(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_bytes("\ufeffalice,30,alice@example.com\n".encode("utf-8"))
        assert next(_person_reader(path).read()).first_name == "alice"

    def test_wrong_field_count_reports_line(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text(
            "alice,30,alice@example.com\n"
            "# comment\n"
            "dave,41\n"
        )
        items = _person_reader(path, comment_prefixes=("#",)).read()
        assert next(items).first_name == "alice"
        with pytest.raises(SourceReadError) as exc_info:
            next(items)

        exc = exc_info.value
        assert exc.reader_name == "file-reader"
        assert exc.position == 1
        assert exc.line_number == 3
        assert exc.line == "dave,41"
        assert "expected 3 fields, found 2" in str(exc)

    def test_conversion_failure_is_source_read_error(self, tmp_path):
        path = tmp_path / "people.csv"
        path.write_text("erin,forty,erin@example.com\n")
        with pytest.raises(SourceReadError, match="field 'age'"):
            list(_person_reader(path).read())

    def test_missing_file_strict(self, tmp_path):
        with pytest.raises(SourceReadError, match="does not exist"):
            list(_person_reader(tmp_path / "absent.csv").read())

    def test_missing_file_lenient_logs_warning(self, tmp_path, captured_logs):
        reader = _person_reader(tmp_path / "absent.csv", strict=False)
        assert list(reader.read()) == []
        assert any(r["message"] == "reader_resource_missing" for r in captured_logs())


# =============================================================================
# DelimitedLineAggregator
# =============================================================================


class TestDelimitedLineAggregator:
    def test_default_uses_dataclass_field_order(self):
        assert DelimitedLineAggregator().aggregate(AgeCount(30, 2)) == "30,2"

    def test_field_extractor_controls_order(self):
        aggregator = DelimitedLineAggregator(lambda item: (item.count, item.age))
        assert aggregator.aggregate(AgeCount(30, 2)) == "2,30"

    def test_quotes_values_containing_delimiter(self):
        line = DelimitedLineAggregator().aggregate(Person("a,b", 1, "e"))
        assert line == '"a,b",1,e'

    def test_none_is_empty(self):
        assert DelimitedLineAggregator(delimiter=";").aggregate(("x", None)) == "x;"

    @pytest.mark.parametrize("value", ["multi\nline", "carriage\rreturn"])
    def test_quotes_values_containing_line_breaks(self, value):
        line = DelimitedLineAggregator().aggregate(Person(value, 1, "e"))
        assert line == f'"{value}",1,e'

    def test_quotes_leading_value_that_reads_as_comment(self):
        aggregator = DelimitedLineAggregator(comment_prefixes=("#",))
        assert aggregator.aggregate(Person("#hash", 1, "e")) == '"#hash",1,e'
        assert aggregator.aggregate(Person("a#", 1, "#e")) == "a#,1,#e"


# =============================================================================
# FlatFileItemWriter
# =============================================================================


class TestFlatFileItemWriter:
    def test_open_truncates_on_fresh_start(self, tmp_path):
        path = tmp_path / "out.csv"
        path.write_text("stale\n")
        FlatFileItemWriter("file-writer", path).open(0)
        assert path.read_text() == ""

    def test_open_keeps_committed_lines_on_restart(self, tmp_path):
        path = tmp_path / "out.csv"
        path.write_text("30,2\n")
        FlatFileItemWriter("file-writer", path).open(1)
        assert path.read_text() == "30,2\n"

    def test_open_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "out.csv"
        FlatFileItemWriter("file-writer", path).open(0)
        assert path.exists()

    def test_lines_appear_on_commit(self, tmp_path, session_factory):
        path = tmp_path / "out.csv"
        writer = FlatFileItemWriter("file-writer", path)
        writer.open(0)

        with session_scope(session_factory) as session:
            writer.write([AgeCount(30, 2), AgeCount(40, 1)], session)
            assert path.read_text() == ""

        assert path.read_text() == "30,2\n40,1\n"

    def test_chunks_append_in_commit_order(self, tmp_path, session_factory):
        path = tmp_path / "out.csv"
        writer = FlatFileItemWriter("file-writer", path)
        writer.open(0)
        for chunk in ([AgeCount(20, 1)], [AgeCount(30, 5), AgeCount(40, 2)]):
            with session_scope(session_factory) as session:
                writer.write(chunk, session)

        assert path.read_text() == "20,1\n30,5\n40,2\n"

    def test_rollback_before_commit_writes_nothing(self, tmp_path, session_factory):
        path = tmp_path / "out.csv"
        writer = FlatFileItemWriter("file-writer", path)
        writer.open(0)

        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                writer.write([AgeCount(30, 2)], session)
                raise RuntimeError("bookkeeping failed")

        assert path.read_text() == ""

    def test_failed_commit_truncates_appended_chunk(self, tmp_path, session_factory):
        path = tmp_path / "out.csv"
        writer = FlatFileItemWriter("file-writer", path)
        writer.open(0)
        with session_scope(session_factory) as session:
            writer.write([AgeCount(20, 1)], session)

        def _fail_commit(sess):
            raise RuntimeError("commit refused")

        with pytest.raises(RuntimeError, match="commit refused"):
            with session_scope(session_factory) as session:
                writer.write([AgeCount(30, 2)], session)
                event.listen(session, "before_commit", _fail_commit)

        assert path.read_text() == "20,1\n"

    def test_round_trip_through_reader(self, tmp_path, session_factory):
        path = tmp_path / "people.csv"
        people = [
            Person("alice", 30, "alice@example.com"),
            Person("o'hara, jr", 51, "oh@example.com"),
            Person('say "hi"', 7, "hi@example.com"),
        ]
        writer = FlatFileItemWriter(
            "file-writer",
            path,
            line_aggregator=DelimitedLineAggregator(
                lambda p: (p.first_name, p.age, p.email),
            ),
        )
        writer.open(0)
        with session_scope(session_factory) as session:
            writer.write(people, session)

        assert list(_person_reader(path).read()) == people


# =============================================================================
# Writer -> reader round trip (property-based)
# =============================================================================

# Surrogates cannot be encoded and NUL is not valid csv input.  A leading
# byte-order mark on the first record is taken for the file's BOM.
_field_text = st.text(
    st.characters(exclude_categories=("Cs",), exclude_characters="\x00\ufeff"),
    max_size=12,
)
_people = st.lists(
    st.builds(Person, first_name=_field_text, age=st.integers(), email=_field_text),
    max_size=8,
)
_ROUND_TRIP_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


def _write_people(path, people, session_factory, **aggregator_options):
    writer = FlatFileItemWriter(
        "file-writer",
        path,
        line_aggregator=DelimitedLineAggregator(**aggregator_options),
    )
    writer.open(0)
    with session_scope(session_factory) as session:
        writer.write(people, session)


@_ROUND_TRIP_SETTINGS
@given(people=_people)
def test_written_people_read_back_unchanged(tmp_path, session_factory, people):
    path = tmp_path / "people.csv"
    _write_people(path, people, session_factory)
    assert list(_person_reader(path).read()) == people


@_ROUND_TRIP_SETTINGS
@given(people=_people)
def test_round_trip_with_comment_prefixes(tmp_path, session_factory, people):
    path = tmp_path / "people.csv"
    _write_people(path, people, session_factory, comment_prefixes=("#", "//"))
    reader = _person_reader(path, comment_prefixes=("#", "//"))
    assert list(reader.read()) == people
