"""
Unit tests for the event-index ledger and the exam-set filter.

Covers the record layout, sorting and de-duplication, lookup by basename,
append mode, access-mode errors and malformed files.
"""

import numpy as np
import pytest

from hepnet.preprocessing.core.event_ledger import (
    BANNER,
    EventIndexLedger,
    ExamSetFilter,
    LedgerMode,
    read_ledger_entry,
)
from hepnet.preprocessing.core.exceptions import (
    DataIntegrityError,
    LedgerEntryNotFoundError,
    NotFoundError,
    StateError,
)


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "task_trainEvents.txt"


class TestLedgerWriting:
    """Record layout and normalisation of written lists."""

    def test_round_trip_sorts_and_deduplicates(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            written = ledger.write_list("a.dat", [5, 3, 3, 1])

        entry = read_ledger_entry(ledger_path, "a.dat")

        assert written == 3
        assert entry.indices == (1, 3, 5)
        assert entry.count == 3

    def test_record_layout(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("/data/samples/a.dat", [2, 0, 1])

        assert ledger_path.read_text() == (
            f"{BANNER}\n"
            "# Name of the file\n"
            "a.dat\n"
            "\n"
            "# Number of events\n"
            "3\n"
            "\n"
            "# Events tried for training\n"
            "0 1 2\n"
            "\n"
            "\n"
        )

    def test_indices_wrap_at_ten_per_line(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", range(25))

        lines = ledger_path.read_text().splitlines()
        start = lines.index("# Events tried for training") + 1

        assert lines[start] == " ".join(str(i) for i in range(10))
        assert lines[start + 1] == " ".join(str(i) for i in range(10, 20))
        assert lines[start + 2] == " ".join(str(i) for i in range(20, 25))

    def test_empty_list_is_recorded(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("empty.dat", [])
            ledger.write_list("b.dat", [7])

        assert read_ledger_entry(ledger_path, "empty.dat").count == 0
        assert read_ledger_entry(ledger_path, "b.dat").indices == (7,)

    def test_write_mode_truncates(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1])
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("b.dat", [2])

        with pytest.raises(LedgerEntryNotFoundError):
            read_ledger_entry(ledger_path, "a.dat")

    def test_append_mode_keeps_previous_records(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1, 2])
        with EventIndexLedger(ledger_path, LedgerMode.APPEND) as ledger:
            ledger.write_list("b.dat", [3])

        with EventIndexLedger(ledger_path, LedgerMode.READ) as ledger:
            entries = ledger.read_all()

        assert entries["a.dat"].indices == (1, 2)
        assert entries["b.dat"].indices == (3,)

    def test_parent_directories_are_created(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "ledger.txt"
        with EventIndexLedger(path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1])

        assert path.exists()


class TestLedgerReading:
    """Lookup semantics and error handling."""

    def test_lookup_strips_directories(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("/data/run1/a.dat", [4])

        assert read_ledger_entry(ledger_path, "a.dat").indices == (4,)
        assert read_ledger_entry(ledger_path, "other/dir/a.dat").indices == (4,)

    def test_last_matching_record_wins(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1, 2])
            ledger.write_list("b.dat", [3])
            ledger.write_list("a.dat", [7])

        assert read_ledger_entry(ledger_path, "a.dat").indices == (7,)

    def test_missing_source_raises_not_found(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1])

        with pytest.raises(LedgerEntryNotFoundError) as exc_info:
            read_ledger_entry(ledger_path, "missing.dat")

        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.source_name == "missing.dat"

    def test_entry_membership(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [10, 2, 6])

        entry = read_ledger_entry(ledger_path, "a.dat")

        assert 6 in entry
        assert 5 not in entry
        assert 11 not in entry

    def test_missing_file_cannot_be_read(self, tmp_path):
        with pytest.raises(DataIntegrityError):
            EventIndexLedger(tmp_path / "absent.txt", LedgerMode.READ)

    def test_truncated_record_is_rejected(self, ledger_path):
        ledger_path.write_text(
            f"{BANNER}\n# Name of the file\na.dat\n\n# Number of events\n5\n\n"
            "# Events tried for training\n1 2\n\n\n"
        )

        with pytest.raises(DataIntegrityError, match="declares 5 events"):
            read_ledger_entry(ledger_path, "a.dat")

    def test_malformed_count_is_rejected(self, ledger_path):
        ledger_path.write_text(
            f"{BANNER}\n# Name of the file\na.dat\n\n# Number of events\nmany\n\n"
            "# Events tried for training\n1 2\n\n\n"
        )

        with pytest.raises(DataIntegrityError, match="malformed event count"):
            read_ledger_entry(ledger_path, "a.dat")


class TestLedgerAccessModes:
    """Reads and writes are only allowed in the matching mode."""

    def test_write_on_read_ledger_raises(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("a.dat", [1])

        with EventIndexLedger(ledger_path, LedgerMode.READ) as ledger:
            with pytest.raises(StateError):
                ledger.write_list("a.dat", [2])

    def test_read_on_write_ledger_raises(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            with pytest.raises(StateError):
                ledger.read_list("a.dat")

    def test_closed_ledger_raises(self, ledger_path):
        ledger = EventIndexLedger(ledger_path, LedgerMode.WRITE)
        ledger.close()

        assert ledger.closed
        with pytest.raises(StateError):
            ledger.write_list("a.dat", [1])


class TestExamSetFilter:
    """Admissibility of events for evaluation sets."""

    @pytest.fixture
    def filled_ledger(self, ledger_path):
        with EventIndexLedger(ledger_path, LedgerMode.WRITE) as ledger:
            ledger.write_list("sample.dat", [1, 3, 5])
        return ledger_path

    def test_tried_events_are_excluded(self, filled_ledger):
        exam_filter = ExamSetFilter(filled_ledger, "/path/to/sample.dat")

        assert exam_filter.list_found
        assert exam_filter.n_tried == 3
        assert not exam_filter.is_exam_event(3)
        assert exam_filter.is_exam_event(2)
        np.testing.assert_array_equal(exam_filter.admissible_indices(10), [0, 2, 4, 6, 7, 8, 9])

    def test_weight_factor_compensates_excluded_events(self, filled_ledger):
        exam_filter = ExamSetFilter(filled_ledger, "sample.dat")

        assert exam_filter.exam_weight_factor(10) == pytest.approx(10 / 7)

    def test_unknown_source_is_fully_admissible(self, filled_ledger):
        exam_filter = ExamSetFilter(filled_ledger, "other.dat")

        assert not exam_filter.list_found
        assert exam_filter.exam_weight_factor(10) == 1.0
        assert len(exam_filter.admissible_indices(10)) == 10

    def test_fully_tried_source_has_no_exam_events(self, filled_ledger):
        exam_filter = ExamSetFilter(filled_ledger, "sample.dat")

        with pytest.raises(DataIntegrityError):
            exam_filter.exam_weight_factor(3)
