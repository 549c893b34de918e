# /hepnet/src/hepnet/preprocessing/core/event_ledger.py

"""
EventIndexLedger: Persistent Record of Events Offered to Training

Keeps, per source, the sorted list of event indices that were ever tried for
the training set. An event that was tried but failed the selection still
belongs to the list and must never be used for an evaluation set.

Key Features:
- Line-oriented text format, one self-delimited record per source
- Sorting and de-duplication at write time
- Append mode that extends a ledger without rewriting prior records
- Lookup by source basename; the most recent matching record wins
- Exam-set filter answering "may this index be used for evaluation?"

File layout of one record:

    ###########################################################################
    # Name of the file
    sample.root

    # Number of events
    3

    # Events tried for training
    1 3 5


"""

import bisect
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union

import numpy as np

from .exceptions import DataIntegrityError, LedgerEntryNotFoundError, StateError


BANNER = "#" * 75
NAME_HEADER = "# Name of the file"
COUNT_HEADER = "# Number of events"
EVENTS_HEADER = "# Events tried for training"
INDICES_PER_LINE = 10


class LedgerMode(Enum):
    """Access mode of a ledger file."""
    WRITE = "write"    # truncate and write new records
    APPEND = "append"  # extend an existing file
    READ = "read"      # read records back


@dataclass(frozen=True)
class LedgerEntry:
    """One record of the ledger: a source basename and its tried indices."""
    source_name: str
    indices: Tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.indices)

    def __contains__(self, index: int) -> bool:
        position = bisect.bisect_left(self.indices, index)
        return position < len(self.indices) and self.indices[position] == index


def source_basename(source_name: str) -> str:
    """Strip any directories from a source identifier."""
    return source_name[source_name.rfind('/') + 1:]


def normalize_indices(indices: Iterable[int]) -> List[int]:
    """Return the indices sorted in ascending order with duplicates removed."""
    return sorted({int(index) for index in indices})


class EventIndexLedger:
    """
    Reads and writes the ledger of events tried for training.

    The file is opened when the ledger is created and stays open until
    ``close()`` is called or the context manager exits. A ledger opened for
    reading cannot be written to and vice versa.

    Examples:
        with EventIndexLedger("task_trainEvents.txt", LedgerMode.WRITE) as ledger:
            ledger.write_list("data/ttbar.root", [5, 3, 3, 1])

        with EventIndexLedger("task_trainEvents.txt", LedgerMode.READ) as ledger:
            entry = ledger.read_list("ttbar.root")  # entry.indices == (1, 3, 5)
    """

    _OPEN_MODES = {
        LedgerMode.WRITE: 'w',
        LedgerMode.APPEND: 'a',
        LedgerMode.READ: 'r',
    }

    def __init__(self, path: Union[str, Path], mode: LedgerMode = LedgerMode.WRITE):
        """
        Open the ledger file.

        Args:
            path: Location of the ledger file
            mode: Access mode

        Raises:
            DataIntegrityError: If the file cannot be opened for reading
        """
        self.path = Path(path)
        self.mode = mode
        self.logger = logging.getLogger(__name__)

        if mode != LedgerMode.READ:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._stream = open(self.path, self._OPEN_MODES[mode])
        except OSError as e:
            raise DataIntegrityError(
                f"Cannot open ledger file '{self.path}' for {mode.value} access: {e}"
            ) from e

    def __enter__(self) -> 'EventIndexLedger':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def close(self) -> None:
        if not self._stream.closed:
            self._stream.close()

    def write_list(self, source_name: str, indices: Iterable[int]) -> int:
        """
        Append a record with the indices tried for the given source.

        The indices are sorted and de-duplicated before writing, and the
        recorded count equals the number of distinct indices written.

        Args:
            source_name: Source identifier; directories are stripped off
            indices: Event indices tried for training

        Returns:
            Number of distinct indices written

        Raises:
            StateError: If the ledger was opened for reading
        """
        if self.mode == LedgerMode.READ:
            raise StateError(f"Ledger '{self.path}' is opened for reading, cannot write to it")
        self._ensure_open()

        events = normalize_indices(indices)
        basename = source_basename(source_name)

        lines = [
            BANNER,
            NAME_HEADER,
            basename,
            "",
            COUNT_HEADER,
            str(len(events)),
            "",
            EVENTS_HEADER,
        ]

        if events:
            for start in range(0, len(events), INDICES_PER_LINE):
                chunk = events[start:start + INDICES_PER_LINE]
                lines.append(" ".join(str(index) for index in chunk))
        else:
            lines.append("")

        # Records end with two blank lines
        self._stream.write("\n".join(lines) + "\n\n\n")
        self._stream.flush()

        self.logger.info("ledger.list_written", extra={
            "ledger_path": str(self.path),
            "source": basename,
            "n_indices": len(events)
        })

        return len(events)

    def read_list(self, source_name: str) -> LedgerEntry:
        """
        Find the most recent record for the given source.

        Args:
            source_name: Source identifier; directories are stripped off

        Returns:
            The matching LedgerEntry

        Raises:
            StateError: If the ledger was opened for writing
            LedgerEntryNotFoundError: If the source has no record
            DataIntegrityError: If the file is malformed
        """
        basename = source_basename(source_name)
        match = None

        for entry in self._scan():
            if entry.source_name == basename:
                match = entry

        if match is None:
            self.logger.debug("ledger.list_not_found", extra={
                "ledger_path": str(self.path),
                "source": basename
            })
            raise LedgerEntryNotFoundError(basename, str(self.path))

        return match

    def read_all(self) -> Dict[str, LedgerEntry]:
        """Return the most recent record of every source in the ledger."""
        return {entry.source_name: entry for entry in self._scan()}

    def _ensure_open(self) -> None:
        if self._stream.closed:
            raise StateError(f"Ledger '{self.path}' is already closed")

    def _scan(self) -> List[LedgerEntry]:
        """Parse every record of the file in order of appearance."""
        if self.mode != LedgerMode.READ:
            raise StateError(f"Ledger '{self.path}' is opened for writing, cannot read from it")
        self._ensure_open()

        self._stream.seek(0)
        lines = self._stream.read().splitlines()

        entries = []
        position = 0

        while position < len(lines):
            if lines[position].strip() != NAME_HEADER:
                position += 1
                continue

            entry, position = self._parse_record(lines, position)
            entries.append(entry)

        return entries

    def _parse_record(self, lines: List[str], position: int) -> Tuple[LedgerEntry, int]:
        """Parse one record starting at its name header. Returns the entry and the next line."""
        if position + 1 >= len(lines):
            raise DataIntegrityError(f"Ledger '{self.path}' ends inside a record header")

        basename = lines[position + 1].strip()
        position = self._skip_to(lines, position + 2, COUNT_HEADER, basename)

        try:
            count = int(lines[position + 1].strip())
        except (IndexError, ValueError) as e:
            raise DataIntegrityError(
                f"Ledger '{self.path}' has a malformed event count for '{basename}'"
            ) from e

        position = self._skip_to(lines, position + 2, EVENTS_HEADER, basename) + 1

        tokens: List[str] = []
        while len(tokens) < count and position < len(lines):
            tokens.extend(lines[position].split())
            position += 1

        if len(tokens) < count:
            raise DataIntegrityError(
                f"Ledger '{self.path}' declares {count} events for '{basename}' "
                f"but only {len(tokens)} are present"
            )

        try:
            indices = tuple(int(token) for token in tokens[:count])
        except ValueError as e:
            raise DataIntegrityError(
                f"Ledger '{self.path}' contains a non-integer index for '{basename}'"
            ) from e

        return LedgerEntry(source_name=basename, indices=indices), position

    def _skip_to(self, lines: List[str], position: int, header: str, basename: str) -> int:
        while position < len(lines) and lines[position].strip() != header:
            position += 1

        if position >= len(lines):
            raise DataIntegrityError(
                f"Ledger '{self.path}' record for '{basename}' is missing '{header}'"
            )
        return position


def read_ledger_entry(path: Union[str, Path], source_name: str) -> LedgerEntry:
    """Open a ledger for reading and fetch one record. Raises LedgerEntryNotFoundError on a miss."""
    with EventIndexLedger(path, LedgerMode.READ) as ledger:
        return ledger.read_list(source_name)


class ExamSetFilter:
    """
    Decides which events of a source are admissible for an evaluation set.

    Events tried for training are excluded. If the source is absent from the
    ledger, the whole source is assumed untouched and every event is
    admissible.
    """

    def __init__(self, ledger_path: Union[str, Path], source_name: str):
        self.ledger_path = Path(ledger_path)
        self.source_name = source_basename(source_name)
        self.logger = logging.getLogger(__name__)

        try:
            entry = read_ledger_entry(self.ledger_path, self.source_name)
            self._tried = entry.indices
            self.list_found = True
        except LedgerEntryNotFoundError:
            self._tried = ()
            self.list_found = False
            self.logger.warning("exam_filter.source_not_in_ledger", extra={
                "ledger_path": str(self.ledger_path),
                "source": self.source_name
            })

    @property
    def n_tried(self) -> int:
        return len(self._tried)

    def is_exam_event(self, index: int) -> bool:
        """True if the event was never tried for training."""
        position = bisect.bisect_left(self._tried, index)
        return not (position < len(self._tried) and self._tried[position] == index)

    def admissible_indices(self, n_entries: int) -> np.ndarray:
        """All indices in ``range(n_entries)`` that may be used for evaluation."""
        mask = np.ones(n_entries, dtype=bool)
        tried = np.asarray([i for i in self._tried if i < n_entries], dtype=np.int64)
        mask[tried] = False
        return np.flatnonzero(mask)

    def exam_weight_factor(self, n_entries: int) -> float:
        """
        Weight factor compensating the exam set for the excluded events.

        Raises:
            DataIntegrityError: If every event of the source was tried for training
        """
        n_left = n_entries - self.n_tried
        if n_left <= 0:
            raise DataIntegrityError(
                f"All {n_entries} events of '{self.source_name}' were tried for training"
            )
        return n_entries / n_left
