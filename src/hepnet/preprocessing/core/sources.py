# /hepnet/src/hepnet/preprocessing/core/sources.py

"""
Labeled Sources and Random-Access Sample Readers

A source is a named, sized collection of labeled cases. The training-set
builder only needs random access by index to an evaluated weight expression
and to the evaluated feature expressions, plus the total entry count. This
module describes sources and provides a reader implementation over pandas
DataFrames, where expressions are evaluated with ``DataFrame.eval``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, DataIntegrityError
from .event_ledger import source_basename


SIGNAL = 1
BACKGROUND = 0

# Used when a sample sets neither an absolute nor a relative limit
DEFAULT_MAX_FRACTION = 0.5


@dataclass(frozen=True)
class SampleSource:
    """
    One input sample contributing to the training set.

    Attributes:
        file_name: Identifier of the source (usually a path)
        label: Class label, 1 for signal and 0 for background
        train_weight: Expression giving selection and weight; zero rejects the event
        max_events: Cap on the number of kept events (None for no cap)
        max_fraction: Cap on the fraction of the source that may be tried
        event_list_file: Ledger file with an explicit list of indices to use
    """
    file_name: str
    label: int
    train_weight: str = "1"
    max_events: Optional[int] = None
    max_fraction: float = DEFAULT_MAX_FRACTION
    event_list_file: Optional[str] = None

    @property
    def short_name(self) -> str:
        return source_basename(self.file_name)

    @property
    def uses_event_list(self) -> bool:
        return bool(self.event_list_file)

    def validate(self) -> List[str]:
        """Validate sample parameters."""
        errors = []

        if not self.file_name:
            errors.append("Sample file name cannot be empty")

        if self.label not in (SIGNAL, BACKGROUND):
            errors.append(f"Sample label must be 0 or 1: {self.label}")

        if not self.train_weight:
            errors.append(f"Train weight expression cannot be empty for '{self.file_name}'")

        if self.max_events is not None and self.max_events <= 0:
            errors.append(f"Max events must be positive for '{self.file_name}': {self.max_events}")

        if not 0 < self.max_fraction <= 1:
            errors.append(
                f"Max fraction must be in (0, 1] for '{self.file_name}': {self.max_fraction}"
            )

        return errors


def parse_event_limits(limits: Optional[Sequence[Union[str, int, float]]]) -> Tuple[Optional[int], float]:
    """
    Interpret a sample's list of size limits.

    Entries ending with '%' are fractions of the source, other entries are
    absolute numbers of events. If several entries of one kind are given,
    the smallest one is used.

    Returns:
        Tuple of (max_events, max_fraction)

    Raises:
        ConfigurationError: If an entry is malformed or non-positive
    """
    if limits is None:
        return None, DEFAULT_MAX_FRACTION

    if isinstance(limits, (str, int, float)):
        limits = [limits]

    if len(limits) == 0:
        raise ConfigurationError("List of event limits must contain at least one element")

    if len(limits) > 2:
        logging.getLogger(__name__).warning("sample_limits.unexpected_length", extra={
            "n_limits": len(limits)
        })

    max_events: Optional[int] = None
    max_fraction: Optional[float] = None

    for raw in limits:
        text = str(raw).strip()

        try:
            if text.endswith('%'):
                fraction = float(text[:-1]) / 100.
                if fraction <= 0:
                    raise ConfigurationError(f"Event limit '{text}' makes the training set empty")
                max_fraction = fraction if max_fraction is None else min(max_fraction, fraction)
            else:
                n_events = int(text)
                if n_events <= 0:
                    raise ConfigurationError(f"Event limit '{text}' makes the training set empty")
                max_events = n_events if max_events is None else min(max_events, n_events)
        except ValueError as e:
            raise ConfigurationError(f"Malformed event limit '{text}'") from e

    return max_events, (1.0 if max_fraction is None else min(max_fraction, 1.0))


class SampleReader(ABC):
    """Random-access view of one source with evaluated weight and feature expressions."""

    @property
    @abstractmethod
    def n_entries(self) -> int:
        """Total number of entries in the source."""

    @abstractmethod
    def weight(self, index: int) -> float:
        """Evaluated weight expression for the given entry."""

    @abstractmethod
    def features(self, index: int) -> np.ndarray:
        """Evaluated feature expressions for the given entry, as a new array."""


def evaluate_expression(frame: pd.DataFrame, expression: str, source_name: str = "") -> np.ndarray:
    """
    Evaluate an expression over every row of a frame.

    Constant expressions (e.g. "1") are broadcast to the frame length.

    Raises:
        DataIntegrityError: If the expression cannot be evaluated
    """
    try:
        values = frame.eval(expression)
        values = np.asarray(values, dtype=np.float64)
    except Exception as e:
        raise DataIntegrityError(
            f"Expression '{expression}' cannot be evaluated for '{source_name}' "
            f"(wrong column name or syntax): {e}"
        ) from e

    if values.ndim == 0:
        values = np.full(len(frame), float(values))
    elif values.shape != (len(frame),):
        raise DataIntegrityError(
            f"Expression '{expression}' for '{source_name}' does not yield one value per entry"
        )

    return values


class FrameSampleReader(SampleReader):
    """SampleReader backed by a pandas DataFrame."""

    def __init__(self, frame: pd.DataFrame, variables: Sequence[str],
                 weight_expression: str, source_name: str = ""):
        self.source_name = source_name
        self._weights = evaluate_expression(frame, weight_expression, source_name)

        if variables:
            self._features = np.column_stack([
                evaluate_expression(frame, variable, source_name) for variable in variables
            ])
        else:
            self._features = np.empty((len(frame), 0))

    @property
    def n_entries(self) -> int:
        return len(self._weights)

    def weight(self, index: int) -> float:
        return float(self._weights[index])

    def features(self, index: int) -> np.ndarray:
        return self._features[index].copy()


ReaderFactory = Callable[[SampleSource, Sequence[str]], SampleReader]


def open_csv_sample(sample: SampleSource, variables: Sequence[str]) -> SampleReader:
    """Default reader factory: load the sample from a CSV file."""
    path = Path(sample.file_name)

    try:
        frame = pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataIntegrityError(f"Input file '{path}' is not found or is not a valid table: {e}") from e

    return FrameSampleReader(frame, variables, sample.train_weight, sample.file_name)


class FrameRepository:
    """
    Reader factory serving in-memory frames keyed by sample file name.

    Examples:
        repository = FrameRepository({"sig.csv": signal_frame, "bkg.csv": background_frame})
        builder = TrainingSetBuilder(variables, open_reader=repository)
    """

    def __init__(self, frames: Mapping[str, pd.DataFrame]):
        self.frames = dict(frames)

    def __call__(self, sample: SampleSource, variables: Sequence[str]) -> SampleReader:
        if sample.file_name not in self.frames:
            raise DataIntegrityError(f"Input sample '{sample.file_name}' is not available")

        return FrameSampleReader(
            self.frames[sample.file_name], variables, sample.train_weight, sample.file_name
        )
