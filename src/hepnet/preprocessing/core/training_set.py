# /hepnet/src/hepnet/preprocessing/core/training_set.py

"""
TrainingSetBuilder: Leakage-Safe Sampling of Labeled, Weighted Events

Builds the training set from one or more labeled sources and records, in the
event-index ledger, every event that was offered to training so that a later
evaluation set never reuses it.

Key Features:
- Explicit-list mode: use exactly the indices recorded for a source in a ledger
- Quota mode: walk a shuffled index order until a fraction or count limit is hit
- Extension runs that only scan the still-untried complement of a source
- Per-source weight correction for the subsampling rate
- Global class reweighting (common normalisation or equal class totals)

Architecture:
- Random generator and source readers are injected, so sampling is reproducible
- The builder owns the event collection until it is handed to the transforms
- Every fatal condition is raised as a DataIntegrityError or ConfigurationError
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .event_ledger import (
    EventIndexLedger,
    LedgerMode,
    normalize_indices,
    source_basename,
)
from .exceptions import ConfigurationError, DataIntegrityError, LedgerEntryNotFoundError
from .sources import BACKGROUND, SIGNAL, ReaderFactory, SampleReader, SampleSource, open_csv_sample


class Reweighting(Enum):
    """Global reweighting policy applied after all sources are merged."""
    COMMON = "common"    # total weight normalised to the number of events
    ONE_TO_ONE = "1:1"   # each class normalised to half the number of events

    @classmethod
    def from_string(cls, value: Union[str, 'Reweighting']) -> 'Reweighting':
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower()
        for policy in cls:
            if policy.value == normalized:
                return policy

        raise ConfigurationError(
            f"Unknown reweighting policy '{value}'. Expected one of: "
            f"{', '.join(policy.value for policy in cls)}"
        )


@dataclass
class Event:
    """One training case. Weight and features are mutated in place by later stages."""
    label: int
    weight: float
    features: np.ndarray


class TrainingSet:
    """
    Ordered collection of events sharing one feature layout.

    The feature count is fixed at construction and checked for every event.
    """

    def __init__(self, feature_names: Sequence[str]):
        self.feature_names = tuple(feature_names)
        self.events: List[Event] = []

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def add(self, event: Event) -> None:
        if len(event.features) != self.n_features:
            raise ValueError(
                f"Event has {len(event.features)} features, expected {self.n_features}"
            )
        if event.label not in (SIGNAL, BACKGROUND):
            raise ValueError(f"Event label must be 0 or 1: {event.label}")
        self.events.append(event)

    def extend(self, events: Sequence[Event]) -> None:
        for event in events:
            self.add(event)

    def class_counts(self) -> Dict[int, int]:
        counts = {SIGNAL: 0, BACKGROUND: 0}
        for event in self.events:
            counts[event.label] += 1
        return counts

    def class_weight_sums(self) -> Dict[int, float]:
        sums = {SIGNAL: 0., BACKGROUND: 0.}
        for event in self.events:
            sums[event.label] += event.weight
        return sums

    def reweight(self, policy: Reweighting) -> Dict[int, float]:
        """
        Rescale all weights according to the global policy.

        Returns:
            Scale factor applied to each class

        Raises:
            DataIntegrityError: If a class has no events or zero total weight
        """
        counts = self.class_counts()
        for label, name in ((SIGNAL, "signal"), (BACKGROUND, "background")):
            if counts[label] == 0:
                raise DataIntegrityError(f"No {name} events in the training set")

        n_events = len(self.events)
        sums = self.class_weight_sums()

        if policy == Reweighting.COMMON:
            total = sums[SIGNAL] + sums[BACKGROUND]
            if total == 0:
                raise DataIntegrityError("Total weight of the training set is zero")
            factor = n_events / total
            factors = {SIGNAL: factor, BACKGROUND: factor}
        else:
            factors = {}
            for label, name in ((SIGNAL, "signal"), (BACKGROUND, "background")):
                if sums[label] == 0:
                    raise DataIntegrityError(f"Total {name} weight is zero")
                factors[label] = 0.5 * n_events / sums[label]

        for event in self.events:
            event.weight *= factors[event.label]

        return factors

    def to_frame(self) -> pd.DataFrame:
        """Tabular layout expected by the trainer: target, weight, var1..varN."""
        columns = ["target", "weight"] + [f"var{i + 1}" for i in range(self.n_features)]

        if self.events:
            features = np.vstack([event.features for event in self.events])
        else:
            features = np.empty((0, self.n_features))

        frame = pd.DataFrame(features, columns=columns[2:])
        frame.insert(0, "weight", [event.weight for event in self.events])
        frame.insert(0, "target", np.array([event.label for event in self.events], dtype=np.int64))
        frame.attrs["feature_names"] = list(self.feature_names)
        return frame

    def write_csv(self, path: Union[str, Path]) -> Path:
        """Persist the training table. Floats are written with full precision."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False, float_format="%.17g")
        return path


@dataclass
class SamplingReport:
    """Statistics of one sample's contribution to the training set."""
    source_name: str
    label: int
    mode: str
    n_entries: int
    n_tried: int
    n_kept: int
    weight_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_name': self.source_name,
            'label': self.label,
            'mode': self.mode,
            'n_entries': self.n_entries,
            'n_tried': self.n_tried,
            'n_kept': self.n_kept,
            'weight_factor': self.weight_factor
        }


@dataclass
class BuildResult:
    """Training set plus the bookkeeping needed to update the ledger."""
    training_set: TrainingSet
    tried_indices: Dict[str, List[int]]
    reports: List[SamplingReport] = field(default_factory=list)
    reweighting_factors: Dict[int, float] = field(default_factory=dict)
    ledger_path: Optional[Path] = None


class TrainingSetBuilder:
    """
    Samples events from labeled sources and maintains the event-index ledger.

    Examples:
        builder = TrainingSetBuilder(["pt", "eta"], rng=np.random.default_rng(1))
        result = builder.build(samples, ledger_path="task_trainEvents.txt")
        training_set = result.training_set
    """

    def __init__(self, variables: Sequence[str],
                 reweighting: Union[str, Reweighting] = Reweighting.ONE_TO_ONE,
                 rng: Union[None, int, np.random.Generator] = None,
                 open_reader: Optional[ReaderFactory] = None):
        """
        Initialize the builder.

        Args:
            variables: Feature expressions, evaluated per event
            reweighting: Global reweighting policy
            rng: Random generator (or seed) driving the quota-mode shuffle
            open_reader: Factory returning a SampleReader for a sample
        """
        if not variables:
            raise ConfigurationError("At least one input variable is required")

        self.variables = list(variables)
        self.reweighting = Reweighting.from_string(reweighting)
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        self.open_reader = open_reader or open_csv_sample
        self.logger = logging.getLogger(__name__)

    def build(self, samples: Sequence[SampleSource],
              ledger_path: Optional[Union[str, Path]] = None,
              extend_ledger: bool = False) -> BuildResult:
        """
        Build the training set.

        Args:
            samples: Samples to draw events from, in order
            ledger_path: Ledger to record the tried indices in (None to skip)
            extend_ledger: Exclude the indices already recorded in the ledger
                and append new records instead of rewriting the file

        Returns:
            BuildResult with the reweighted training set

        Raises:
            ConfigurationError: If a sample is misconfigured or an existing ledger
                would be overwritten
            DataIntegrityError: If a source is empty or a class is missing
        """
        start_time = time.time()

        if not samples:
            raise ConfigurationError("No input samples given")

        for sample in samples:
            errors = sample.validate()
            if errors:
                raise ConfigurationError(f"Invalid sample '{sample.file_name}': {'; '.join(errors)}")

        if ledger_path is not None and not extend_ledger and Path(ledger_path).exists():
            raise ConfigurationError(
                f"Ledger '{ledger_path}' already records events tried for training. "
                f"Extend it or choose another ledger file."
            )

        prior = self._read_prior_ledger(ledger_path) if extend_ledger else {}

        training_set = TrainingSet(self.variables)
        tried: Dict[str, List[int]] = {}
        reports = []

        for sample in samples:
            reader = self.open_reader(sample, self.variables)
            n_entries = reader.n_entries

            if n_entries == 0:
                raise DataIntegrityError(f"Input sample '{sample.file_name}' contains no events")

            if sample.uses_event_list:
                if sample.max_events is not None:
                    self.logger.warning("training_set.limits_ignored", extra={
                        "source": sample.file_name,
                        "event_list_file": sample.event_list_file
                    })
                events, attempted = self._sample_event_list(sample, reader)
                mode = "event_list"
            else:
                events, attempted = self._sample_quota(
                    sample, reader,
                    already_tried=tried.get(sample.file_name, []),
                    excluded=prior.get(sample.short_name, ())
                )
                mode = "quota"

            n_tried = len(attempted)
            factor = n_entries / n_tried if n_tried else 0.
            for event in events:
                event.weight *= factor

            training_set.extend(events)
            tried[sample.file_name] = normalize_indices(tried.get(sample.file_name, []) + attempted)

            report = SamplingReport(
                source_name=sample.file_name,
                label=sample.label,
                mode=mode,
                n_entries=n_entries,
                n_tried=n_tried,
                n_kept=len(events),
                weight_factor=factor
            )
            reports.append(report)

            self.logger.info("training_set.sample_read", extra=report.to_dict())

        factors = training_set.reweight(self.reweighting)

        if ledger_path is not None:
            self._write_ledger(ledger_path, tried, prior, extend_ledger)

        counts = training_set.class_counts()
        self.logger.info("training_set.built", extra={
            "n_events": len(training_set),
            "n_signal": counts[SIGNAL],
            "n_background": counts[BACKGROUND],
            "reweighting": self.reweighting.value,
            "duration_seconds": time.time() - start_time
        })

        return BuildResult(
            training_set=training_set,
            tried_indices=tried,
            reports=reports,
            reweighting_factors=factors,
            ledger_path=Path(ledger_path) if ledger_path is not None else None
        )

    def _sample_event_list(self, sample: SampleSource,
                           reader: SampleReader) -> Tuple[List[Event], List[int]]:
        """Use the indices recorded for this source verbatim. A missing record is fatal."""
        try:
            with EventIndexLedger(sample.event_list_file, LedgerMode.READ) as ledger:
                entry = ledger.read_list(sample.file_name)
        except LedgerEntryNotFoundError as e:
            raise DataIntegrityError(
                f"Event list file '{sample.event_list_file}' has no list for '{sample.short_name}'"
            ) from e

        n_entries = reader.n_entries
        events = []

        for index in entry.indices:
            if index < 0 or index >= n_entries:
                raise DataIntegrityError(
                    f"Event {index} of the list for '{sample.short_name}' is out of range "
                    f"(source has {n_entries} events)"
                )
            event = self._read_event(sample, reader, index)
            if event is not None:
                events.append(event)

        return events, list(entry.indices)

    def _sample_quota(self, sample: SampleSource, reader: SampleReader,
                      already_tried: Sequence[int],
                      excluded: Sequence[int]) -> Tuple[List[Event], List[int]]:
        """
        Walk the source in shuffled order until a limit is reached.

        Indices already tried for this source in the current run come first,
        followed by the shuffled complement of everything tried or excluded.
        """
        n_entries = reader.n_entries

        untried = np.ones(n_entries, dtype=bool)
        for index in list(already_tried) + list(excluded):
            if 0 <= index < n_entries:
                untried[index] = False

        complement = np.flatnonzero(untried)
        self.rng.shuffle(complement)

        order = [int(index) for index in already_tried] + complement.tolist()
        limit = n_entries * sample.max_fraction

        events: List[Event] = []
        n_read = 0

        while n_read < limit and n_read < len(order):
            event = self._read_event(sample, reader, order[n_read])
            if event is not None:
                events.append(event)
            n_read += 1

            if sample.max_events is not None and len(events) == sample.max_events:
                break

        if n_read < limit and n_read == len(order) and excluded:
            self.logger.warning("training_set.complement_exhausted", extra={
                "source": sample.file_name,
                "n_excluded": len(excluded),
                "n_tried": n_read
            })

        return events, order[:n_read]

    def _read_event(self, sample: SampleSource, reader: SampleReader, index: int) -> Optional[Event]:
        weight = reader.weight(index)
        if weight == 0:
            return None
        return Event(label=sample.label, weight=weight, features=reader.features(index))

    def _read_prior_ledger(self, ledger_path: Optional[Union[str, Path]]) -> Dict[str, Tuple[int, ...]]:
        if ledger_path is None:
            raise ConfigurationError("Extending the ledger requires a ledger path")

        if not Path(ledger_path).exists():
            self.logger.info("training_set.no_prior_ledger", extra={
                "ledger_path": str(ledger_path)
            })
            return {}

        with EventIndexLedger(ledger_path, LedgerMode.READ) as ledger:
            entries = ledger.read_all()

        return {name: entry.indices for name, entry in entries.items()}

    def _write_ledger(self, ledger_path: Union[str, Path], tried: Dict[str, List[int]],
                      prior: Dict[str, Tuple[int, ...]], extend_ledger: bool) -> None:
        mode = LedgerMode.APPEND if extend_ledger else LedgerMode.WRITE

        with EventIndexLedger(ledger_path, mode) as ledger:
            for file_name, indices in tried.items():
                previous = prior.get(source_basename(file_name), ())
                ledger.write_list(file_name, list(previous) + indices)
