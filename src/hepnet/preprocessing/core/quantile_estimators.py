# /hepnet/src/hepnet/preprocessing/core/quantile_estimators.py

"""
Bounded-Memory Weighted Quantile Estimators

Single-pass estimators based on the P-square algorithm of Jain and Chlamtac,
generalised to weighted samples. Memory does not grow with the number of
samples: each estimator keeps a fixed number of markers (height, position),
where a position is a cumulative weight rather than a count.

Key Features:
- WeightedP2CumulativeDistribution: cumulative histogram with a fixed number of cells
- WeightedExtendedP2Quantiles: several quantiles estimated together
- Exact weighted empirical results while fewer samples than markers are seen
"""

import bisect
from itertools import accumulate
from typing import List, Sequence, Tuple

from .exceptions import DataIntegrityError


def _parabolic_adjust(heights: List[float], positions: List[float],
                      desired: List[float], first: int, last: int) -> None:
    """Move markers first..last towards their desired positions (in place)."""
    for i in range(first, last + 1):
        d = desired[i] - positions[i]
        dp = positions[i + 1] - positions[i]
        dm = positions[i - 1] - positions[i]

        if (d >= 1. and dp > 1.) or (d <= -1. and dm < -1.):
            hp = (heights[i + 1] - heights[i]) / dp
            hm = (heights[i - 1] - heights[i]) / dm
            sign_d = 1 if d > 0 else -1

            h = heights[i] + sign_d / (dp - dm) * ((sign_d - dm) * hp + (dp - sign_d) * hm)

            if heights[i - 1] < h < heights[i + 1]:
                heights[i] = h
            elif d > 0:
                heights[i] += hp
            else:
                heights[i] -= hm

            positions[i] += sign_d


class _WeightedP2Base:
    """Shared marker bookkeeping of the weighted P-square estimators."""

    def __init__(self, num_markers: int):
        self.num_markers = num_markers
        self.count = 0
        self.sum_of_weights = 0.
        self._heights: List[float] = []
        self._positions: List[float] = []

    @property
    def initialized(self) -> bool:
        return self.count >= self.num_markers

    def add(self, value: float, weight: float = 1.) -> None:
        value = float(value)
        weight = float(weight)

        self.count += 1
        self.sum_of_weights += weight

        if self.count <= self.num_markers:
            self._heights.append(value)
            self._positions.append(weight)

            if self.count == self.num_markers:
                order = sorted(range(self.num_markers), key=self._heights.__getitem__)
                self._heights = [self._heights[i] for i in order]
                self._positions = list(accumulate(self._positions[i] for i in order))
            return

        heights = self._heights
        positions = self._positions
        last = self.num_markers - 1

        if value < heights[0]:
            heights[0] = value
            positions[0] = weight
            sample_cell = 1
        elif heights[last] <= value:
            heights[last] = value
            sample_cell = last
        else:
            sample_cell = bisect.bisect_right(heights, value)

        for i in range(sample_cell, self.num_markers):
            positions[i] += weight

        _parabolic_adjust(heights, positions, self._desired_positions(), 1, last - 1)

    def _desired_positions(self) -> List[float]:
        raise NotImplementedError

    def _sorted_samples(self) -> Tuple[List[float], List[float]]:
        """Stored samples (before initialisation) sorted by value, with cumulative weights."""
        order = sorted(range(self.count), key=self._heights.__getitem__)
        values = [self._heights[i] for i in order]
        cumulative = list(accumulate(self._positions[i] for i in order))
        return values, cumulative

    def _check_not_empty(self) -> None:
        if self.count == 0:
            raise DataIntegrityError("Cannot estimate a distribution from zero samples")
        if self.sum_of_weights == 0:
            raise DataIntegrityError("Cannot estimate a distribution with zero total weight")


class WeightedP2CumulativeDistribution(_WeightedP2Base):
    """
    Weighted cumulative distribution with ``num_cells`` cells (``num_cells + 1`` markers).

    The outer markers track the observed minimum and maximum; the inner ones
    are kept at equally spaced cumulative weights.
    """

    def __init__(self, num_cells: int = 50):
        if num_cells < 2:
            raise ValueError(f"Number of cells must be at least 2: {num_cells}")
        super().__init__(num_cells + 1)
        self.num_cells = num_cells

    def _desired_positions(self) -> List[float]:
        first = self._positions[0]
        step = (self.sum_of_weights - first) / self.num_cells
        return [first + i * step for i in range(self.num_markers)]

    def histogram(self) -> List[Tuple[float, float]]:
        """Pairs (value, cumulative probability) in ascending order of value."""
        self._check_not_empty()

        if not self.initialized:
            values, cumulative = self._sorted_samples()
            return [(x, c / self.sum_of_weights) for x, c in zip(values, cumulative)]

        return [(h, p / self.sum_of_weights) for h, p in zip(self._heights, self._positions)]


class WeightedExtendedP2Quantiles(_WeightedP2Base):
    """
    Weighted estimator of several quantiles at once.

    For m probabilities, 2m + 3 markers are kept: the extremes, one marker per
    quantile and one marker between each pair of neighbouring quantiles.
    """

    def __init__(self, probabilities: Sequence[float]):
        if not probabilities:
            raise ValueError("At least one probability is required")
        if any(not 0 < p < 1 for p in probabilities):
            raise ValueError(f"Probabilities must lie in (0, 1): {list(probabilities)}")
        if list(probabilities) != sorted(probabilities):
            raise ValueError(f"Probabilities must be in ascending order: {list(probabilities)}")

        self.probabilities = [float(p) for p in probabilities]
        super().__init__(2 * len(self.probabilities) + 3)

    def _desired_positions(self) -> List[float]:
        probs = self.probabilities
        m = len(probs)
        first = self._positions[0]
        span = self.sum_of_weights - first

        desired = [0.] * self.num_markers
        desired[0] = first
        desired[-1] = self.sum_of_weights
        desired[1] = span * probs[0] / 2. + first
        desired[-2] = span * (probs[-1] + 1.) / 2. + first

        for i in range(m):
            desired[2 * i + 2] = span * probs[i] + first
        for i in range(1, m):
            desired[2 * i + 1] = span * (probs[i - 1] + probs[i]) / 2. + first

        return desired

    def quantiles(self) -> List[float]:
        """Estimated quantile for each probability, in the order given."""
        self._check_not_empty()

        if not self.initialized:
            values, cumulative = self._sorted_samples()
            result = []
            for p in self.probabilities:
                target = p * self.sum_of_weights
                position = min(bisect.bisect_left(cumulative, target), len(values) - 1)
                result.append(values[position])
            return result

        return [self._heights[2 * i + 2] for i in range(len(self.probabilities))]
