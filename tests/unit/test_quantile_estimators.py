"""
Unit tests for the bounded-memory weighted quantile estimators.
"""

import numpy as np
import pytest

from hepnet.preprocessing.core.exceptions import DataIntegrityError
from hepnet.preprocessing.core.quantile_estimators import (
    WeightedExtendedP2Quantiles,
    WeightedP2CumulativeDistribution,
)


class TestCumulativeDistribution:

    def test_exact_before_markers_are_filled(self):
        estimator = WeightedP2CumulativeDistribution(num_cells=10)
        for value in (3., 1., 2.):
            estimator.add(value)

        assert estimator.histogram() == [(1., 1 / 3), (2., 2 / 3), (3., 1.)]

    def test_uniform_sample(self, rng):
        estimator = WeightedP2CumulativeDistribution(num_cells=10)
        values = rng.uniform(0., 1., size=20000)
        for value in values:
            estimator.add(value)

        histogram = estimator.histogram()

        assert len(histogram) == 11
        assert histogram[0][0] == values.min()
        assert histogram[-1] == (values.max(), 1.0)
        for value, probability in histogram[1:-1]:
            assert value == pytest.approx(probability, abs=0.03)

    def test_breakpoints_are_ordered(self, rng):
        estimator = WeightedP2CumulativeDistribution(num_cells=20)
        for value, weight in zip(rng.exponential(size=5000), rng.uniform(0.1, 2., size=5000)):
            estimator.add(value, weight)

        values = [value for value, _ in estimator.histogram()]
        probabilities = [probability for _, probability in estimator.histogram()]

        assert values == sorted(values)
        assert probabilities == sorted(probabilities)

    def test_empty_estimator_is_rejected(self):
        with pytest.raises(DataIntegrityError):
            WeightedP2CumulativeDistribution().histogram()

    def test_zero_total_weight_is_rejected(self):
        estimator = WeightedP2CumulativeDistribution()
        estimator.add(1.0, 0.)

        with pytest.raises(DataIntegrityError):
            estimator.histogram()

    def test_too_few_cells(self):
        with pytest.raises(ValueError):
            WeightedP2CumulativeDistribution(num_cells=1)


class TestExtendedQuantiles:

    def test_exact_before_markers_are_filled(self):
        estimator = WeightedExtendedP2Quantiles([0.5])
        for value in (1., 3., 2.):
            estimator.add(value)

        assert estimator.quantiles() == [2.]

    def test_normal_quantiles(self, rng):
        probabilities = [0.1, 0.5, 0.9]
        estimator = WeightedExtendedP2Quantiles(probabilities)
        values = rng.standard_normal(50000)
        for value in values:
            estimator.add(value)

        expected = np.quantile(values, probabilities)

        assert estimator.quantiles() == pytest.approx(expected, abs=0.05)

    def test_weighted_median(self, rng):
        # Density 3/2 below 0.5 and 1/2 above: the weighted median is 1/3
        estimator = WeightedExtendedP2Quantiles([0.5])
        for value in rng.uniform(0., 1., size=50000):
            estimator.add(value, 3. if value < 0.5 else 1.)

        assert estimator.quantiles()[0] == pytest.approx(1 / 3, abs=0.05)

    @pytest.mark.parametrize("probabilities", [[], [0.], [1.2], [0.9, 0.1]])
    def test_invalid_probabilities(self, probabilities):
        with pytest.raises(ValueError):
            WeightedExtendedP2Quantiles(probabilities)
