# /hepnet/src/hepnet/preprocessing/core/transforms.py

"""
Streaming Per-Feature Transforms: Accumulate, Freeze, Apply

Every transform goes through two phases. While unbuilt it accumulates weighted
statistics from a single pass over the events; the first call to ``build()``
(explicit, or implied by the first ``apply()``) freezes its parameters. After
that, events can only be transformed.

Key Features:
- Standardize: weighted mean and standard deviation, x' = (x - mean) / sigma
- Gaussianize: weighted cumulative distribution mapped through the inverse error function
- PCA placeholder that refuses to be constructed
- Rendering of frozen parameters as a self-contained Python class
- Serialisation of frozen parameters to plain dictionaries

Architecture:
- Variants implement accumulate/build/apply/render/parameters
- The Transform wrapper enforces the Unbuilt -> Built state machine for every variant
- Rendered code performs exactly the same floating-point operations as ``apply``
"""

import bisect
import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Type

import numpy as np
from scipy.special import erfinv

from .exceptions import ConfigurationError, DataIntegrityError, StateError, UnsupportedOperationError
from .quantile_estimators import WeightedExtendedP2Quantiles, WeightedP2CumulativeDistribution


SQRT2 = math.sqrt(2.)
DEFAULT_CDF_BINS = 50

# Imports and constants required by the code returned from render_code()
CODE_PRELUDE = (
    "import math\n"
    "\n"
    "from scipy.special import erfinv\n"
    "\n"
    "\n"
    "_SQRT2 = math.sqrt(2.)\n"
)


class TransformKind(Enum):
    """Available transform variants, named as in configuration files."""
    STANDARD = "standard"
    GAUSS = "gauss"
    PCA = "pca"

    @classmethod
    def from_string(cls, value: str) -> 'TransformKind':
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower()
        for kind in cls:
            if kind.value == normalized:
                return kind

        raise ConfigurationError(
            f"Unknown preprocessing transformation '{value}'. Expected one of: "
            f"{', '.join(kind.value for kind in cls)}"
        )


class TransformState(Enum):
    UNBUILT = "unbuilt"
    BUILT = "built"


def _format_list(values: Iterable[float]) -> str:
    return "[" + ", ".join(repr(float(v)) for v in values) + "]"


class TransformVariant(ABC):
    """Capabilities every transform variant provides. State checks live in Transform."""

    kind: ClassVar[TransformKind]

    def __init__(self, n_features: int):
        self.n_features = n_features
        self.n_events = 0

    @abstractmethod
    def add_event(self, weight: float, values: np.ndarray) -> None:
        """Accumulate one event."""

    @abstractmethod
    def build(self) -> None:
        """Freeze the accumulated statistics into parameters."""

    @abstractmethod
    def apply(self, values: np.ndarray) -> None:
        """Transform a feature vector in place."""

    @abstractmethod
    def render_code(self, suffix: str) -> str:
        """Python source of a class reproducing ``apply`` on the frozen parameters."""

    @abstractmethod
    def parameters(self) -> Dict[str, Any]:
        """Frozen parameters as plain Python types."""

    @abstractmethod
    def load_parameters(self, parameters: Dict[str, Any]) -> None:
        """Install frozen parameters produced by ``parameters()``."""


class Standardize(TransformVariant):
    """Shifts and scales each feature to zero weighted mean and unit weighted variance."""

    kind = TransformKind.STANDARD

    def __init__(self, n_features: int):
        super().__init__(n_features)
        self._sum_of_weights = 0.
        self._mean = np.zeros(n_features)
        self._sum_squares = np.zeros(n_features)

        self.mean: Optional[np.ndarray] = None
        self.sigma: Optional[np.ndarray] = None

    def add_event(self, weight: float, values: np.ndarray) -> None:
        # Weighted incremental update of mean and sum of squared deviations
        self.n_events += 1
        self._sum_of_weights += weight
        if self._sum_of_weights == 0:
            return

        delta = values - self._mean
        self._mean = self._mean + delta * (weight / self._sum_of_weights)
        self._sum_squares = self._sum_squares + weight * delta * (values - self._mean)

    def build(self) -> None:
        if self.n_events == 0 or self._sum_of_weights == 0:
            raise DataIntegrityError("Cannot standardize input variables without weighted events")

        self.mean = self._mean.copy()
        self.sigma = np.sqrt(np.maximum(self._sum_squares / self._sum_of_weights, 0.))

        for index, sigma in enumerate(self.sigma):
            if sigma == 0.:
                raise DataIntegrityError(
                    f"Input variable #{index} has zero variance. It cannot be used for classification."
                )

    def apply(self, values: np.ndarray) -> None:
        values -= self.mean
        values /= self.sigma

    def render_code(self, suffix: str) -> str:
        return (
            f"class Transform{suffix}:\n"
            f"    \"\"\"Standardisation of {self.n_features} input variables.\"\"\"\n"
            f"\n"
            f"    mean = {_format_list(self.mean)}\n"
            f"    sigma = {_format_list(self.sigma)}\n"
            f"\n"
            f"    def __call__(self, values):\n"
            f"        for i in range({self.n_features}):\n"
            f"            values[i] = (values[i] - self.mean[i]) / self.sigma[i]\n"
            f"        return values\n"
        )

    def parameters(self) -> Dict[str, Any]:
        return {
            'mean': [float(v) for v in self.mean],
            'sigma': [float(v) for v in self.sigma]
        }

    def load_parameters(self, parameters: Dict[str, Any]) -> None:
        mean = np.asarray(parameters['mean'], dtype=np.float64)
        sigma = np.asarray(parameters['sigma'], dtype=np.float64)

        if mean.shape != (self.n_features,) or sigma.shape != (self.n_features,):
            raise DataIntegrityError(
                f"Standardization parameters do not match {self.n_features} input variables"
            )
        if np.any(sigma == 0.):
            raise DataIntegrityError("Standardization parameters contain a zero sigma")

        self.mean = mean
        self.sigma = sigma


def gaussianize_value(x: Sequence[float], cdf: Sequence[float], n_bins: int, value: float) -> float:
    """Map one value through a frozen cumulative distribution to a standard-normal value."""
    bin = -1
    while bin + 1 < n_bins and x[bin + 1] < value:
        bin += 1

    if bin == -1:
        cumulative = 1.e-5
    elif bin == n_bins - 1:
        cumulative = cdf[bin]
    else:
        cumulative = cdf[bin]
        # Breakpoints may coincide in degenerate distributions
        if x[bin + 1] != x[bin]:
            cumulative += (cdf[bin + 1] - cdf[bin]) / (x[bin + 1] - x[bin]) * (value - x[bin])

    if cumulative < 1.e-5:
        cumulative = 1.e-5
    elif cumulative > 1. - 1.e-5:
        cumulative = 1. - 1.e-5

    return SQRT2 * float(erfinv(2. * cumulative - 1.))


class Gaussianize(TransformVariant):
    """
    Makes each feature approximately standard-normal.

    The weighted cumulative distribution of each feature is estimated with a
    fixed number of cells. Two extra points at the tail_fraction and
    1 - tail_fraction quantiles are inserted into it. Values are mapped through
    the linearly interpolated distribution and then the inverse error function.
    """

    kind = TransformKind.GAUSS

    def __init__(self, n_features: int, n_bins: int = DEFAULT_CDF_BINS,
                 tail_fraction: Optional[float] = None):
        super().__init__(n_features)

        if n_bins < 2:
            raise ConfigurationError(f"Number of CDF bins must be at least 2: {n_bins}")

        self.n_bins = n_bins
        self.tail_fraction = tail_fraction if tail_fraction and tail_fraction > 0 else 0.5 / n_bins

        if not self.tail_fraction < 0.5:
            raise ConfigurationError(f"Tail fraction must be below 0.5: {self.tail_fraction}")

        self._cumulative = [WeightedP2CumulativeDistribution(n_bins) for _ in range(n_features)]
        self._range = [
            WeightedExtendedP2Quantiles([self.tail_fraction, 1. - self.tail_fraction])
            for _ in range(n_features)
        ]

        self.x: List[List[float]] = []
        self.cdf: List[List[float]] = []

    def add_event(self, weight: float, values: np.ndarray) -> None:
        self.n_events += 1
        for index in range(self.n_features):
            value = float(values[index])
            self._cumulative[index].add(value, weight)
            self._range[index].add(value, weight)

    def build(self) -> None:
        x_all, cdf_all = [], []

        for index in range(self.n_features):
            try:
                histogram = self._cumulative[index].histogram()
                lower, upper = self._range[index].quantiles()
            except DataIntegrityError as e:
                raise DataIntegrityError(f"Cannot gaussianize input variable #{index}: {e}") from e

            edges = [edge for edge, _ in histogram]
            for point in ((lower, self.tail_fraction), (upper, 1. - self.tail_fraction)):
                position = bisect.bisect_right(edges, point[0])
                edges.insert(position, point[0])
                histogram.insert(position, point)

            x_all.append([float(edge) for edge, _ in histogram])
            cdf_all.append([float(content) for _, content in histogram])

        self.x = x_all
        self.cdf = cdf_all

        # Estimators are not needed once the breakpoints are frozen
        self._cumulative = []
        self._range = []

    def apply(self, values: np.ndarray) -> None:
        for index in range(self.n_features):
            x = self.x[index]
            values[index] = gaussianize_value(x, self.cdf[index], len(x), float(values[index]))

    @property
    def max_breakpoints(self) -> int:
        return max((len(x) for x in self.x), default=0)

    def render_code(self, suffix: str) -> str:
        width = self.max_breakpoints
        padded_x = [x + [0.] * (width - len(x)) for x in self.x]
        padded_cdf = [cdf + [0.] * (width - len(cdf)) for cdf in self.cdf]

        lines = [
            f"class Transform{suffix}:",
            f"    \"\"\"Gaussianisation of {self.n_features} input variables.\"\"\"",
            "",
            f"    n_bins = [{', '.join(str(len(x)) for x in self.x)}]",
            "    x = [",
        ]
        lines.extend(f"        {_format_list(row)}," for row in padded_x)
        lines.append("    ]")
        lines.append("    cdf = [")
        lines.extend(f"        {_format_list(row)}," for row in padded_cdf)
        lines.append("    ]")
        lines.extend([
            "",
            "    def __call__(self, values):",
            f"        for i in range({self.n_features}):",
            "            n_bins = self.n_bins[i]",
            "            x = self.x[i]",
            "            cdf = self.cdf[i]",
            "            value = float(values[i])",
            "            bin = -1",
            "            while bin + 1 < n_bins and x[bin + 1] < value:",
            "                bin += 1",
            "",
            "            if bin == -1:",
            "                cumulative = 1.e-5",
            "            elif bin == n_bins - 1:",
            "                cumulative = cdf[bin]",
            "            else:",
            "                cumulative = cdf[bin]",
            "                if x[bin + 1] != x[bin]:",
            "                    cumulative += (cdf[bin + 1] - cdf[bin]) / (x[bin + 1] - x[bin]) * (value - x[bin])",
            "",
            "            if cumulative < 1.e-5:",
            "                cumulative = 1.e-5",
            "            elif cumulative > 1. - 1.e-5:",
            "                cumulative = 1. - 1.e-5",
            "",
            "            values[i] = _SQRT2 * float(erfinv(2. * cumulative - 1.))",
            "        return values",
        ])
        return "\n".join(lines) + "\n"

    def parameters(self) -> Dict[str, Any]:
        return {
            'n_bins': self.n_bins,
            'tail_fraction': self.tail_fraction,
            'x': [list(x) for x in self.x],
            'cdf': [list(cdf) for cdf in self.cdf]
        }

    def load_parameters(self, parameters: Dict[str, Any]) -> None:
        x = [[float(v) for v in row] for row in parameters['x']]
        cdf = [[float(v) for v in row] for row in parameters['cdf']]

        if len(x) != self.n_features or len(cdf) != self.n_features:
            raise DataIntegrityError(
                f"Gaussianization parameters do not match {self.n_features} input variables"
            )
        for index, (row_x, row_cdf) in enumerate(zip(x, cdf)):
            if len(row_x) != len(row_cdf) or not row_x:
                raise DataIntegrityError(f"Malformed CDF breakpoints for input variable #{index}")

        self.x = x
        self.cdf = cdf
        self._cumulative = []
        self._range = []


class PrincipalComponents(TransformVariant):
    """Placeholder for a principal component transformation. Cannot be constructed."""

    kind = TransformKind.PCA

    def __init__(self, n_features: int):
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def add_event(self, weight: float, values: np.ndarray) -> None:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def build(self) -> None:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def apply(self, values: np.ndarray) -> None:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def render_code(self, suffix: str) -> str:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def parameters(self) -> Dict[str, Any]:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")

    def load_parameters(self, parameters: Dict[str, Any]) -> None:
        raise UnsupportedOperationError("Principal component analysis is not implemented yet")


VARIANTS: Dict[TransformKind, Type[TransformVariant]] = {
    TransformKind.STANDARD: Standardize,
    TransformKind.GAUSS: Gaussianize,
    TransformKind.PCA: PrincipalComponents,
}


class Transform:
    """
    State-machine wrapper around a transform variant.

    Examples:
        transform = Transform("gauss", n_features=3)
        for event in training_set:
            transform.add_event(event.weight, event.features)
        transform.build()
        transform.apply(event.features)
    """

    def __init__(self, kind, n_features: int, **options):
        """
        Create an unbuilt transform.

        Args:
            kind: TransformKind or its configuration name
            n_features: Length of every feature vector
            **options: Variant-specific options (n_bins, tail_fraction for Gaussianize)

        Raises:
            ConfigurationError: If the kind is unknown or options are invalid
            UnsupportedOperationError: For the PCA placeholder
        """
        if n_features <= 0:
            raise ConfigurationError(f"Number of input variables must be positive: {n_features}")

        self.kind = TransformKind.from_string(kind)
        self.n_features = n_features
        self.state = TransformState.UNBUILT
        self.logger = logging.getLogger(__name__)

        try:
            self.variant = VARIANTS[self.kind](n_features, **options)
        except TypeError as e:
            raise ConfigurationError(f"Invalid options for '{self.kind.value}' transform: {e}") from e

    @property
    def is_built(self) -> bool:
        return self.state == TransformState.BUILT

    def add_event(self, weight: float, values: Sequence[float]) -> None:
        """
        Accumulate one weighted event.

        Raises:
            StateError: If the transform is already built
        """
        if self.is_built:
            raise StateError("The transformation is already built, new events cannot be added")

        values = np.asarray(values, dtype=np.float64)
        self._check_length(values)
        self.variant.add_event(float(weight), values)

    def build(self) -> None:
        """
        Freeze the parameters. Can only happen once.

        Raises:
            StateError: If the transform is already built
            DataIntegrityError: If the accumulated data cannot define the transform
        """
        if self.is_built:
            raise StateError("The transformation is already built")

        self.variant.build()
        self.state = TransformState.BUILT

        self.logger.info("transform.built", extra={
            "transform_kind": self.kind.value,
            "n_features": self.n_features,
            "n_events": self.variant.n_events
        })

    def apply(self, values: np.ndarray) -> np.ndarray:
        """
        Transform a feature vector in place, building the transform first if needed.

        Returns:
            The same array, for chaining
        """
        if not self.is_built:
            self.build()

        if not isinstance(values, np.ndarray) or values.dtype != np.float64:
            raise TypeError("Feature vectors must be float64 numpy arrays to be transformed in place")
        self._check_length(values)

        self.variant.apply(values)
        return values

    def render_code(self, suffix: str) -> str:
        """
        Render the frozen transform as a Python class named ``Transform<suffix>``.

        The class relies on the definitions in CODE_PRELUDE.
        """
        self._require_built("rendered")
        return self.variant.render_code(suffix)

    def to_dict(self) -> Dict[str, Any]:
        self._require_built("serialized")
        return {
            'kind': self.kind.value,
            'n_features': self.n_features,
            'parameters': self.variant.parameters()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transform':
        """Recreate a built transform from ``to_dict()`` output."""
        try:
            kind = TransformKind.from_string(data['kind'])
            n_features = int(data['n_features'])
            parameters = data['parameters']
        except KeyError as e:
            raise DataIntegrityError(f"Serialized transform is missing field {e}") from e

        options = {}
        if kind == TransformKind.GAUSS:
            options = {
                'n_bins': int(parameters.get('n_bins', DEFAULT_CDF_BINS)),
                'tail_fraction': parameters.get('tail_fraction')
            }

        transform = cls(kind, n_features, **options)
        transform.variant.load_parameters(parameters)
        transform.state = TransformState.BUILT
        return transform

    def _require_built(self, action: str) -> None:
        if not self.is_built:
            raise StateError(f"The transformation must be built before it can be {action}")

    def _check_length(self, values: np.ndarray) -> None:
        if values.shape != (self.n_features,):
            raise ValueError(
                f"Expected {self.n_features} input variables, got array of shape {values.shape}"
            )


def create_transforms(kinds: Sequence[str], n_features: int,
                      options: Optional[Dict[str, Dict[str, Any]]] = None) -> List[Transform]:
    """Create unbuilt transforms in the configured order."""
    options = options or {}
    transforms = []

    for kind in kinds:
        kind = TransformKind.from_string(kind)
        transforms.append(Transform(kind, n_features, **options.get(kind.value, {})))

    return transforms


def fit_transform_chain(transforms: Sequence[Transform], events: Sequence[Any]) -> None:
    """
    Fit and apply transforms one after another.

    Each transform is fitted on the output of the previous one. Event feature
    vectors are modified in place.
    """
    for transform in transforms:
        for event in events:
            transform.add_event(event.weight, event.features)

        transform.build()

        for event in events:
            transform.apply(event.features)


def apply_transform_chain(transforms: Sequence[Transform], values: Sequence[float]) -> np.ndarray:
    """Apply built transforms in order to a copy of the given feature vector."""
    result = np.array(values, dtype=np.float64)
    for transform in transforms:
        transform.apply(result)
    return result


# Module-level function of rendered code applying the classes listed in _TRANSFORMS
TRANSFORM_CHAIN_CODE = (
    "def transform(values):\n"
    "    values = [float(v) for v in values]\n"
    "    for step in _TRANSFORMS:\n"
    "        values = step(values)\n"
    "    return values\n"
)


def render_transform_module(transforms: Sequence[Transform], title: str) -> str:
    """
    Render built transforms as an importable module exposing ``transform(values)``.
    """
    class_names = [f"Transform{i}" for i in range(len(transforms))]

    parts = [f'"""\n{title}\n"""\n', CODE_PRELUDE]
    for index, transform in enumerate(transforms):
        parts.append(transform.render_code(str(index)))
    parts.append(f"_TRANSFORMS = [{', '.join(f'{name}()' for name in class_names)}]\n")
    parts.append(TRANSFORM_CHAIN_CODE)

    return "\n\n".join(parts)
