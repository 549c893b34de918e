"""
Classifier Export - Transforms and Network Ensemble as Python Code

Renders a trained classifier (the preprocessing transforms followed by an
ensemble of networks drawn from the posterior) as a self-contained Python
module plus a portable JSON parameter blob.

Key Features:
- Generated module depends only on the standard library and scipy
- Exact reproduction check: the module is imported back and compared to the
  in-memory computation on probe inputs
- JSON blob restores the same classifier through from_dict constructors
"""

import importlib.util
import json
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..preprocessing.core.exceptions import DataIntegrityError, HepnetError
from ..preprocessing.core.transforms import (
    CODE_PRELUDE, TRANSFORM_CHAIN_CODE, Transform, apply_transform_chain
)
from .network_model import NetworkModel
from .parameter_dump import read_parameter_dump_file

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


class ModelExportError(HepnetError):
    """Raised when the classifier cannot be rendered or fails validation."""


class Classifier:
    """
    Transforms applied in order, followed by the average output of several networks.

    Examples:
        classifier = Classifier(transforms, [network_a, network_b])
        response = classifier.evaluate([pt, eta, mass])
    """

    def __init__(self, transforms: Sequence[Transform], networks: Sequence[NetworkModel]):
        if not networks:
            raise ModelExportError("At least one network is required")

        n_inputs = networks[0].architecture[0]
        for index, network in enumerate(networks):
            if network.architecture[0] != n_inputs:
                raise ModelExportError(
                    f"Network #{index} has {network.architecture[0]} inputs, expected {n_inputs}"
                )
            if network.architecture[-1] != 1:
                raise ModelExportError(f"Network #{index} must have exactly one output node")

        for index, transform in enumerate(transforms):
            if transform.n_features != n_inputs:
                raise ModelExportError(
                    f"Transform #{index} expects {transform.n_features} variables, "
                    f"networks expect {n_inputs}"
                )

        self.transforms = list(transforms)
        self.networks = list(networks)
        self.n_inputs = n_inputs

    def transform(self, values: Sequence[float]) -> np.ndarray:
        return apply_transform_chain(self.transforms, values)

    def evaluate(self, values: Sequence[float]) -> float:
        if len(values) != self.n_inputs:
            raise ValueError(f"Expected {self.n_inputs} input variables, got {len(values)}")

        inputs = self.transform(values)
        total = 0.
        for network in self.networks:
            total += float(network.apply(inputs)[0])
        return total / len(self.networks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'format_version': EXPORT_FORMAT_VERSION,
            'n_inputs': self.n_inputs,
            'transforms': [transform.to_dict() for transform in self.transforms],
            'networks': [network.to_dict() for network in self.networks]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Classifier':
        try:
            transforms = [Transform.from_dict(item) for item in data['transforms']]
            networks = [NetworkModel.from_dict(item) for item in data['networks']]
        except KeyError as e:
            raise DataIntegrityError(f"Serialized classifier is missing field {e}") from e
        return cls(transforms, networks)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'Classifier':
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data.get('classifier', data))


@dataclass
class ExportConfig:
    """Configuration for classifier export."""

    output_dir: str = "exports"
    validation_samples: int = 100
    probe_scale: float = 3.0
    random_seed: int = 42
    fail_on_mismatch: bool = True

    def __post_init__(self):
        if self.validation_samples < 1:
            raise ValueError(f"Validation samples must be positive, got {self.validation_samples}")
        if self.probe_scale <= 0:
            raise ValueError(f"Probe scale must be positive, got {self.probe_scale}")


@dataclass
class ValidationResult:
    """Comparison of the rendered module with the in-memory classifier."""

    passed: bool = False
    probes_checked: int = 0
    mismatches: int = 0
    max_absolute_error: float = 0.0
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.passed = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'probes_checked': self.probes_checked,
            'mismatches': self.mismatches,
            'max_absolute_error': self.max_absolute_error,
            'errors': self.errors
        }


@dataclass
class ExportResult:
    module_path: Path
    parameters_path: Path
    validation: ValidationResult


class ModelExporter:
    """
    Writes ``<name>.py`` and ``<name>.json`` for a classifier and validates them.

    The rendered module exposes ``transform(values)`` and ``evaluate(values)``.
    """

    def __init__(self, config: Optional[ExportConfig] = None):
        self.config = config or ExportConfig()
        self.logger = logging.getLogger(__name__)

        self.output_dir = Path(self.config.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export(self, transforms: Sequence[Transform], networks: Sequence[NetworkModel],
               name: str, probes: Optional[np.ndarray] = None) -> ExportResult:
        """
        Render, write and validate a classifier.

        Args:
            transforms: Built transforms in application order
            networks: Networks of the ensemble
            name: Base name of the output files (a valid Python identifier)
            probes: Input vectors to validate on; random ones are drawn if omitted

        Returns:
            ExportResult with output paths and validation outcome

        Raises:
            ModelExportError: If rendering fails or, with fail_on_mismatch, validation fails
        """
        if not name.isidentifier():
            raise ModelExportError(f"Export name must be a valid Python identifier: '{name}'")

        try:
            classifier = Classifier(transforms, networks)

            module_path = self.output_dir / f"{name}.py"
            module_path.write_text(self.render_module(classifier, name))

            if probes is None:
                probes = self._draw_probes(classifier.n_inputs)

            validation = self._validate(classifier, module_path, name, np.asarray(probes, dtype=np.float64))
            parameters_path = self._save_parameters(classifier, name, validation)

        except ModelExportError:
            raise
        except Exception as e:
            self.logger.error("export.failed", extra={
                "export_name": name,
                "error": str(e),
                "traceback": traceback.format_exc()
            })
            raise ModelExportError(f"Failed to export classifier '{name}': {e}") from e

        if validation.passed:
            self.logger.info("export.completed", extra={
                "module_path": str(module_path),
                "n_networks": len(classifier.networks),
                "n_transforms": len(classifier.transforms),
                "probes_checked": validation.probes_checked
            })
        else:
            self.logger.error("export.validation_failed", extra={
                "module_path": str(module_path),
                "errors": validation.errors
            })
            if self.config.fail_on_mismatch:
                raise ModelExportError(
                    f"Rendered classifier '{name}' does not reproduce the in-memory results: "
                    f"{'; '.join(validation.errors)}"
                )

        return ExportResult(module_path=module_path, parameters_path=parameters_path, validation=validation)

    def render_module(self, classifier: Classifier, name: str) -> str:
        transform_names = [f"Transform{i}" for i in range(len(classifier.transforms))]
        network_names = [f"NeuralNetwork{i}" for i in range(len(classifier.networks))]

        parts = [
            f'"""\nClassifier {name}: {len(classifier.transforms)} input transformation(s) and an '
            f'ensemble of {len(classifier.networks)} network(s).\n"""\n',
            CODE_PRELUDE,
            f"N_INPUTS = {classifier.n_inputs}\n",
        ]

        for transform, class_name in zip(classifier.transforms, transform_names):
            parts.append(transform.render_code(class_name[len("Transform"):]))
        for network, class_name in zip(classifier.networks, network_names):
            parts.append(network.render_code(class_name))

        parts.append(
            f"_TRANSFORMS = [{', '.join(f'{n}()' for n in transform_names)}]\n"
            f"_NETWORKS = [{', '.join(f'{n}()' for n in network_names)}]\n"
        )
        parts.append(TRANSFORM_CHAIN_CODE)
        parts.append(
            "def evaluate(values):\n"
            "    if len(values) != N_INPUTS:\n"
            "        raise ValueError(f\"Expected {N_INPUTS} input variables, got {len(values)}\")\n"
            "\n"
            "    inputs = transform(values)\n"
            "    total = 0.\n"
            "    for network in _NETWORKS:\n"
            "        total += network(inputs)[0]\n"
            "    return total / len(_NETWORKS)\n"
        )

        return "\n\n".join(parts)

    def _draw_probes(self, n_inputs: int) -> np.ndarray:
        rng = np.random.default_rng(self.config.random_seed)
        probes = rng.standard_normal((self.config.validation_samples, n_inputs)) * self.config.probe_scale
        # Edge cases far outside any fitted range
        extremes = np.vstack([np.zeros(n_inputs), np.full(n_inputs, 1e6), np.full(n_inputs, -1e6)])
        return np.vstack([probes, extremes])

    def _load_module(self, module_path: Path, name: str):
        spec = importlib.util.spec_from_file_location(f"hepnet_export_{name}", module_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def _validate(self, classifier: Classifier, module_path: Path, name: str,
                  probes: np.ndarray) -> ValidationResult:
        result = ValidationResult()

        try:
            module = self._load_module(module_path, name)
        except Exception as e:
            result.add_error(f"Rendered module cannot be imported: {e}")
            return result

        for probe in probes:
            expected = classifier.evaluate(probe)
            actual = module.evaluate(list(probe))
            result.probes_checked += 1

            if actual != expected:
                result.mismatches += 1
                result.max_absolute_error = max(result.max_absolute_error, abs(actual - expected))

        if result.mismatches:
            result.add_error(
                f"{result.mismatches} of {result.probes_checked} probes differ "
                f"(max absolute error {result.max_absolute_error:.3e})"
            )
        else:
            result.passed = True

        return result

    def _save_parameters(self, classifier: Classifier, name: str,
                         validation: ValidationResult) -> Path:
        data = {
            'export_info': {
                'name': name,
                'export_timestamp': datetime.now().isoformat(),
                'format_version': EXPORT_FORMAT_VERSION
            },
            'validation_results': validation.to_dict(),
            'classifier': classifier.to_dict()
        }

        parameters_path = self.output_dir / f"{name}.json"
        with open(parameters_path, 'w') as f:
            json.dump(data, f, indent=2)

        return parameters_path


def load_networks(dumps: Sequence[Union[str, Path]], architecture: Sequence[int]) -> List[NetworkModel]:
    """Read an ensemble of networks from parameter dump files."""
    return [read_parameter_dump_file(path, architecture) for path in dumps]
