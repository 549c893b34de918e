"""
Integration Tests for Classifier Export

Renders fitted transforms and a network ensemble as a Python module and
checks that the module, and the JSON parameters written next to it,
reproduce the in-memory classifier exactly.

Test Coverage:
- End-to-end export with exact reproduction on probe inputs
- Restoring the classifier from the JSON parameters
- Architecture and name checks
- Ensemble loading from parameter dumps
"""

import importlib.util
import json
import pytest
import numpy as np
from sklearn.datasets import make_classification

# Test dependencies
import sys
sys.path.append('src')

from hepnet.network.model_export import (
    Classifier, ExportConfig, ModelExporter, ModelExportError, load_networks
)
from hepnet.network.network_model import NetworkModel
from hepnet.network.parameter_dump import write_parameter_dump
from hepnet.preprocessing.core.training_set import Event
from hepnet.preprocessing.core.transforms import create_transforms, fit_transform_chain


def random_network(rng, architecture):
    network = NetworkModel(architecture)
    for layer in range(1, network.n_layers):
        network.set_biases(layer, rng.normal(size=architecture[layer]))
        for node in range(architecture[layer]):
            network.set_weights(layer, node, rng.normal(size=architecture[layer - 1]))
    return network


class TestModelExportPipeline:
    """
    Export of a complete classifier: transforms followed by a network ensemble.
    """

    @pytest.fixture
    def sample_data(self):
        X, y = make_classification(
            n_samples=2000,
            n_features=3,
            n_informative=3,
            n_redundant=0,
            n_clusters_per_class=1,
            random_state=42
        )
        return X, y

    @pytest.fixture
    def fitted_transforms(self, sample_data):
        X, y = sample_data
        events = [Event(int(label), 1.0, row.astype(np.float64)) for row, label in zip(X, y)]
        transforms = create_transforms(["standard", "gauss"], 3, {"gauss": {"n_bins": 30}})
        fit_transform_chain(transforms, events)
        return transforms

    @pytest.fixture
    def networks(self):
        rng = np.random.default_rng(7)
        return [random_network(rng, [3, 6, 1]) for _ in range(4)]

    @pytest.fixture
    def model_exporter(self, tmp_path):
        return ModelExporter(ExportConfig(output_dir=str(tmp_path / "exports"), validation_samples=200))

    def test_export_reproduces_classifier(self, model_exporter, fitted_transforms, networks):
        result = model_exporter.export(fitted_transforms, networks, "tth_classifier")

        assert result.validation.passed
        assert result.validation.mismatches == 0
        assert result.validation.probes_checked == 203
        assert result.module_path.name == "tth_classifier.py"

    def test_generated_module_is_importable(self, model_exporter, fitted_transforms, networks, sample_data):
        result = model_exporter.export(fitted_transforms, networks, "tth_classifier")

        spec = importlib.util.spec_from_file_location("tth_classifier", result.module_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        classifier = Classifier(fitted_transforms, networks)
        X, _ = sample_data
        for row in X[:50]:
            assert module.evaluate(list(row)) == classifier.evaluate(row)
            assert 0. < module.evaluate(list(row)) < 1.

        with pytest.raises(ValueError):
            module.evaluate([1., 2.])

    def test_parameters_restore_classifier(self, model_exporter, fitted_transforms, networks, sample_data):
        result = model_exporter.export(fitted_transforms, networks, "tth_classifier")

        with open(result.parameters_path) as f:
            data = json.load(f)
        assert data['validation_results']['passed']
        assert data['export_info']['name'] == "tth_classifier"

        restored = Classifier.from_json(result.parameters_path)
        original = Classifier(fitted_transforms, networks)

        X, _ = sample_data
        for row in X[:50]:
            assert restored.evaluate(row) == original.evaluate(row)

    def test_explicit_probes(self, model_exporter, fitted_transforms, networks):
        probes = np.array([[0., 0., 0.], [1., -2., 3.]])

        result = model_exporter.export(fitted_transforms, networks, "probed", probes=probes)

        assert result.validation.probes_checked == 2

    def test_export_with_saturated_output(self, model_exporter, sample_data):
        X, y = sample_data
        events = [Event(int(label), 1.0, row.astype(np.float64)) for row, label in zip(X, y)]
        transforms = create_transforms(["standard"], 3)
        fit_transform_chain(transforms, events)

        network = random_network(np.random.default_rng(11), [3, 6, 1])
        network.set_bias(2, 0, -1000.)

        result = model_exporter.export(transforms, [network], "saturated")

        assert result.validation.passed
        assert Classifier(transforms, [network]).evaluate(np.zeros(3)) == 0.

    def test_repeated_export_is_reproducible(self, model_exporter, fitted_transforms, networks):
        first = model_exporter.export(fitted_transforms, networks, "tth_classifier").module_path.read_text()
        second = model_exporter.export(fitted_transforms, networks, "tth_classifier").module_path.read_text()

        assert first == second

    def test_invalid_export_name(self, model_exporter, fitted_transforms, networks):
        with pytest.raises(ModelExportError, match="identifier"):
            model_exporter.export(fitted_transforms, networks, "tth-classifier")

    def test_input_width_mismatch(self, model_exporter, fitted_transforms):
        networks = [random_network(np.random.default_rng(0), [4, 3, 1])]

        with pytest.raises(ModelExportError, match="expects 3 variables"):
            model_exporter.export(fitted_transforms, networks, "mismatch")

    def test_single_output_required(self, model_exporter, fitted_transforms):
        networks = [random_network(np.random.default_rng(0), [3, 3, 2])]

        with pytest.raises(ModelExportError, match="one output node"):
            model_exporter.export(fitted_transforms, networks, "two_outputs")

    def test_no_networks(self, model_exporter, fitted_transforms):
        with pytest.raises(ModelExportError):
            model_exporter.export(fitted_transforms, [], "empty")


class TestClassifier:

    def test_ensemble_average(self):
        rng = np.random.default_rng(3)
        first = random_network(rng, [2, 4, 1])
        second = random_network(rng, [2, 4, 1])
        classifier = Classifier([], [first, second])

        values = np.array([0.3, -1.2])

        assert classifier.evaluate(values) == (first.apply(values)[0] + second.apply(values)[0]) / 2

    def test_input_length_is_checked(self):
        classifier = Classifier([], [random_network(np.random.default_rng(1), [2, 4, 1])])

        with pytest.raises(ValueError):
            classifier.evaluate([1., 2., 3.])

    def test_networks_from_parameter_dumps(self, tmp_path):
        rng = np.random.default_rng(5)
        originals = [random_network(rng, [3, 5, 1]) for _ in range(3)]

        dumps = []
        for index, network in enumerate(originals):
            path = tmp_path / f"network_{index:03d}.txt"
            path.write_text(write_parameter_dump(network))
            dumps.append(path)

        networks = load_networks(dumps, [3, 5, 1])

        probe = np.array([0.5, -0.5, 2.])
        for original, network in zip(originals, networks):
            assert network.apply(probe).tolist() == original.apply(probe).tolist()

    def test_export_config_validation(self):
        with pytest.raises(ValueError):
            ExportConfig(validation_samples=0)
        with pytest.raises(ValueError):
            ExportConfig(probe_scale=-1.)
