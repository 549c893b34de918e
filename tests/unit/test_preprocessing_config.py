"""
Unit tests for the YAML task configuration.
"""

from pathlib import Path

import pytest

from hepnet.preprocessing.config.preprocessing_config import (
    ConfigurationValidator,
    InputConfig,
    NetworkConfig,
    OutputConfig,
    PreprocessingConfig,
    SampleConfig,
    load_preprocessing_config,
)
from hepnet.preprocessing.core.exceptions import ConfigurationError
from hepnet.preprocessing.core.sources import BACKGROUND, DEFAULT_MAX_FRACTION, SIGNAL


class TestLoadConfiguration:

    def test_dashed_keys_are_accepted(self, task_config_factory):
        config = load_preprocessing_config(task_config_factory())

        assert config.input.variables == ("pt", "eta", "mass")
        assert config.input.def_train_weight == "gen_weight"
        assert config.network.number_neurons == 8
        assert config.network.ensemble_size == 10
        assert config.output.random_seed == 1

    def test_samples_inherit_the_default_weight(self, task_config_factory):
        config = load_preprocessing_config(task_config_factory())

        signal, background = config.input.samples
        assert signal.label == SIGNAL
        assert background.label == BACKGROUND
        assert signal.train_weight == "gen_weight"
        assert signal.number_events == ("50%",)

    def test_task_name_defaults_to_file_stem(self, task_config_factory, tmp_path):
        config = load_preprocessing_config(task_config_factory("ttbar_semilep"))

        assert config.task_name == "ttbar_semilep"
        assert config.network_name == "ttbar_semilep.net"
        assert config.ledger_path == tmp_path / "output" / "ttbar_semilep_trainEvents.txt"
        assert config.training_path == tmp_path / "output" / "ttbar_semilep_train.csv"
        assert config.code_path == tmp_path / "output" / "ttbar_semilep_transforms.py"
        assert config.parameters_path == tmp_path / "output" / "ttbar_semilep_transforms.json"

    def test_explicit_task_name(self, task_config_factory):
        config = load_preprocessing_config(task_config_factory(general={"task-name": "tHq"}))

        assert config.task_name == "tHq"

    def test_relative_sample_paths_follow_the_config_file(self, task_config_factory, tmp_path):
        path = task_config_factory(input_samples={
            "signal-samples": {"file-name": "samples/signal.csv", "train-weight": "1"}
        })

        config = load_preprocessing_config(path)

        assert Path(config.input.signal_samples[0].file_name) == tmp_path / "samples" / "signal.csv"
        assert config.input.signal_samples[0].train_weight == "1"

    def test_setting_references(self, task_config_factory):
        path = task_config_factory(
            general={"weight": "gen_weight * 2", "neurons": 12},
            input_samples={"def-train-weight": "@general.weight"},
            bnn_parameters={"number-neurons": "@general.neurons"}
        )

        config = load_preprocessing_config(path)

        assert config.input.signal_samples[0].train_weight == "gen_weight * 2"
        assert config.network.number_neurons == 12

    def test_reference_cycle_is_rejected(self, task_config_factory):
        path = task_config_factory(general={"a": "@general.b", "b": "@general.a"})

        with pytest.raises(ConfigurationError, match="cycle"):
            load_preprocessing_config(path)

    def test_unknown_reference_is_rejected(self, task_config_factory):
        path = task_config_factory(input_samples={"def-train-weight": "@general.absent"})

        with pytest.raises(ConfigurationError, match="does not exist"):
            load_preprocessing_config(path)

    def test_missing_background_is_rejected(self, task_config_factory):
        path = task_config_factory(input_samples={"background-samples": None})

        with pytest.raises(ConfigurationError, match="background sample"):
            load_preprocessing_config(path)

    def test_nonexistent_sample_file_is_rejected(self, task_config_factory, tmp_path):
        path = task_config_factory(input_samples={
            "signal-samples": [{"file-name": str(tmp_path / "absent.csv")}]
        })

        with pytest.raises(ConfigurationError, match="does not exist"):
            load_preprocessing_config(path)

    def test_pca_is_rejected(self, task_config_factory):
        path = task_config_factory(input_samples={"preprocessing": ["standard", "pca"]})

        with pytest.raises(ConfigurationError, match="PCA"):
            load_preprocessing_config(path)

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_preprocessing_config(tmp_path / "absent.yaml")


class TestEnvironments:

    def test_testing_preset_silences_logging(self, task_config_factory):
        config = load_preprocessing_config(task_config_factory(), environment="testing")

        assert config.monitoring.log_level == "WARNING"
        assert not config.monitoring.enable_console
        assert not config.monitoring.enable_file
        assert config.logging_options()["level"] == "WARNING"

    def test_development_preset(self, task_config_factory):
        config = load_preprocessing_config(task_config_factory())

        assert config.monitoring.log_level == "DEBUG"
        assert config.monitoring.log_format == "text"

    def test_production_requires_a_seed(self, task_config_factory):
        path = task_config_factory(output={"random-seed": None})

        with pytest.raises(ConfigurationError, match="random seed"):
            load_preprocessing_config(path, environment="production")

    def test_environment_variables_override_the_file(self, task_config_factory, monkeypatch):
        monkeypatch.setenv("HEPNET_RANDOM_SEED", "99")
        monkeypatch.setenv("HEPNET_LEDGER_FILE", "shared_events.txt")

        config = load_preprocessing_config(task_config_factory(), environment="testing")

        assert config.output.random_seed == 99
        assert config.ledger_path.name == "shared_events.txt"

    def test_invalid_environment_variable(self, task_config_factory, monkeypatch):
        monkeypatch.setenv("HEPNET_RANDOM_SEED", "seven")

        with pytest.raises(ConfigurationError, match="HEPNET_RANDOM_SEED"):
            load_preprocessing_config(task_config_factory())


class TestConfigSections:

    def test_sample_limits_become_a_source(self):
        source = SampleConfig("tth.csv", SIGNAL, number_events=("20%", "1000")).to_source()

        assert source.max_events == 1000
        assert source.max_fraction == pytest.approx(0.2)

    def test_event_list_overrides_limits(self):
        source = SampleConfig("tth.csv", SIGNAL, number_events=("20%",),
                              event_list_file="events.txt").to_source()

        assert source.uses_event_list
        assert source.max_fraction == DEFAULT_MAX_FRACTION

    def test_network_architecture(self):
        assert NetworkConfig(number_neurons=20, ensemble_size=5).architecture(7) == [7, 20, 1]

    def test_network_validation(self):
        errors = NetworkConfig(number_neurons=0, ensemble_size=0, rescale_weights="3:1").validate()

        assert len(errors) == 3

    def test_output_paths(self, tmp_path):
        output = OutputConfig(output_dir=str(tmp_path), training_file="/abs/train.csv")

        assert output.resolve(output.training_file, "x.csv") == Path("/abs/train.csv")
        assert output.resolve(None, "x.csv") == tmp_path / "x.csv"

    def test_code_file_must_be_importable(self):
        assert OutputConfig(code_file="my-transforms.py").validate()
        assert not OutputConfig(code_file="my_transforms.py").validate()

    def test_validator_reports_missing_event_list(self, csv_samples, tmp_path):
        signal_path, background_path = csv_samples
        config = PreprocessingConfig(
            task_name="ttH",
            input=InputConfig(
                variables=("pt",),
                signal_samples=(SampleConfig(str(signal_path), SIGNAL,
                                             event_list_file=str(tmp_path / "absent.txt")),),
                background_samples=(SampleConfig(str(background_path), BACKGROUND),)
            ),
            network=NetworkConfig(number_neurons=4, ensemble_size=2)
        )

        is_valid, errors = ConfigurationValidator().validate_configuration(config)

        assert not is_valid
        assert errors == [f"Event list file does not exist: {tmp_path / 'absent.txt'}"]
