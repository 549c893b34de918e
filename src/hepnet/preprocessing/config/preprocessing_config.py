# /hepnet/src/hepnet/preprocessing/config/preprocessing_config.py

"""
Preprocessing Configuration Management

YAML configuration for a preprocessing task: which samples to draw the
training set from, which input variables to compute, which transformations
to apply and where the outputs go.

Key Features:
- YAML-based configuration with environment-specific overrides
- Keys may be written with dashes or underscores ("number-events" or "number_events")
- Setting references: a string value "@section.key" is replaced by the referenced value
- Environment variable overrides for the settings changed most often between runs
- Type-safe, immutable configuration objects with validation

Architecture:
- Base file -> reference expansion -> environment presets -> environment variables
- Frozen dataclasses per section, each with a validate() method
- Cross-section checks (file existence, environment compatibility) in ConfigurationValidator
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, field

from ..core.exceptions import ConfigurationError
from ..core.sources import BACKGROUND, SIGNAL, SampleSource, parse_event_limits
from ..core.training_set import Reweighting
from ..core.transforms import DEFAULT_CDF_BINS, TransformKind


REFERENCE_PREFIX = "@"
MAX_REFERENCE_DEPTH = 32

VALID_ENVIRONMENTS = ["development", "staging", "production", "testing"]


@dataclass(frozen=True)
class SampleConfig:
    """
    Configuration of one input sample.

    ``number_events`` holds size limits: entries ending with '%' limit the
    fraction of the source that may be tried, other entries cap the number of
    kept events.
    """
    file_name: str
    label: int
    train_weight: str = "1"
    number_events: Optional[Tuple[str, ...]] = None
    event_list_file: Optional[str] = None

    def validate(self) -> List[str]:
        errors = []

        if not self.file_name:
            errors.append("Sample file name cannot be empty")

        if self.label not in (SIGNAL, BACKGROUND):
            errors.append(f"Sample label must be 0 or 1: {self.label}")

        if not str(self.train_weight).strip():
            errors.append(f"Train weight cannot be empty for sample '{self.file_name}'")

        if self.number_events is not None:
            try:
                parse_event_limits(self.number_events)
            except ConfigurationError as e:
                errors.append(f"Sample '{self.file_name}': {e}")

        return errors

    def to_source(self) -> SampleSource:
        """
        Convert to the description used by the training-set builder.

        An explicit event list takes precedence over size limits.
        """
        if self.event_list_file and self.number_events is not None:
            logging.getLogger(__name__).warning("sample_config.limits_ignored", extra={
                "source": self.file_name,
                "event_list_file": self.event_list_file
            })
            max_events, max_fraction = parse_event_limits(None)
        else:
            max_events, max_fraction = parse_event_limits(self.number_events)

        return SampleSource(
            file_name=self.file_name,
            label=self.label,
            train_weight=str(self.train_weight),
            max_events=max_events,
            max_fraction=max_fraction,
            event_list_file=self.event_list_file
        )


@dataclass(frozen=True)
class InputConfig:
    """
    Configuration of the training-set inputs and preprocessing.
    """
    variables: Tuple[str, ...] = ()
    signal_samples: Tuple[SampleConfig, ...] = ()
    background_samples: Tuple[SampleConfig, ...] = ()

    # Defaults for samples that do not set their own
    def_train_weight: str = "1"

    # Transformations, applied in order
    preprocessing: Tuple[str, ...] = ("gauss",)
    gauss_bins: int = DEFAULT_CDF_BINS
    tail_fraction: Optional[float] = None

    @property
    def samples(self) -> List[SampleConfig]:
        return list(self.signal_samples) + list(self.background_samples)

    def transform_options(self) -> Dict[str, Dict[str, Any]]:
        return {
            TransformKind.GAUSS.value: {
                "n_bins": self.gauss_bins,
                "tail_fraction": self.tail_fraction
            }
        }

    def validate(self) -> List[str]:
        """Validate input configuration parameters."""
        errors = []

        if not self.variables:
            errors.append("At least one input variable must be specified")

        if not self.signal_samples:
            errors.append("At least one signal sample must be specified")

        if not self.background_samples:
            errors.append("At least one background sample must be specified")

        for sample in self.samples:
            errors.extend(sample.validate())

        for kind in self.preprocessing:
            try:
                if TransformKind.from_string(kind) == TransformKind.PCA:
                    errors.append("PCA preprocessing is not supported")
            except ConfigurationError as e:
                errors.append(str(e))

        if self.gauss_bins < 2:
            errors.append(f"Number of CDF bins must be at least 2: {self.gauss_bins}")

        if self.tail_fraction is not None and not 0 < self.tail_fraction < 0.5:
            errors.append(f"Tail fraction must be in (0, 0.5): {self.tail_fraction}")

        return errors


@dataclass(frozen=True)
class NetworkConfig:
    """
    Parameters handed over to the external network trainer.
    """
    number_neurons: int = 0
    ensemble_size: int = 0
    burn_in: int = 0
    rescale_weights: str = Reweighting.ONE_TO_ONE.value
    network_name: Optional[str] = None

    def architecture(self, n_features: int) -> List[int]:
        """Input layer, one hidden layer, one output node."""
        return [n_features, self.number_neurons, 1]

    def validate(self) -> List[str]:
        errors = []

        if self.number_neurons <= 0:
            errors.append(f"Number of hidden neurons must be positive: {self.number_neurons}")

        if self.ensemble_size <= 0:
            errors.append(f"Ensemble size must be positive: {self.ensemble_size}")

        if self.burn_in < 0:
            errors.append(f"Burn-in must be non-negative: {self.burn_in}")

        try:
            Reweighting.from_string(self.rescale_weights)
        except ConfigurationError as e:
            errors.append(str(e))

        return errors


@dataclass(frozen=True)
class OutputConfig:
    """
    Output locations. Relative file names are placed in ``output_dir``;
    unset names are derived from the task name.
    """
    output_dir: str = "output"
    ledger_file: Optional[str] = None
    training_file: Optional[str] = None
    code_file: Optional[str] = None

    extend_ledger: bool = False
    random_seed: Optional[int] = None

    def resolve(self, file_name: Optional[str], default: str) -> Path:
        path = Path(file_name or default)
        return path if path.is_absolute() else Path(self.output_dir) / path

    def validate(self) -> List[str]:
        errors = []

        if not self.output_dir:
            errors.append("Output directory cannot be empty")

        if self.random_seed is not None and self.random_seed < 0:
            errors.append(f"Random seed must be non-negative: {self.random_seed}")

        if self.code_file is not None and not Path(self.code_file).stem.isidentifier():
            errors.append(f"Code file name must be a valid module name: {self.code_file}")

        return errors


@dataclass(frozen=True)
class MonitoringConfig:
    """
    Configuration for logging.
    """
    log_level: str = "INFO"
    log_dir: str = "logs/preprocessing"
    log_format: str = "json"  # json, text
    log_rotation_size_mb: int = 100
    enable_console: bool = True
    enable_file: bool = True

    def validate(self) -> List[str]:
        """Validate monitoring configuration parameters."""
        errors = []

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Invalid log level: {self.log_level}")

        valid_log_formats = ["json", "text"]
        if self.log_format.lower() not in valid_log_formats:
            errors.append(f"Invalid log format: {self.log_format}")

        if self.log_rotation_size_mb <= 0:
            errors.append(f"Log rotation size must be positive: {self.log_rotation_size_mb}")

        return errors


@dataclass(frozen=True)
class PreprocessingConfig:
    """
    Master configuration of a preprocessing task.
    """
    task_name: str
    input: InputConfig = field(default_factory=InputConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    environment: str = "development"

    @property
    def ledger_path(self) -> Path:
        return self.output.resolve(self.output.ledger_file, f"{self.task_name}_trainEvents.txt")

    @property
    def training_path(self) -> Path:
        return self.output.resolve(self.output.training_file, f"{self.task_name}_train.csv")

    @property
    def code_path(self) -> Path:
        return self.output.resolve(self.output.code_file, f"{self.task_name}_transforms.py")

    @property
    def parameters_path(self) -> Path:
        return self.code_path.with_suffix(".json")

    @property
    def network_file_path(self) -> Path:
        return self.output.resolve(None, f"{self.task_name}_network.json")

    @property
    def network_name(self) -> str:
        return self.network.network_name or f"{self.task_name}.net"

    def validate(self) -> List[str]:
        """Validate complete preprocessing configuration."""
        errors = []

        errors.extend(self.input.validate())
        errors.extend(self.network.validate())
        errors.extend(self.output.validate())
        errors.extend(self.monitoring.validate())

        if not self.task_name:
            errors.append("Task name cannot be empty")

        if self.environment.lower() not in VALID_ENVIRONMENTS:
            errors.append(f"Invalid environment: {self.environment}")

        return errors

    def is_production_environment(self) -> bool:
        return self.environment.lower() == "production"

    def logging_options(self) -> Dict[str, Any]:
        """Keyword arguments for setup_preprocessing_logging."""
        return {
            "level": self.monitoring.log_level,
            "log_format": self.monitoring.log_format,
            "log_dir": self.monitoring.log_dir,
            "enable_console": self.monitoring.enable_console,
            "enable_file": self.monitoring.enable_file
        }


class ConfigurationValidator:
    """
    Checks that go beyond a single section: input files and environment rules.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate_configuration(self, config: PreprocessingConfig) -> Tuple[bool, List[str]]:
        """
        Comprehensive configuration validation.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = config.validate()

        errors.extend(self._validate_file_paths(config))
        errors.extend(self._validate_environment_compatibility(config))

        is_valid = len(errors) == 0

        if not is_valid:
            self.logger.error("configuration.validation_failed", extra={
                "error_count": len(errors),
                "errors": errors
            })

        return is_valid, errors

    def _validate_file_paths(self, config: PreprocessingConfig) -> List[str]:
        errors = []

        for sample in config.input.samples:
            if not Path(sample.file_name).exists():
                errors.append(f"Sample file does not exist: {sample.file_name}")

            if sample.event_list_file and not Path(sample.event_list_file).exists():
                errors.append(f"Event list file does not exist: {sample.event_list_file}")

        return errors

    def _validate_environment_compatibility(self, config: PreprocessingConfig) -> List[str]:
        errors = []

        if config.is_production_environment():
            if config.monitoring.log_level.upper() == "DEBUG":
                errors.append("DEBUG logging not recommended in production")

            if config.output.random_seed is None:
                errors.append("Production runs must set a random seed to be reproducible")

        return errors


def load_preprocessing_config(config_path: Union[str, Path],
                              environment: str = "development") -> PreprocessingConfig:
    """
    Load preprocessing configuration with environment-specific overrides.

    Args:
        config_path: Path to the YAML task file; its stem is the default task name
        environment: Environment name (development, staging, production, testing)

    Returns:
        Validated PreprocessingConfig object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = logging.getLogger(__name__)

    try:
        base_config = _load_base_config(config_path)

        base_config = _resolve_references(base_config)

        env_config = _apply_environment_overrides(base_config, environment)

        config = _create_config_object(env_config, environment, Path(config_path))

        validator = ConfigurationValidator()
        is_valid, errors = validator.validate_configuration(config)

        if not is_valid:
            raise ConfigurationError(f"Configuration validation failed: {errors}")

        logger.info("preprocessing_config.loaded", extra={
            "environment": environment,
            "config_path": str(config_path),
            "task_name": config.task_name,
            "n_samples": len(config.input.samples)
        })

        return config

    except Exception as e:
        logger.error("preprocessing_config.load_failed", extra={
            "environment": environment,
            "config_path": str(config_path),
            "error": str(e)
        })
        raise ConfigurationError(f"Failed to load preprocessing configuration: {e}") from e


def _load_base_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load base configuration from YAML file."""
    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_file}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML configuration: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError("Top level of the configuration must be a mapping")

    return _normalize_keys(config)


def _normalize_keys(value: Any) -> Any:
    """Convert dashed keys to underscores, recursively."""
    if isinstance(value, dict):
        return {str(key).replace('-', '_'): _normalize_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value]
    return value


def _lookup(config: Dict[str, Any], dotted_path: str) -> Any:
    node: Any = config
    for part in dotted_path.replace('-', '_').split('.'):
        if not isinstance(node, dict) or part not in node:
            raise ConfigurationError(f"Referenced setting '{dotted_path}' does not exist")
        node = node[part]
    return node


def _resolve_references(config: Dict[str, Any]) -> Dict[str, Any]:
    """Replace every "@section.key" string with the referenced value, recursively."""

    def resolve(value: Any, depth: int) -> Any:
        if depth > MAX_REFERENCE_DEPTH:
            raise ConfigurationError("Setting references are nested too deeply or form a cycle")

        if isinstance(value, str) and value.startswith(REFERENCE_PREFIX):
            return resolve(_lookup(config, value[len(REFERENCE_PREFIX):]), depth + 1)
        if isinstance(value, dict):
            return {key: resolve(item, depth) for key, item in value.items()}
        if isinstance(value, list):
            return [resolve(item, depth) for item in value]
        return value

    return resolve(config, 0)


def _apply_environment_overrides(base_config: Dict[str, Any],
                                 environment: str) -> Dict[str, Any]:
    """Apply environment-specific configuration overrides."""
    config = base_config.copy()

    env_defaults = {
        "development": {
            "monitoring": {
                "log_level": "DEBUG",
                "log_format": "text"
            }
        },
        "staging": {
            "monitoring": {
                "log_level": "INFO"
            }
        },
        "production": {
            "monitoring": {
                "log_level": "INFO",
                "log_format": "json",
                "enable_file": True
            }
        },
        "testing": {
            "monitoring": {
                "log_level": "WARNING",
                "enable_console": False,
                "enable_file": False
            }
        }
    }

    env_config = env_defaults.get(environment.lower(), {})
    config = _deep_merge_dicts(config, env_config)

    config = _apply_environment_variables(config)

    return config


def _deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


def _apply_environment_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides."""
    env_mapping = {
        "HEPNET_LOG_LEVEL": ("monitoring", "log_level", str),
        "HEPNET_LEDGER_FILE": ("output", "ledger_file", str),
        "HEPNET_RANDOM_SEED": ("output", "random_seed", int),
        "HEPNET_TRAINING_FILE": ("output", "training_file", str)
    }

    for env_var, (section, key, convert) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                value = convert(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value of {env_var}: '{value}'") from e

            config[section] = dict(config.get(section) or {}, **{key: value})

    return config


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def _resolve_path(value: Optional[str], base_dir: Path) -> Optional[str]:
    if not value:
        return value
    path = Path(value)
    return str(path if path.is_absolute() else base_dir / path)


def _create_samples(groups: Any, label: int, defaults: Dict[str, Any],
                    base_dir: Path) -> Tuple[SampleConfig, ...]:
    if groups is None:
        return ()
    if isinstance(groups, dict):
        groups = [groups]

    samples = []
    for group in groups:
        if not isinstance(group, dict) or "file_name" not in group:
            raise ConfigurationError(f"Sample definition must contain a file name: {group}")

        number_events = group.get("number_events")
        samples.append(SampleConfig(
            file_name=_resolve_path(str(group["file_name"]), base_dir),
            label=label,
            train_weight=str(group.get("train_weight", defaults["train_weight"])),
            number_events=tuple(str(n) for n in _as_tuple(number_events)) if number_events is not None else None,
            event_list_file=_resolve_path(group.get("event_list_file"), base_dir)
        ))

    return tuple(samples)


def _create_config_object(config_dict: Dict[str, Any], environment: str,
                          config_path: Path) -> PreprocessingConfig:
    """
    Create PreprocessingConfig object from dictionary.

    Sample paths are taken relative to the directory of the configuration file.
    """
    base_dir = config_path.parent
    general = config_dict.get("general") or {}

    input_dict = dict(config_dict.get("input_samples") or {})
    defaults = {"train_weight": input_dict.pop("def_train_weight", "1")}
    signal_groups = input_dict.pop("signal_samples", None)
    background_groups = input_dict.pop("background_samples", None)

    input_config = InputConfig(
        variables=tuple(str(v) for v in _as_tuple(input_dict.pop("variables", None))),
        signal_samples=_create_samples(signal_groups, SIGNAL, defaults, base_dir),
        background_samples=_create_samples(background_groups, BACKGROUND, defaults, base_dir),
        def_train_weight=str(defaults["train_weight"]),
        preprocessing=tuple(str(p) for p in _as_tuple(input_dict.pop("preprocessing", ["gauss"]))),
        **input_dict
    )

    network_config = NetworkConfig(**(config_dict.get("bnn_parameters") or {}))
    output_config = OutputConfig(**(config_dict.get("output") or {}))
    monitoring_config = MonitoringConfig(**(config_dict.get("monitoring") or {}))

    return PreprocessingConfig(
        task_name=str(general.get("task_name") or config_path.stem),
        input=input_config,
        network=network_config,
        output=output_config,
        monitoring=monitoring_config,
        environment=environment
    )
