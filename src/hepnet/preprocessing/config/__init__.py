# /hepnet/src/hepnet/preprocessing/config/__init__.py

"""
Preprocessing Configuration Management

YAML task files with environment presets and environment variable overrides.
"""

from .preprocessing_config import (
    PreprocessingConfig,
    InputConfig,
    SampleConfig,
    NetworkConfig,
    OutputConfig,
    MonitoringConfig,
    load_preprocessing_config
)

__all__ = [
    "PreprocessingConfig",
    "InputConfig",
    "SampleConfig",
    "NetworkConfig",
    "OutputConfig",
    "MonitoringConfig",
    "load_preprocessing_config"
]
