# /hepnet/src/hepnet/preprocessing/__init__.py

"""
Training-Set Preprocessing for hepnet

Prepares the input of the external network trainer: a weighted, labeled and
transformed training table drawn from signal and background samples, together
with the event-index ledger that keeps later evaluation sets free of
training events.

Key Features:
- Reproducible sampling with an injectable random generator
- Persistent ledger of every event offered to training
- Streaming Standardize and Gaussianize transformations
- Transform parameters rendered as self-contained Python code
- YAML configuration with environment overrides and structured logging

Core Components:
- EventIndexLedger: line-oriented record of tried event indices per source
- TrainingSetBuilder: quota and explicit-list sampling with class reweighting
- Transform: Unbuilt -> Built state machine around the transform variants
- PreprocessingPipeline: end-to-end run driven by PreprocessingConfig
"""

from .core.event_ledger import EventIndexLedger, ExamSetFilter, LedgerEntry, LedgerMode
from .core.exceptions import (
    ConfigurationError,
    DataIntegrityError,
    HepnetError,
    LedgerEntryNotFoundError,
    NotFoundError,
    StateError,
    UnsupportedOperationError
)
from .core.sources import SampleSource, parse_event_limits
from .core.training_set import Event, Reweighting, TrainingSet, TrainingSetBuilder
from .core.transforms import Transform, TransformKind
from .core.pipeline_orchestrator import PreprocessingPipeline, create_preprocessing_pipeline

from .config.preprocessing_config import (
    PreprocessingConfig,
    InputConfig,
    SampleConfig,
    NetworkConfig,
    OutputConfig,
    MonitoringConfig,
    load_preprocessing_config
)

from .utils.logging import PipelineLogger, setup_preprocessing_logging

__version__ = "1.0.0"

__all__ = [
    # Core components
    "EventIndexLedger",
    "ExamSetFilter",
    "LedgerEntry",
    "LedgerMode",
    "SampleSource",
    "parse_event_limits",
    "Event",
    "Reweighting",
    "TrainingSet",
    "TrainingSetBuilder",
    "Transform",
    "TransformKind",
    "PreprocessingPipeline",
    "create_preprocessing_pipeline",

    # Errors
    "HepnetError",
    "ConfigurationError",
    "DataIntegrityError",
    "StateError",
    "NotFoundError",
    "LedgerEntryNotFoundError",
    "UnsupportedOperationError",

    # Configuration
    "PreprocessingConfig",
    "InputConfig",
    "SampleConfig",
    "NetworkConfig",
    "OutputConfig",
    "MonitoringConfig",
    "load_preprocessing_config",

    # Utilities
    "PipelineLogger",
    "setup_preprocessing_logging"
]
