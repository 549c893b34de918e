"""
Network Evaluation and Export

Holds the parameters of networks trained by the external sampler, evaluates
them, and renders the complete classifier (input transformations followed by
the network ensemble) as a self-contained Python module.

Key Components:
- NetworkModel: multilayer perceptron with tanh hidden layers
- read_parameter_dump: ingestion of the trainer's parameter dump
- ModelExporter: code rendering with exact reproduction check
"""

from .network_model import NetworkModel
from .parameter_dump import ParameterDumpError, read_parameter_dump, read_parameter_dump_file
from .model_export import Classifier, ExportConfig, ModelExporter, ModelExportError, ValidationResult

__version__ = "1.0.0"

__all__ = [
    "NetworkModel",
    "ParameterDumpError",
    "read_parameter_dump",
    "read_parameter_dump_file",
    "Classifier",
    "ExportConfig",
    "ModelExporter",
    "ModelExportError",
    "ValidationResult"
]
