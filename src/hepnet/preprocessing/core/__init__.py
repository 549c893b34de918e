# /hepnet/src/hepnet/preprocessing/core/__init__.py

"""
Core Preprocessing Components

- EventIndexLedger: persistence of the event indices tried for training
- TrainingSetBuilder: sampling, weight correction and class reweighting
- Transform: Standardize and Gaussianize with code rendering
- PreprocessingPipeline: stage coordination and error handling
"""

from .event_ledger import EventIndexLedger, ExamSetFilter, LedgerMode
from .training_set import TrainingSet, TrainingSetBuilder
from .transforms import Transform
from .pipeline_orchestrator import PreprocessingPipeline

__all__ = [
    "EventIndexLedger",
    "ExamSetFilter",
    "LedgerMode",
    "TrainingSet",
    "TrainingSetBuilder",
    "Transform",
    "PreprocessingPipeline"
]
