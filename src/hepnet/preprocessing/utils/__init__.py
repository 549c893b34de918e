# /hepnet/src/hepnet/preprocessing/utils/__init__.py

"""
Preprocessing Utilities

Structured logging for the preprocessing pipeline.
"""

from .logging import PipelineLogger, setup_preprocessing_logging, stage_logging

__all__ = [
    "PipelineLogger",
    "setup_preprocessing_logging",
    "stage_logging"
]
