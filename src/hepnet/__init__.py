"""
hepnet: training-set preparation and network evaluation for event classification.

Subpackages:
- preprocessing: sampling of labeled events, event-index ledger, input transformations
- network: multilayer perceptron model, trainer dump ingestion, classifier export
"""

__version__ = "1.0.0"
