"""
NetworkModel - Feed-Forward Multilayer Perceptron

Representation and evaluation of a trained network. Training itself happens
in an external sampler; this module only holds the resulting parameters,
evaluates the network and renders it as self-contained Python code.

Key Features:
- Architecture of at least three layers (input, one or more hidden, output)
- Range-checked access to single weights and biases, length-checked bulk setters
- Forward evaluation returning a new array on every call
- Rendered code and dictionary form that reproduce evaluation exactly
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..preprocessing.core.exceptions import DataIntegrityError, StateError

logger = logging.getLogger(__name__)


def forward(weights: List[List[List[float]]], biases: List[List[float]],
            values: Sequence[float], classification: bool) -> List[float]:
    """
    Propagate an input vector through the layers.

    Hidden layers use tanh; the output layer has no activation unless the
    network is a classifier, in which case the logistic function is applied.
    Sums are accumulated bias first, then source nodes in order.
    """
    activations = [float(v) for v in values]
    n_layers = len(weights)

    for layer in range(n_layers):
        outputs = []
        for node_weights, bias in zip(weights[layer], biases[layer]):
            total = bias
            for weight, activation in zip(node_weights, activations):
                total += activation * weight
            outputs.append(total if layer == n_layers - 1 else math.tanh(total))
        activations = outputs

    if classification:
        activations = [0. if a < -709. else 1. / (1. + math.exp(-a)) for a in activations]

    return activations


class NetworkModel:
    """
    Multilayer perceptron with an explicit architecture.

    Layers are numbered from 0 (input). Weights of layer l connect node n of
    layer l to node np of layer l - 1; layer 0 has neither weights nor biases.

    Examples:
        model = NetworkModel([2, 3, 1])
        model.set_weights(1, 0, [0.5, 0.5])
        model.set_bias(2, 0, 0.1)
        output = model.apply([1.0, -1.0])
    """

    def __init__(self, architecture: Optional[Sequence[int]] = None, classification: bool = True):
        self._architecture: Tuple[int, ...] = ()
        self._weights: List[np.ndarray] = []
        self._biases: List[np.ndarray] = []
        self.classification = classification

        if architecture is not None:
            self.set_architecture(architecture)

    @property
    def architecture(self) -> Tuple[int, ...]:
        return self._architecture

    @property
    def n_layers(self) -> int:
        return len(self._architecture)

    def set_architecture(self, architecture: Sequence[int]) -> None:
        """
        Set layer widths. An identical architecture keeps the parameters,
        any other one reallocates them as zeros.

        Raises:
            ValueError: If fewer than three layers or a non-positive width is given
        """
        architecture = tuple(int(n) for n in architecture)

        if len(architecture) < 3:
            raise ValueError("The neural network cannot contain less than 3 layers")
        if any(n <= 0 for n in architecture):
            raise ValueError(f"Layer widths must be positive: {list(architecture)}")

        if architecture == self._architecture:
            return

        self._architecture = architecture
        self._weights = [
            np.zeros((architecture[l], architecture[l - 1])) for l in range(1, len(architecture))
        ]
        self._biases = [np.zeros(architecture[l]) for l in range(1, len(architecture))]

        logger.debug("network.architecture_set", extra={"architecture": list(architecture)})

    def set_classification(self, classification: bool = True) -> None:
        self.classification = classification

    def get_weight(self, layer: int, node: int, source_node: int) -> float:
        self._check_weight_index(layer, node, source_node)
        return float(self._weights[layer - 1][node, source_node])

    def set_weight(self, layer: int, node: int, source_node: int, value: float) -> None:
        self._check_weight_index(layer, node, source_node)
        self._weights[layer - 1][node, source_node] = value

    def get_bias(self, layer: int, node: int) -> float:
        self._check_bias_index(layer, node)
        return float(self._biases[layer - 1][node])

    def set_bias(self, layer: int, node: int, value: float) -> None:
        self._check_bias_index(layer, node)
        self._biases[layer - 1][node] = value

    def set_biases(self, layer: int, biases: Sequence[float]) -> None:
        """Set all biases of a layer. Raises ValueError on a length mismatch."""
        self._check_layer(layer)
        if len(biases) != self._architecture[layer]:
            raise ValueError(
                f"Got {len(biases)} biases for layer {layer} of {self._architecture[layer]} nodes"
            )
        self._biases[layer - 1][:] = np.asarray(biases, dtype=np.float64)

    def set_weights(self, layer: int, node: int, weights: Sequence[float]) -> None:
        """Set all incoming weights of a node. Raises ValueError on a length mismatch."""
        self._check_layer(layer)
        if node < 0 or node >= self._architecture[layer]:
            raise IndexError(f"Illegal node index {node} for layer {layer}")
        if len(weights) != self._architecture[layer - 1]:
            raise ValueError(
                f"Got {len(weights)} weights for node {node} of layer {layer}, "
                f"expected {self._architecture[layer - 1]}"
            )
        self._weights[layer - 1][node, :] = np.asarray(weights, dtype=np.float64)

    def get_biases(self, layer: int) -> np.ndarray:
        self._check_layer(layer)
        return self._biases[layer - 1].copy()

    def get_weights(self, layer: int) -> np.ndarray:
        """Weights of a layer as a (nodes, source nodes) array copy."""
        self._check_layer(layer)
        return self._weights[layer - 1].copy()

    def apply(self, values: Sequence[float]) -> np.ndarray:
        """
        Evaluate the network. Every call returns a new array.

        Raises:
            StateError: If no architecture is set
            ValueError: If the input length does not match the input layer
        """
        if not self._architecture:
            raise StateError("The neural network has no architecture")
        if len(values) != self._architecture[0]:
            raise ValueError(
                f"Got {len(values)} inputs, the network has {self._architecture[0]} input neurons"
            )

        outputs = forward(
            [w.tolist() for w in self._weights],
            [b.tolist() for b in self._biases],
            values,
            self.classification
        )
        return np.array(outputs)

    __call__ = apply

    def copy(self) -> 'NetworkModel':
        clone = NetworkModel(classification=self.classification)
        clone._architecture = self._architecture
        clone._weights = [w.copy() for w in self._weights]
        clone._biases = [b.copy() for b in self._biases]
        return clone

    def render_code(self, class_name: str = "NeuralNetwork") -> str:
        """Python source of a class evaluating this network. Needs ``import math``."""
        if not self._architecture:
            raise StateError("The neural network has no architecture")

        def fmt(values):
            return "[" + ", ".join(repr(float(v)) for v in values) + "]"

        lines = [
            f"class {class_name}:",
            f"    \"\"\"Network {'-'.join(str(n) for n in self._architecture)}"
            f"{', classification output' if self.classification else ''}.\"\"\"",
            "",
            f"    architecture = {self._architecture!r}",
            f"    classification = {self.classification!r}",
            "    weights = [",
        ]
        for layer_weights in self._weights:
            lines.append("        [")
            lines.extend(f"            {fmt(row)}," for row in layer_weights)
            lines.append("        ],")
        lines.append("    ]")
        lines.append("    biases = [")
        lines.extend(f"        {fmt(layer_biases)}," for layer_biases in self._biases)
        lines.append("    ]")
        lines.extend([
            "",
            "    def __call__(self, values):",
            "        activations = [float(v) for v in values]",
            "        n_layers = len(self.weights)",
            "        for layer in range(n_layers):",
            "            outputs = []",
            "            for node_weights, bias in zip(self.weights[layer], self.biases[layer]):",
            "                total = bias",
            "                for weight, activation in zip(node_weights, activations):",
            "                    total += activation * weight",
            "                outputs.append(total if layer == n_layers - 1 else math.tanh(total))",
            "            activations = outputs",
            "        if self.classification:",
            "            activations = [0. if a < -709. else 1. / (1. + math.exp(-a)) for a in activations]",
            "        return activations",
        ])
        return "\n".join(lines) + "\n"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'architecture': list(self._architecture),
            'classification': self.classification,
            'weights': [w.tolist() for w in self._weights],
            'biases': [b.tolist() for b in self._biases]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NetworkModel':
        """Recreate a network from ``to_dict()`` output, filling it via the bulk setters."""
        try:
            model = cls(data['architecture'], classification=bool(data.get('classification', True)))
            for layer in range(1, model.n_layers):
                model.set_biases(layer, data['biases'][layer - 1])
                for node, weights in enumerate(data['weights'][layer - 1]):
                    model.set_weights(layer, node, weights)
        except (KeyError, IndexError, ValueError, TypeError) as e:
            raise DataIntegrityError(f"Serialized network is malformed: {e}") from e

        return model

    def _check_layer(self, layer: int) -> None:
        if layer == 0:
            raise IndexError("No weights or biases are associated with the layer #0")
        if layer < 0 or layer >= self.n_layers:
            raise IndexError(f"Illegal layer index {layer}")

    def _check_bias_index(self, layer: int, node: int) -> None:
        self._check_layer(layer)
        if node < 0 or node >= self._architecture[layer]:
            raise IndexError(f"Illegal index when accessing biases: ({layer}, {node})")

    def _check_weight_index(self, layer: int, node: int, source_node: int) -> None:
        self._check_layer(layer)
        if (node < 0 or node >= self._architecture[layer]
                or source_node < 0 or source_node >= self._architecture[layer - 1]):
            raise IndexError(
                f"Illegal index when accessing weights: ({layer}, {node}, {source_node})"
            )
