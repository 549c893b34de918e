"""
Parameter Dump Reader

Parses the textual parameter dump written by the external sampler for one
network of the posterior sample and installs it into a NetworkModel.

Dump layout (after three header lines), for every non-input layer:
    a line containing "Weights"
    one group per source node, listing the weights to every node of the layer
    a line containing "Biases"
    the biases of the layer
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple, Union

from ..preprocessing.core.exceptions import DataIntegrityError
from .network_model import NetworkModel

logger = logging.getLogger(__name__)

HEADER_LINES = 3
_LETTERS = re.compile(r"[A-DF-Za-df-z]")


class ParameterDumpError(DataIntegrityError):
    """The parameter dump does not match the expected layout or architecture."""


def _read_numbers(lines: List[str], position: int, count: int, section: str) -> Tuple[List[float], int]:
    """Read ``count`` numbers starting at ``position``. Returns them and the next line index."""
    numbers: List[float] = []

    while len(numbers) < count:
        if position >= len(lines):
            raise ParameterDumpError(
                f"Dump ends after {len(numbers)} of {count} values in {section}"
            )

        line = lines[position]
        if _LETTERS.search(line):
            raise ParameterDumpError(
                f"Expected {count} values in {section}, found {len(numbers)} before '{line.strip()}'"
            )

        try:
            numbers.extend(float(token) for token in line.split())
        except ValueError as e:
            raise ParameterDumpError(f"Malformed number in {section}: '{line.strip()}'") from e

        position += 1

    if len(numbers) != count:
        raise ParameterDumpError(f"Expected {count} values in {section}, found {len(numbers)}")

    return numbers, position


def _expect_section(lines: List[str], position: int, keyword: str, layer: int) -> int:
    while position < len(lines) and not lines[position].strip():
        position += 1

    if position >= len(lines) or keyword not in lines[position]:
        found = lines[position].strip() if position < len(lines) else "end of dump"
        raise ParameterDumpError(f"Expected '{keyword}' section for layer {layer}, found '{found}'")

    return position + 1


def read_parameter_dump(text: Union[str, Iterable[str]], architecture: Sequence[int],
                        classification: bool = True) -> NetworkModel:
    """
    Build a NetworkModel from a parameter dump.

    Args:
        text: Dump content, as a string or an iterable of lines
        architecture: Layer widths the dump was produced for
        classification: Whether the output is squashed with the logistic function

    Returns:
        NetworkModel populated through its bulk setters

    Raises:
        ParameterDumpError: If the dump is malformed or does not match the architecture
    """
    lines = text.splitlines() if isinstance(text, str) else [line.rstrip("\n") for line in text]
    model = NetworkModel(architecture, classification=classification)
    architecture = model.architecture

    if len(lines) < HEADER_LINES:
        raise ParameterDumpError("Dump is shorter than its header")

    position = HEADER_LINES

    for layer in range(1, len(architecture)):
        n_nodes = architecture[layer]
        n_source = architecture[layer - 1]

        position = _expect_section(lines, position, "Weights", layer)
        weights, position = _read_numbers(
            lines, position, n_nodes * n_source, f"weights of layer {layer}"
        )

        # Groups are ordered by source node, each listing all nodes of the layer
        for node in range(n_nodes):
            model.set_weights(layer, node, weights[node::n_nodes])

        position = _expect_section(lines, position, "Biases", layer)
        biases, position = _read_numbers(lines, position, n_nodes, f"biases of layer {layer}")
        model.set_biases(layer, biases)

    logger.debug("parameter_dump.read", extra={"architecture": list(architecture)})
    return model


def read_parameter_dump_file(path: Union[str, Path], architecture: Sequence[int],
                             classification: bool = True) -> NetworkModel:
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ParameterDumpError(f"Cannot read parameter dump '{path}': {e}") from e

    return read_parameter_dump(text, architecture, classification)


def write_parameter_dump(model: NetworkModel, title: str = "Network parameters") -> str:
    """Render a NetworkModel in the dump layout read by ``read_parameter_dump``."""
    lines = [title, "", ""]
    architecture = model.architecture

    for layer in range(1, len(architecture)):
        weights = model.get_weights(layer)
        lines.extend([f"Weights layer {layer}", ""])
        for source in range(architecture[layer - 1]):
            lines.append(" ".join(repr(float(w)) for w in weights[:, source]))
            lines.append("")
        lines.extend(["", f"Biases layer {layer}", ""])
        lines.append(" ".join(repr(float(b)) for b in model.get_biases(layer)))
        lines.extend(["", ""])

    return "\n".join(lines) + "\n"
