"""
Test Configuration and Fixtures for hepnet

Shared fixtures for the unit tests: synthetic samples in memory and on disk,
index-tagged frames for sampling checks, and YAML task files.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
import yaml

sys.path.append(str(Path(__file__).parent.parent / "src"))

from fixtures.synthetic_sample_generator import VARIABLES, SyntheticSampleGenerator, index_frame
from hepnet.preprocessing.core.sources import FrameRepository


@pytest.fixture
def sample_generator():
    return SyntheticSampleGenerator(seed=42)


@pytest.fixture
def synthetic_frames(sample_generator):
    """In-memory (signal, background) frames."""
    return sample_generator.generate(n_events=500)


@pytest.fixture
def index_repository():
    """Reader factory with two 100-row sources whose variable x equals the row index."""
    return FrameRepository({
        "sig.dat": index_frame(100),
        "bkg.dat": index_frame(100),
        "mixed.dat": index_frame(100)
    })


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def csv_samples(tmp_path, sample_generator):
    """Signal and background CSV files in a temporary directory."""
    return sample_generator.write_csv(tmp_path / "samples", n_events=500)


@pytest.fixture
def task_config_factory(tmp_path, csv_samples):
    """Write a YAML task file; keyword arguments are merged into the top-level sections."""
    signal_path, background_path = csv_samples

    def make(name: str = "ttH", **sections) -> Path:
        config = {
            "input_samples": {
                "variables": VARIABLES,
                "def-train-weight": "gen_weight",
                "signal-samples": [{"file-name": str(signal_path), "number-events": ["50%"]}],
                "background-samples": [{"file-name": str(background_path), "number-events": ["50%"]}]
            },
            "bnn_parameters": {
                "number-neurons": 8,
                "ensemble-size": 10
            },
            "output": {
                "output-dir": str(tmp_path / "output"),
                "random-seed": 1
            }
        }
        for section, values in sections.items():
            config.setdefault(section, {}).update(values)

        path = tmp_path / f"{name}.yaml"
        with open(path, "w") as f:
            yaml.safe_dump(config, f)
        return path

    return make
