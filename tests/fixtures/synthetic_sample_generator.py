"""
Synthetic Signal and Background Samples for Testing

Generates labeled samples with a known structure:
- Three input variables (pt, eta, mass) with class-dependent distributions
- A per-event generator weight column
- Deterministic reproducibility through a fixed seed
"""

from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.datasets import make_classification


VARIABLES = ["pt", "eta", "mass"]


class SyntheticSampleGenerator:
    """Signal/background sample generator built on make_classification."""

    def __init__(self, seed: int = 42):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def generate(self, n_events: int = 1000) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Generate a signal and a background frame of roughly n_events each.

        Returns:
            Tuple of (signal_frame, background_frame)
        """
        X, y = make_classification(
            n_samples=2 * n_events,
            n_features=3,
            n_informative=3,
            n_redundant=0,
            n_clusters_per_class=1,
            random_state=self.seed
        )

        frame = pd.DataFrame({
            "pt": 20. * np.exp(0.5 * X[:, 0]),
            "eta": X[:, 1],
            "mass": 125. + 10. * X[:, 2],
            "gen_weight": self.rng.uniform(0.5, 1.5, size=len(y))
        })

        signal = frame[y == 1].reset_index(drop=True)
        background = frame[y == 0].reset_index(drop=True)
        return signal, background

    def write_csv(self, directory: Path, n_events: int = 1000) -> Tuple[Path, Path]:
        """Write signal.csv and background.csv into the directory."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        signal, background = self.generate(n_events)
        signal_path = directory / "signal.csv"
        background_path = directory / "background.csv"
        signal.to_csv(signal_path, index=False)
        background.to_csv(background_path, index=False)

        return signal_path, background_path


def index_frame(n_entries: int, offset: float = 0.) -> pd.DataFrame:
    """Frame whose variable x equals the row index, for checking which rows were sampled."""
    return pd.DataFrame({
        "x": np.arange(n_entries, dtype=np.float64) + offset,
        "w": np.ones(n_entries)
    })
