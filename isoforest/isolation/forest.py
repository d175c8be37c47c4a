"""
This module contains the IsolationForest class that implements an ensemble
of isolation trees for anomaly detection.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed

from ..exceptions import (
    DimensionMismatchError,
    EmptyDatasetError,
    InvalidConfigurationError,
    NonFiniteValueError,
    NotFittedError,
)
from .tree import IsolationTree, average_path_length

logger = logging.getLogger(__name__)

MAX_SEED = 2**64 - 1


def _is_integer(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def _as_float_array(Xs: Any) -> npt.NDArray[np.floating[Any]]:
    try:
        return np.asarray(Xs, dtype=np.float64)
    except (TypeError, ValueError) as err:
        raise DimensionMismatchError(
            "samples must be a rectangular array of numbers of shape (n_samples, n_features)"
        ) from err


def _validate_samples(
    Xs: Any,
    n_features: int | None = None,
    allow_empty: bool = True,
) -> npt.NDArray[np.floating[Any]]:
    """
    Convert samples to a 2-D float64 array and check them.
    Args:
        Xs: Array-like of shape (n_samples, n_features).
        n_features: Expected number of features, if already known.
        allow_empty: Whether an array without rows is accepted.
    Returns:
        The samples as a float64 array.
    """
    Xs = _as_float_array(Xs)

    if not allow_empty and Xs.ndim > 0 and Xs.shape[0] == 0:
        raise EmptyDatasetError("cannot fit on a dataset without samples")
    if Xs.ndim != 2:
        raise DimensionMismatchError(
            f"expected a 2-D array of shape (n_samples, n_features), got {Xs.ndim} dimension(s)"
        )
    if Xs.shape[1] == 0:
        raise DimensionMismatchError("samples must have at least one feature")
    if n_features is not None and Xs.shape[1] != n_features:
        raise DimensionMismatchError(
            f"samples have {Xs.shape[1]} features, but the forest was fitted on {n_features}"
        )
    if not np.all(np.isfinite(Xs)):
        raise NonFiniteValueError("samples contain NaN or infinite values")

    return Xs


def _subsample_indices(
    n_samples: int,
    subsample_size: int,
    rng: np.random.Generator,
) -> npt.NDArray[np.int_]:
    """
    Args:
        n_samples: Number of samples to draw from.
        subsample_size: Number of distinct indices to draw.
        rng: Random generator, advanced in place.
    Returns:
        All indices in order when subsample_size >= n_samples, otherwise
        subsample_size distinct indices in selection order.
    """
    if subsample_size >= n_samples:
        return np.arange(n_samples)
    return rng.choice(n_samples, size=subsample_size, replace=False)


def _draw_subsample(
    Xs: npt.NDArray[np.floating[Any]],
    subsample_size: int,
    rng: np.random.Generator,
) -> npt.NDArray[np.floating[Any]]:
    if subsample_size >= Xs.shape[0]:
        return Xs.copy()
    return Xs[_subsample_indices(Xs.shape[0], subsample_size, rng)]


def _fit_single_tree(
    seed: int,
    Xs: npt.NDArray[np.floating[Any]],
    subsample_size: int,
    height_limit: int,
) -> IsolationTree:
    """
    Worker function to fit an isolation tree with a given seed.
    This function is designed to be called in parallel using joblib.
    Each worker builds its own generator from the seed, so the tree does not
    depend on which process builds it.

    Args:
        seed: Random seed for this tree (integer).
        Xs: Training data of shape (n_samples, n_features).
        subsample_size: Number of samples to use for building the tree.
        height_limit: Maximum depth of the tree.
    Returns:
        Fitted IsolationTree instance.
    """
    rng = np.random.default_rng(seed)
    subsample = _draw_subsample(Xs, subsample_size, rng)
    return IsolationTree(height_limit).fit(subsample, rng)


def _score_single_tree(
    tree: IsolationTree,
    Xs: npt.NDArray[np.floating[Any]],
) -> npt.NDArray[np.floating[Any]]:
    """
    Worker function to compute path lengths on a single tree.
    Args:
        tree: Fitted IsolationTree instance.
        Xs: Data samples of shape (n_samples, n_features).
    Returns:
        Path lengths for each sample of shape (n_samples,).
    """
    return tree.path_lengths(Xs)


class IsolationForest:
    """
    Ensemble of Isolation Trees for anomaly detection.

    Each tree is trained on a random subsample of the data, and scores are
    computed from the path length averaged across all trees.

    Attributes:
        num_trees: Number of trees in the ensemble.
        subsample_size: Number of samples drawn to build each tree.
        max_tree_height: Maximum tree depth, ceil(log2(subsample_size)).
        n_jobs: Number of parallel jobs. 1 builds every tree from the forest's
            own random stream; any other value builds trees from per-tree seeds.
        random_state: Seed of the random stream. None seeds from OS entropy.
        rng: Random generator owned by this forest.
        expected_path_length: Normalization factor, c(subsample_size).
        n_features: Number of features seen during fit.
        contamination: Expected proportion of anomalies given to fit.
        anomaly_threshold: Score threshold at or above which points are classified as anomalies.
        trees: List of fitted IsolationTree instances.
    """
    def __init__(
        self,
        num_trees: int = 100,
        subsample_size: int = 256,
        random_state: int | None = None,
        n_jobs: int = 1,
    ) -> None:
        """
        Initialize an IsolationForest.
        Args:
            num_trees: Number of isolation trees to create in the ensemble.
            subsample_size: Number of samples to use for building each tree.
                If >= n_samples at fit time, each tree uses all samples.
            random_state: Seed in [0, 2**64 - 1]. If None, results vary between runs.
            n_jobs: Number of parallel jobs to run.
                - If 1 (default): sequential execution (no parallelization)
                - If -1: use all available processors
                - If > 1: use specified number of processors
                Sequential and parallel runs with the same seed build different
                trees, but all parallel runs with the same seed agree.
        """
        if not _is_integer(num_trees) or num_trees < 1:
            raise InvalidConfigurationError(
                f"num_trees must be a positive integer, got {num_trees!r}"
            )
        if not _is_integer(subsample_size) or subsample_size < 1:
            raise InvalidConfigurationError(
                f"subsample_size must be a positive integer, got {subsample_size!r}"
            )
        if random_state is not None and (
            not _is_integer(random_state) or not 0 <= random_state <= MAX_SEED
        ):
            raise InvalidConfigurationError(
                f"random_state must be None or an integer in [0, 2**64 - 1], got {random_state!r}"
            )
        if not _is_integer(n_jobs) or n_jobs == 0:
            raise InvalidConfigurationError(
                f"n_jobs must be a non-zero integer, got {n_jobs!r}"
            )

        self.num_trees = int(num_trees)
        self.subsample_size = int(subsample_size)
        # ceil(log2(subsample_size)), exact for any size
        self.max_tree_height = (self.subsample_size - 1).bit_length()
        self.n_jobs = int(n_jobs)

        self.random_state = random_state
        self.rng = np.random.default_rng(None if random_state is None else int(random_state))

        self.expected_path_length = average_path_length(self.subsample_size)

        self.n_features: int | None = None
        self.contamination: float | None = None
        self.anomaly_threshold: float | None = None

        self.trees: list[IsolationTree] = []

    @property
    def is_fitted(self) -> bool:
        return len(self.trees) > 0

    def subsample_indices(self, n_samples: int) -> npt.NDArray[np.int_]:
        """
        Draw the indices of one subsample from the forest's random stream.
        Args:
            n_samples: Size of the dataset to draw from.
        Returns:
            Pairwise-distinct indices in [0, n_samples), in selection order.
        """
        return _subsample_indices(n_samples, self.subsample_size, self.rng)

    def draw_subsample(self, Xs: npt.ArrayLike) -> npt.NDArray[np.floating[Any]]:
        """
        Args:
            Xs: Data of shape (n_samples, n_features).
        Returns:
            A copy of the whole dataset if subsample_size >= n_samples, otherwise
            subsample_size distinct rows in selection order.
        """
        return _draw_subsample(_as_float_array(Xs), self.subsample_size, self.rng)

    def fit(
        self,
        Xs: npt.ArrayLike,
        contamination: float | None = None,
    ) -> IsolationForest:
        """
        Discards any existing ensemble and builds num_trees trees, each from a
        fresh subsample of the data. If contamination is given, the anomaly
        threshold is set so that this share of the training data is flagged.

        Args:
            Xs: Training data of shape (n_samples, n_features).
            contamination: Expected proportion of anomalies, in (0, 0.5].
                If None, the threshold is 0.5.
        Returns:
            The fitted forest.
        """
        if contamination is not None and (
            not _is_real(contamination) or not 0.0 < contamination <= 0.5
        ):
            raise InvalidConfigurationError(
                f"contamination must be a number in (0, 0.5], got {contamination!r}"
            )

        Xs = _validate_samples(Xs, allow_empty=False)

        logger.info(
            "Fitting %d isolation trees on %d samples (subsample_size=%d, max_tree_height=%d, n_jobs=%d)",
            self.num_trees, Xs.shape[0], self.subsample_size, self.max_tree_height, self.n_jobs,
        )

        self.trees = []
        self.n_features = int(Xs.shape[1])

        if self.n_jobs == 1:
            # Sequential execution, one stream threaded through every tree
            for idx_tree in range(self.num_trees):
                subsample = self.draw_subsample(Xs)
                tree = IsolationTree(self.max_tree_height).fit(subsample, self.rng)
                self.trees.append(tree)

                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(
                        "Tree %d: %d nodes, depth %d", idx_tree, tree.n_nodes(), tree.max_depth(),
                    )
        else:
            # Parallel execution using joblib
            seeds = self.rng.integers(MAX_SEED, size=self.num_trees, dtype=np.uint64, endpoint=True)
            trees_list = Parallel(n_jobs=self.n_jobs, backend="loky")(
                delayed(_fit_single_tree)(int(seed), Xs, self.subsample_size, self.max_tree_height)
                for seed in seeds
            )
            self.trees = list(trees_list)  # type: ignore[arg-type]

        self.contamination = contamination
        if self.contamination is None:
            self.anomaly_threshold = 0.5
        else:
            Xs_train_anomaly_scores = self.scores(Xs)
            self.anomaly_threshold = float(
                np.quantile(Xs_train_anomaly_scores, 1.0 - self.contamination),
            )

        logger.info("Fitted %d trees, anomaly threshold %.4f", len(self.trees), self.anomaly_threshold)
        return self

    def _anomaly_scores(
        self, mean_path_lengths: npt.NDArray[np.floating[Any]],
    ) -> npt.NDArray[np.floating[Any]]:
        # c(1) == 0, where every path has length 0 as well
        if self.expected_path_length == 0.0:
            return np.ones_like(mean_path_lengths, dtype=np.float64)
        return 2.0 ** (-mean_path_lengths / self.expected_path_length)

    def avg_path_len(self, x: npt.ArrayLike) -> float:
        """
        Args:
            x: Single sample of shape (n_features,).
        Returns:
            Path length of the sample averaged over all trees, 0.0 for an empty ensemble.
        """
        if not self.is_fitted:
            return 0.0

        x = _validate_samples(np.reshape(_as_float_array(x), (1, -1)), self.n_features)[0]
        return float(np.mean([tree.path_len(x) for tree in self.trees]))

    def score_instance(self, x: npt.ArrayLike) -> float:
        """
        Anomaly score of a single sample, 2^(-avg_path_len / c(subsample_size)).
        Args:
            x: Single sample of shape (n_features,).
        Returns:
            Score in (0, 1], higher for anomalies.
        """
        if not self.is_fitted:
            logger.warning("Scoring with an empty ensemble, every score is 1.0; call fit first")

        mean_path_length = np.array([self.avg_path_len(x)], dtype=np.float64)
        return float(self._anomaly_scores(mean_path_length)[0])

    def scores(
        self, Xs: npt.ArrayLike,
    ) -> npt.NDArray[np.floating[Any]]:
        """
        Anomaly scores are in (0, 1] where higher scores indicate anomalies.
        Args:
            Xs: Data samples of shape (n_samples, n_features).
        Returns:
            Anomaly scores for each sample of shape (n_samples,).
        """
        Xs = _validate_samples(Xs, self.n_features)

        if not self.is_fitted:
            logger.warning("Scoring with an empty ensemble, every score is 1.0; call fit first")
            return np.ones(Xs.shape[0], dtype=np.float64)

        if self.n_jobs == 1:
            # Sequential execution
            depth_matrix = np.zeros((Xs.shape[0], len(self.trees)))
            for tree_idx, tree in enumerate(self.trees):
                depth_matrix[:, tree_idx] = tree.path_lengths(Xs)
        else:
            # Parallel execution using joblib
            depth_results = Parallel(n_jobs=self.n_jobs, backend="loky")(
                delayed(_score_single_tree)(tree, Xs) for tree in self.trees
            )
            depth_matrix = np.column_stack(list(depth_results))

        mean_depths = np.mean(depth_matrix, axis=1)
        return self._anomaly_scores(mean_depths)

    def predict(self, Xs: npt.ArrayLike) -> npt.NDArray[np.int_]:
        """
        Predict anomaly labels for samples.
        Args:
            Xs: Data samples of shape (n_samples, n_features).
        Returns:
            Binary labels (0=normal, 1=anomaly) of shape (n_samples,).
        """
        if not self.is_fitted or self.anomaly_threshold is None:
            raise NotFittedError("IsolationForest must be fitted before predict")

        scores_arr = self.scores(Xs)
        return (scores_arr >= self.anomaly_threshold).astype(int)
