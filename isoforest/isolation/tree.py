"""
This module contains the IsolationTreeNode and IsolationTree classes that
implement the random partitioning and the path-length traversal of the
Isolation Forest algorithm.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Iterator

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt

from ..exceptions import DimensionMismatchError

EULER_GAMMA = 0.5772156649


def average_path_length(size: int) -> float:
    """
    Average path length of an unsuccessful search in a binary search tree of `size` points.
    Used as the correction term at terminal nodes and as the score normalization factor.
    Args:
        size: Number of points.
    Returns:
        0.0 when size <= 1, otherwise 2 * (ln(size) + gamma) - 2 * (size - 1) / size.
    """
    if size <= 1:
        return 0.0

    n = float(size)
    HARMONIC_NUMBER = np.log(n) + EULER_GAMMA
    return float(2.0 * HARMONIC_NUMBER - 2.0 * (n - 1.0) / n)


class IsolationTreeNode:
    """
    Node in an Isolation Tree.
    A node is either internal (it splits on one feature and owns exactly two children)
    or terminal (it records how many training points reached it).
    Attributes:
        depth: Distance of the node from the root (root is 0).
        idx_feature: Index of the feature used for splitting (None for terminal nodes).
        split_threshold: Threshold value for the split (None for terminal nodes).
        left: Child receiving the points with feature value < split_threshold.
        right: Child receiving the remaining points.
        size: Number of training points that reached a terminal node.
        data: Training points contained in a terminal node (None for internal nodes).
    """
    def __init__(self, depth: int) -> None:
        self.depth = depth

        self.idx_feature: int | None = None
        self.split_threshold: float | None = None

        self.left: IsolationTreeNode | None = None
        self.right: IsolationTreeNode | None = None

        self.size = 0
        self.data: npt.NDArray[np.floating[Any]] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.left is None

    def _make_terminal(self, Xs: npt.NDArray[np.floating[Any]]) -> None:
        self.size = int(Xs.shape[0])
        self.data = Xs

    def partition_space(
        self,
        Xs: npt.NDArray[np.floating[Any]],
        height_limit: int,
        rng: np.random.Generator,
    ) -> None:
        """
        Recursively partition the feature space using random axis-aligned splits.
        The generator is consumed in a fixed order: split feature, split value,
        then the whole lower subtree before the upper subtree.
        Args:
            Xs: Training samples of shape (n_samples, n_features).
            height_limit: Depth at which nodes become terminal.
            rng: Random generator shared by the whole tree.
        """
        n_samples = Xs.shape[0]
        if n_samples <= 1 or self.depth >= height_limit:
            self._make_terminal(Xs)
            return

        idx_feature = int(rng.integers(Xs.shape[1]))
        column = Xs[:, idx_feature]
        lower = float(np.min(column))
        upper = float(np.max(column))

        if upper - lower < np.finfo(np.float64).eps:
            self._make_terminal(Xs)
            return

        split_threshold = float(rng.uniform(lower, upper))

        mask_lower = column < split_threshold
        n_lower = int(np.count_nonzero(mask_lower))
        if n_lower == 0 or n_lower == n_samples:
            self._make_terminal(Xs)
            return

        self.idx_feature = idx_feature
        self.split_threshold = split_threshold
        self.left = build_isolation_tree(Xs[mask_lower], self.depth + 1, height_limit, rng)
        self.right = build_isolation_tree(Xs[~mask_lower], self.depth + 1, height_limit, rng)

    def path_len(self, x: npt.NDArray[np.floating[Any]], running_length: int = 0) -> float:
        """
        Args:
            x: Single sample of shape (n_features,).
            running_length: Number of edges already traversed above this node.
        Returns:
            Path length of the sample, including the terminal correction.
        """
        if self.is_terminal:
            return running_length + average_path_length(self.size)

        assert self.idx_feature is not None
        assert self.split_threshold is not None
        assert self.left is not None and self.right is not None

        if x[self.idx_feature] < self.split_threshold:
            return self.left.path_len(x, running_length + 1)
        return self.right.path_len(x, running_length + 1)

    def path_lengths_batch(
        self,
        Xs: npt.NDArray[np.floating[Any]],
        running_length: int = 0,
    ) -> npt.NDArray[np.floating[Any]]:
        """
        Vectorized counterpart of path_len, giving the same values.
        Args:
            Xs: Data samples of shape (n_samples, n_features).
            running_length: Number of edges already traversed above this node.
        Returns:
            Path lengths for each sample of shape (n_samples,).
        """
        n_samples = Xs.shape[0]

        if self.is_terminal:
            return np.full(n_samples, running_length + average_path_length(self.size), dtype=np.float64)

        assert self.idx_feature is not None
        assert self.split_threshold is not None
        assert self.left is not None and self.right is not None

        path_lengths = np.empty(n_samples, dtype=np.float64)
        mask_lower = Xs[:, self.idx_feature] < self.split_threshold

        if np.any(mask_lower):
            path_lengths[mask_lower] = self.left.path_lengths_batch(Xs[mask_lower], running_length + 1)

        if np.any(~mask_lower):
            path_lengths[~mask_lower] = self.right.path_lengths_batch(Xs[~mask_lower], running_length + 1)

        return path_lengths

    def iter_nodes(self) -> Iterator[IsolationTreeNode]:
        """Yield the nodes of this subtree in pre-order, lower child first."""
        yield self
        if not self.is_terminal:
            assert self.left is not None and self.right is not None
            yield from self.left.iter_nodes()
            yield from self.right.iter_nodes()

    def plot_partition_space_2D(self, ax: plt.Axes, feature_limits: list[list[float]]) -> None:
        """
        Plots vertical/horizontal lines for each split and scatters points in terminal nodes.
        Only works for 2-dimensional data.
        Args:
            ax: Axes to draw on.
            feature_limits: Boundaries of this node's region [[min_x, max_x], [min_y, max_y]].
        """
        if self.is_terminal:
            if self.data is not None and self.data.shape[0] > 0:
                ax.scatter(self.data[:, 0], self.data[:, 1], c="lightgray", s=5)
            return

        assert self.split_threshold is not None
        assert self.left is not None and self.right is not None

        if self.idx_feature == 0:
            ax.plot([self.split_threshold, self.split_threshold],
                    [feature_limits[1][0], feature_limits[1][1]], c="gray")
        else:
            ax.plot([feature_limits[0][0], feature_limits[0][1]],
                    [self.split_threshold, self.split_threshold], c="gray")

        feature_limits_lower = deepcopy(feature_limits)
        feature_limits_lower[self.idx_feature][1] = self.split_threshold

        feature_limits_upper = deepcopy(feature_limits)
        feature_limits_upper[self.idx_feature][0] = self.split_threshold

        self.left.plot_partition_space_2D(ax, feature_limits_lower)
        self.right.plot_partition_space_2D(ax, feature_limits_upper)


def build_isolation_tree(
    Xs: npt.NDArray[np.floating[Any]],
    depth: int,
    height_limit: int,
    rng: np.random.Generator,
) -> IsolationTreeNode:
    """
    Build the subtree rooted at `depth` for the samples `Xs`.
    Args:
        Xs: Training samples of shape (n_samples, n_features).
        depth: Depth of the returned node.
        height_limit: Depth at which nodes become terminal.
        rng: Random generator, advanced in place.
    Returns:
        Root of the built subtree.
    """
    node = IsolationTreeNode(depth=depth)
    node.partition_space(Xs, height_limit, rng)
    return node


class IsolationTree:
    """
    Single Isolation Tree built from one subsample.
    Attributes:
        height_limit: Maximum depth of the tree.
        root: Root node of the tree.
        feature_limits: Padded boundaries of the training data, used for plotting.
        PADDING: Padding added to feature limits.
    """

    def __init__(self, height_limit: int) -> None:
        self.height_limit = height_limit
        self.root: IsolationTreeNode | None = None
        self.feature_limits: list[list[float]] | None = None

        self.PADDING = 1.0

    def fit(self, Xs: npt.NDArray[np.floating[Any]], rng: np.random.Generator) -> IsolationTree:
        """
        Args:
            Xs: Subsample of shape (n_samples, n_features) to partition.
            rng: Random generator, advanced in place.
        Returns:
            The fitted tree.
        """
        if Xs.shape[0] > 0:
            mins = np.min(Xs, axis=0) - self.PADDING
            maxs = np.max(Xs, axis=0) + self.PADDING
            self.feature_limits = [[float(mins[i]), float(maxs[i])] for i in range(len(mins))]

        self.root = build_isolation_tree(Xs, 0, self.height_limit, rng)
        return self

    def path_len(self, x: npt.NDArray[np.floating[Any]]) -> float:
        assert self.root is not None
        return self.root.path_len(x, 0)

    def path_lengths(self, Xs: npt.NDArray[np.floating[Any]]) -> npt.NDArray[np.floating[Any]]:
        assert self.root is not None
        return self.root.path_lengths_batch(Xs, 0)

    def max_depth(self) -> int:
        assert self.root is not None
        return max(node.depth for node in self.root.iter_nodes())

    def leaf_sizes(self) -> list[int]:
        assert self.root is not None
        return [node.size for node in self.root.iter_nodes() if node.is_terminal]

    def n_nodes(self) -> int:
        assert self.root is not None
        return sum(1 for _ in self.root.iter_nodes())

    def plot_partition_space_2D(self, ax: plt.Axes | None = None) -> plt.Axes:
        """
        Visualize the 2D space partitioning created by this tree.
        Only works for 2D data.
        Args:
            ax: Axes to draw on. Defaults to the current axes.
        Returns:
            The axes that were drawn on.
        """
        assert self.root is not None
        assert self.feature_limits is not None

        if len(self.feature_limits) != 2:
            raise DimensionMismatchError(
                "plot_partition_space_2D requires 2-dimensional data, "
                f"got {len(self.feature_limits)} features"
            )

        if ax is None:
            ax = plt.gca()

        ax.set_title("Space Partition Isolation Tree")
        ax.set_xlabel("X")
        ax.set_ylabel("Y")

        (x_min, x_max), (y_min, y_max) = self.feature_limits
        ax.plot([x_min, x_max], [y_min, y_min], c="gray")
        ax.plot([x_min, x_max], [y_max, y_max], c="gray")
        ax.plot([x_min, x_min], [y_min, y_max], c="gray")
        ax.plot([x_max, x_max], [y_min, y_max], c="gray")

        self.root.plot_partition_space_2D(ax, self.feature_limits)
        return ax
