import math

import numpy as np
import pytest

from isoforest.isolation.tree import (
    EULER_GAMMA,
    IsolationTree,
    IsolationTreeNode,
    average_path_length,
    build_isolation_tree,
)


def _collect_tree_signature(node):
    if node.is_terminal:
        return [("T", node.depth, node.size)]

    signature = [("I", node.depth, node.idx_feature, node.split_threshold)]
    signature.extend(_collect_tree_signature(node.left))
    signature.extend(_collect_tree_signature(node.right))
    return signature


def _terminal(depth, size):
    node = IsolationTreeNode(depth=depth)
    node.size = size
    return node


@pytest.mark.parametrize("size", [-1, 0, 1])
def test_average_path_length_is_zero_for_trivial_sizes(size):
    assert average_path_length(size) == 0.0


def test_average_path_length_matches_closed_form():
    for n in [2, 3, 10, 256]:
        expected = 2.0 * (math.log(n) + EULER_GAMMA) - 2.0 * (n - 1) / n
        assert average_path_length(n) == pytest.approx(expected, rel=1e-12)


def test_average_path_length_is_strictly_increasing():
    values = [average_path_length(n) for n in range(1, 2000)]
    assert all(b > a for a, b in zip(values, values[1:]))


def test_average_path_length_grows_like_twice_log():
    n = 10**7
    assert average_path_length(n) / (2.0 * math.log(n)) == pytest.approx(1.0, abs=0.05)
    assert average_path_length(n) - 2.0 * math.log(n) == pytest.approx(2.0 * EULER_GAMMA - 2.0, abs=1e-5)


@pytest.mark.parametrize("n_samples,height_limit", [(2, 1), (16, 4), (100, 3), (256, 8), (300, 12)])
def test_build_respects_height_limit(n_samples, height_limit):
    rng = np.random.default_rng(3)
    Xs = rng.normal(size=(n_samples, 3))

    root = build_isolation_tree(Xs, 0, height_limit, rng)

    assert max(node.depth for node in root.iter_nodes()) <= height_limit


@pytest.mark.parametrize("n_samples", [1, 5, 64, 257])
def test_leaf_sizes_sum_to_number_of_samples(n_samples):
    rng = np.random.default_rng(11)
    Xs = rng.uniform(-5, 5, size=(n_samples, 4))

    tree = IsolationTree(height_limit=6).fit(Xs, rng)

    assert sum(tree.leaf_sizes()) == n_samples


def test_internal_nodes_own_two_children_one_level_deeper():
    rng = np.random.default_rng(5)
    Xs = rng.normal(size=(128, 2))

    root = build_isolation_tree(Xs, 0, 7, rng)

    internal = [node for node in root.iter_nodes() if not node.is_terminal]
    assert internal
    for node in internal:
        assert node.left is not None and node.right is not None
        assert node.left.depth == node.depth + 1
        assert node.right.depth == node.depth + 1


def test_split_thresholds_partition_the_training_data():
    rng = np.random.default_rng(8)
    Xs = rng.normal(size=(64, 3))

    root = build_isolation_tree(Xs, 0, 6, rng)

    def check(node, rows):
        if node.is_terminal:
            assert node.size == rows.shape[0]
            np.testing.assert_array_equal(node.data, rows)
            return
        mask = rows[:, node.idx_feature] < node.split_threshold
        assert 0 < np.count_nonzero(mask) < rows.shape[0]
        check(node.left, rows[mask])
        check(node.right, rows[~mask])

    check(root, Xs)


def test_single_and_empty_data_give_terminal_roots():
    rng = np.random.default_rng(0)

    single = build_isolation_tree(np.array([[1.0, 2.0]]), 0, 5, rng)
    empty = build_isolation_tree(np.empty((0, 2)), 0, 5, rng)

    assert single.is_terminal and single.size == 1
    assert empty.is_terminal and empty.size == 0


def test_constant_data_gives_terminal_root():
    rng = np.random.default_rng(0)
    Xs = np.tile([3.0, -1.0], (10, 1))

    root = build_isolation_tree(Xs, 0, 4, rng)

    assert root.is_terminal
    assert root.size == 10
    assert root.depth == 0


def test_feature_range_below_machine_epsilon_gives_terminal_root():
    rng = np.random.default_rng(0)
    Xs = np.array([[0.0], [1e-17], [5e-18]])

    root = build_isolation_tree(Xs, 0, 4, rng)

    assert root.is_terminal
    assert root.size == 3


def test_zero_height_limit_gives_terminal_root():
    rng = np.random.default_rng(0)
    Xs = rng.normal(size=(10, 2))

    root = build_isolation_tree(Xs, 0, 0, rng)

    assert root.is_terminal
    assert root.size == 10


def test_build_is_reproducible_for_equal_seeds():
    Xs = np.random.default_rng(1).normal(size=(200, 5))

    first = build_isolation_tree(Xs, 0, 8, np.random.default_rng(42))
    second = build_isolation_tree(Xs, 0, 8, np.random.default_rng(42))

    assert _collect_tree_signature(first) == _collect_tree_signature(second)


def test_path_len_follows_the_split():
    root = IsolationTreeNode(depth=0)
    root.idx_feature = 0
    root.split_threshold = 5.0
    root.left = _terminal(depth=1, size=1)
    root.right = _terminal(depth=1, size=3)

    assert root.path_len(np.array([1.0])) == 1.0
    assert root.path_len(np.array([5.0])) == 1.0 + average_path_length(3)
    assert root.path_len(np.array([7.0]), running_length=2) == 3.0 + average_path_length(3)


def test_path_len_of_terminal_root_is_the_correction():
    root = _terminal(depth=0, size=7)

    assert root.path_len(np.array([0.0, 0.0])) == average_path_length(7)


def test_batch_path_lengths_match_single_path_lengths():
    rng = np.random.default_rng(21)
    Xs_train = rng.normal(size=(256, 3))
    Xs_test = rng.normal(scale=2.0, size=(50, 3))

    tree = IsolationTree(height_limit=8).fit(Xs_train, rng)

    batch = tree.path_lengths(Xs_test)
    single = np.array([tree.path_len(x) for x in Xs_test])
    np.testing.assert_array_equal(batch, single)


def test_tree_inspection_helpers():
    rng = np.random.default_rng(2)
    Xs = rng.normal(size=(32, 2))

    tree = IsolationTree(height_limit=5).fit(Xs, rng)

    n_terminal = len(tree.leaf_sizes())
    assert tree.n_nodes() == 2 * n_terminal - 1
    assert 0 <= tree.max_depth() <= 5
