"""Check that seeded forests are reproducible.

This script verifies that two IsolationForest instances built with the same
random_state produce identical scores, both for sequential construction
(n_jobs=1) and for parallel construction, where every n_jobs != 1 must agree.
"""

import logging
import sys

import numpy as np

from isoforest import IsolationForest


def generate_test_data(n_samples=1000, n_features=5, random_state=42):
    """Generate synthetic test data with anomalies."""
    rng = np.random.default_rng(random_state)

    # Normal samples
    normal = rng.normal(size=(int(n_samples * 0.9), n_features))

    # Anomalies (outliers)
    anomalies = rng.normal(size=(int(n_samples * 0.1), n_features)) * 3 + 5

    X = np.vstack([normal, anomalies])
    y = np.array([0] * len(normal) + [1] * len(anomalies))

    indices = rng.permutation(len(X))
    return X[indices].astype(np.float64), y[indices]


def compare_runs(name, first_kwargs, second_kwargs):
    """Fit two forests on the same data and report whether their outputs agree."""
    print("=" * 80)
    print(f"Checking {name}")
    print("=" * 80)

    X_train, _ = generate_test_data(n_samples=1000, random_state=42)
    X_test, _ = generate_test_data(n_samples=200, random_state=43)

    print(f"\n[1/3] Training with {first_kwargs}...")
    first = IsolationForest(num_trees=50, subsample_size=256, random_state=12345, **first_kwargs)
    first.fit(X_train, contamination=0.1)
    scores_first = first.scores(X_test)
    predictions_first = first.predict(X_test)

    print(f"[2/3] Training with {second_kwargs}...")
    second = IsolationForest(num_trees=50, subsample_size=256, random_state=12345, **second_kwargs)
    second.fit(X_train, contamination=0.1)
    scores_second = second.scores(X_test)
    predictions_second = second.predict(X_test)

    print("[3/3] Comparing results...")
    scores_match = np.array_equal(scores_first, scores_second)
    predictions_match = np.array_equal(predictions_first, predictions_second)

    print(f"\n{'Results':.<40} {'Status'}")
    print("-" * 80)
    print(f"{'Scores identical':<40} {'PASS' if scores_match else 'FAIL'}")
    print(f"{'Predictions identical':<40} {'PASS' if predictions_match else 'FAIL'}")

    if not (scores_match and predictions_match):
        print(f"\nMax absolute score difference: {np.max(np.abs(scores_first - scores_second)):.2e}")

    return scores_match and predictions_match


def main():
    logging.basicConfig(level=logging.WARNING)

    sequential_passed = compare_runs("sequential construction", {"n_jobs": 1}, {"n_jobs": 1})
    parallel_passed = compare_runs("parallel construction", {"n_jobs": 2}, {"n_jobs": -1})

    print("\n" + "=" * 80)
    print(f"Sequential: {'PASS' if sequential_passed else 'FAIL'}")
    print(f"Parallel:   {'PASS' if parallel_passed else 'FAIL'}")
    print("=" * 80)

    return 0 if sequential_passed and parallel_passed else 1


if __name__ == "__main__":
    sys.exit(main())
