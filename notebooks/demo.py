"""Fit a small forest on a toy dataset and print the anomaly score of every point."""

import logging

import numpy as np

from isoforest import IsolationForest

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

Xs = np.array([
    [1.0, 2.0],
    [1.1, 2.2],
    [1.2, 2.1],
    [1.3, 2.0],
    [1.2, 2.3],
    [10.0, 20.0],  # outlier
])

forest = IsolationForest(num_trees=100, subsample_size=4, random_state=42)
forest.fit(Xs)
scores = forest.scores(Xs)

print("Data points and their anomaly scores:")
for i, (x, score) in enumerate(zip(Xs, scores)):
    print(f"  Point {i}: {x.tolist()} - Score: {score:.6f}")

print("\nHigher scores (closer to 1.0) indicate anomalies")
