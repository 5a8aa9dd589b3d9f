import numpy as np
import pandas as pd


def oversample_minority(X, y, random_state=42):
    """
    Resample every class up to the size of the largest one.

    Args:
        X: numpy array of shape (N, ...)
        y: numpy array of shape (N,) with class labels
        random_state: seed of the resampling generator

    Returns:
        (X_balanced, y_balanced), grouped by class in sorted label order
    """
    X = np.asarray(X)
    y = np.asarray(y)
    rng = np.random.default_rng(random_state)
    unique, counts = np.unique(y, return_counts=True)
    max_count = counts.max()

    X_parts, y_parts = [], []
    for label in unique:
        X_class = X[y == label]
        n_samples = X_class.shape[0]
        if n_samples < max_count:
            idxs = rng.choice(n_samples, size=max_count, replace=True)
            X_upsampled = X_class[idxs]
        else:
            X_upsampled = X_class
        X_parts.append(X_upsampled)
        y_parts.append(np.full((max_count,), label))

    return np.concatenate(X_parts, axis=0), np.concatenate(y_parts)


def confusion_frame(y_true, y_pred, labels=None):
    """
    Confusion matrix as a DataFrame: rows are true labels, columns predicted.

    Labels that never occur still get a row and a column of zeros.
    """
    y_true = pd.Series(np.asarray(y_true), name="true")
    y_pred = pd.Series(np.asarray(y_pred), name="predicted")
    if labels is None:
        labels = sorted(set(y_true) | set(y_pred))
    frame = pd.crosstab(y_true, y_pred)
    return frame.reindex(index=labels, columns=labels, fill_value=0)


def history_frame(loss_curve):
    """Per-epoch training losses as a DataFrame indexed by epoch number."""
    frame = pd.DataFrame({"loss": list(loss_curve)})
    frame.index = pd.RangeIndex(1, len(frame) + 1, name="epoch")
    return frame
