# pylint: disable=missing-docstring
from abc import abstractmethod
from typing import Any, Dict, Tuple, TypeVar
import numpy as np

# Define a type variable that's used correctly
T = TypeVar("T", bound="BaseEstimator")


# pylint: disable=too-many-instance-attributes, invalid-name line-too-long missing-docstring
class BaseEstimator:
    # Attributes that hold trainable state; excluded from "non_trainable".
    _trainable_attributes: Tuple[str, ...] = ("weights",)

    @abstractmethod
    def fit(self, X: np.ndarray, y: np.ndarray) -> Any:
        """
        :param X: numpy array of shape (N, ...) with N being the number of samples
        :param y: numpy array of shape (N,) holding integer class labels
        :return: self
        """
        raise NotImplementedError

    def trainable_params(self) -> Dict[str, Any]:
        """
        :return: Dictionary of trainable parameter names mapped to their values.
        """
        return {k: v for k, v in self.__dict__.items() if k in self._trainable_attributes}

    def get_params(self, mode: str = "all") -> Any:
        """
        Get parameters for this estimator.

        :param mode: Specifies which parameters to return. Options are:
            - "all": Return all parameters.
            - "trainable": Return only trainable parameters (e.g., weights).
            - "non_trainable": Return only non-trainable parameters (e.g., configuration settings).
        :return: Dictionary of parameter names mapped to their values.
        """
        if mode == "all":
            return self.__dict__
        if mode == "trainable":
            return self.trainable_params()
        if mode == "non_trainable":
            return {k: v for k, v in self.__dict__.items()
                    if k not in self._trainable_attributes}

        raise ValueError(
            f"Invalid mode '{mode}'. Choose from 'all', 'trainable', or 'non_trainable'."
        )

    def set_params(self: T, **params: Any) -> T:
        """
        Set configuration parameters of this estimator.

        :param params: attribute names mapped to their new values
        :return: self
        """
        for param, value in params.items():
            if param.startswith("_") or not hasattr(self, param):
                raise ValueError(f"Invalid parameter {param}")
            setattr(self, param, value)
        return self


class BaseClassifier(BaseEstimator):
    @abstractmethod
    def predict(self, X: Any) -> np.ndarray:
        """
        :param X: samples to classify
        :return: numpy array of shape (N,) with the predicted class indices
        """
        raise NotImplementedError

    def score(self, X: Any, y: np.ndarray) -> float:
        """
        :param X: samples to classify
        :param y: numpy array of shape (N,) with the true class indices
        :return: accuracy
        """
        y_pred = self.predict(X)
        return float(np.mean(y_pred == np.asarray(y)))
