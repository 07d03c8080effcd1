"""
Model Training Module
=====================

Four regression models predicting the oil recovery factor, all sharing the
same training partition and predictor set.

Models:
    - RandomForestModel: 10-fold cross-validated random forest with a
      max_features grid search
    - LinearModel: 5-fold cross-validated ordinary least squares
    - DecisionTreeModel: single cost-complexity pruned regression tree
    - LocalRegressionModel: LOESS on the predictor most correlated with ORF

Every model exposes fit(train) and predict(rows); a fitted model is not
refitted.
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
import statsmodels.api as sm
from statsmodels.nonparametric.smoothers_lowess import lowess
from sklearn.ensemble import RandomForestRegressor
from sklearn.inspection import permutation_importance
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import GridSearchCV, KFold, cross_validate
from sklearn.tree import DecisionTreeRegressor

from .exceptions import TrainingError, ConfigurationError
from .preprocessing import PREDICTORS, TARGET

logger = logging.getLogger(__name__)

CV_SCORING = {
    'rmse': 'neg_root_mean_squared_error',
    'r2': 'r2',
    'mae': 'neg_mean_absolute_error',
}


def mtry_grid(n_predictors: int, start: int = 2, step: int = 2) -> List[int]:
    """
    Values of max_features searched by the random forest.

    Runs from ``start`` to floor(n_predictors / 3) in steps of ``step``.

    Raises:
        ConfigurationError: If the upper bound is below ``start``
    """
    upper = n_predictors // 3
    if upper < start:
        raise ConfigurationError(
            f"max_features grid is empty: upper bound {upper} "
            f"(from {n_predictors} predictors) is below {start}",
            stage="training"
        )
    return list(range(start, upper + 1, step))


def select_best_predictor(
    train: pd.DataFrame,
    predictors: List[str] = PREDICTORS,
    target: str = TARGET
) -> Tuple[str, pd.Series]:
    """
    Pick the predictor with the largest absolute correlation to the target.

    Correlations use complete cases per pair. Ties go to the predictor
    listed first; undefined correlations are ignored.

    Returns:
        Tuple of (best predictor name, signed correlations per predictor)

    Raises:
        TrainingError: If no correlation can be computed
    """
    correlations = {}
    for col in predictors:
        pair = train[[target, col]].dropna()
        correlations[col] = pair[target].corr(pair[col])

    correlations = pd.Series(correlations, dtype=float)
    strength = correlations.abs()
    if strength.isna().all():
        raise TrainingError("No predictor has a defined correlation with the target")

    return strength.idxmax(), correlations


class RegressionModel:
    """
    Base class for the ensemble members.

    Subclasses implement _fit and _predict on numpy arrays.
    """

    key = "base"
    name = "Regression Model"

    def __init__(
        self,
        predictors: List[str] = PREDICTORS,
        target: str = TARGET,
        random_state: int = 123
    ):
        self.predictors = list(predictors)
        self.target = target
        self.random_state = random_state

        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    @property
    def min_rows(self) -> int:
        return 2

    @property
    def is_fitted(self) -> bool:
        return self._is_fitted

    def fit(self, train: pd.DataFrame) -> 'RegressionModel':
        """
        Train the model on the training partition.

        Args:
            train: DataFrame holding the predictor and target columns

        Returns:
            Self for method chaining

        Raises:
            TrainingError: If train has fewer rows than the model requires
            ValueError: If the model is already fitted
        """
        if self._is_fitted:
            raise ValueError(f"{self.name} is already fitted")

        if len(train) < self.min_rows:
            raise TrainingError(
                f"{self.name} needs at least {self.min_rows} training rows, got {len(train)}"
            )

        start_time = datetime.now()
        logger.info(f"Training {self.name} on {len(train)} rows...")

        X = train[self.predictors].to_numpy(dtype=float)
        y = train[self.target].to_numpy(dtype=float)
        self._fit(X, y)

        self.training_info = {
            'training_duration_seconds': (datetime.now() - start_time).total_seconds(),
            'n_samples': len(train),
            'n_features': len(self.predictors),
            'trained_at': datetime.now().isoformat(),
        }
        self._is_fitted = True

        logger.info(
            f"{self.name} trained in {self.training_info['training_duration_seconds']:.2f} seconds"
        )
        return self

    def predict(self, rows: pd.DataFrame) -> np.ndarray:
        """
        Predict the target for the given rows.

        Args:
            rows: DataFrame holding at least the predictor columns

        Returns:
            Predictions array of shape (n_rows,)
        """
        if not self._is_fitted:
            raise ValueError(f"{self.name} must be trained before prediction. Call fit() first.")
        return self._predict(rows[self.predictors].to_numpy(dtype=float))

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        raise NotImplementedError

    def _predict(self, X: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"{self.name} saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'RegressionModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded model instance
        """
        model = joblib.load(filepath)
        if not isinstance(model, cls):
            raise TypeError(f"{filepath} does not hold a {cls.__name__}")
        logger.info(f"{model.name} loaded from {filepath}")
        return model


class RandomForestModel(RegressionModel):
    """
    Random forest tuned over max_features by k-fold cross-validation.
    """

    key = "random_forest"
    name = "Random Forest"

    def __init__(
        self,
        predictors: List[str] = PREDICTORS,
        target: str = TARGET,
        random_state: int = 123,
        n_estimators: int = 100,
        min_samples_leaf: int = 5,
        max_leaf_nodes: int = 30,
        cv_folds: int = 10,
        grid_start: int = 2,
        grid_step: int = 2,
        importance_repeats: int = 10
    ):
        """
        Args:
            n_estimators: Trees per forest
            min_samples_leaf: Minimum samples in a leaf
            max_leaf_nodes: Maximum number of leaves per tree
            cv_folds: Folds for the grid search
            grid_start: First max_features value searched
            grid_step: Step between searched max_features values
            importance_repeats: Shuffles per predictor for permutation importance
        """
        super().__init__(predictors, target, random_state)
        self.n_estimators = n_estimators
        self.min_samples_leaf = min_samples_leaf
        self.max_leaf_nodes = max_leaf_nodes
        self.cv_folds = cv_folds
        self.grid_start = grid_start
        self.grid_step = grid_step
        self.importance_repeats = importance_repeats

        self.search: Optional[GridSearchCV] = None
        self.cv_results: Dict[str, float] = {}
        self._X: Optional[np.ndarray] = None
        self._y: Optional[np.ndarray] = None

    @property
    def min_rows(self) -> int:
        return self.cv_folds

    @property
    def estimator(self) -> RandomForestRegressor:
        return self.search.best_estimator_

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        grid = mtry_grid(len(self.predictors), self.grid_start, self.grid_step)
        logger.info(f"  max_features grid: {grid}, {self.cv_folds}-fold CV")

        forest = RandomForestRegressor(
            n_estimators=self.n_estimators,
            min_samples_leaf=self.min_samples_leaf,
            max_leaf_nodes=self.max_leaf_nodes,
            random_state=self.random_state
        )
        self.search = GridSearchCV(
            forest,
            param_grid={'max_features': grid},
            cv=KFold(n_splits=self.cv_folds, shuffle=True, random_state=self.random_state),
            scoring=CV_SCORING,
            refit='rmse'
        )
        self.search.fit(X, y)
        self._X, self._y = X, y

        best = self.search.best_index_
        results = self.search.cv_results_
        self.cv_results = {
            'RMSE': float(-results['mean_test_rmse'][best]),
            'R-squared': float(results['mean_test_r2'][best]),
            'MAE': float(-results['mean_test_mae'][best]),
        }
        logger.info(f"  best max_features: {self.search.best_params_['max_features']}")

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self.search.predict(X)

    def feature_importance(self) -> pd.Series:
        """
        Permutation importances scaled to 0-100.

        Each predictor is shuffled on the training rows and the increase in
        mean squared error is averaged over ``importance_repeats`` shuffles.
        The weakest predictor scores 0 and the strongest 100.
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        result = permutation_importance(
            self.estimator, self._X, self._y,
            scoring='neg_mean_squared_error',
            n_repeats=self.importance_repeats,
            random_state=self.random_state
        )
        raw = pd.Series(result.importances_mean, index=self.predictors)
        spread = raw.max() - raw.min()
        scaled = (raw - raw.min()) / spread * 100 if spread > 0 else raw * 0.0
        return scaled.sort_values(ascending=False)


class LinearModel(RegressionModel):
    """
    Ordinary least squares over all predictors, with k-fold CV metrics.
    """

    key = "linear"
    name = "Linear Regression"

    def __init__(
        self,
        predictors: List[str] = PREDICTORS,
        target: str = TARGET,
        random_state: int = 123,
        cv_folds: int = 5
    ):
        super().__init__(predictors, target, random_state)
        self.cv_folds = cv_folds
        self.results = None
        self.cv_results: Dict[str, float] = {}

    @property
    def min_rows(self) -> int:
        return self.cv_folds

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        scores = cross_validate(
            LinearRegression(),
            X, y,
            cv=KFold(n_splits=self.cv_folds, shuffle=True, random_state=self.random_state),
            scoring=CV_SCORING
        )
        self.cv_results = {
            'RMSE': float(-np.mean(scores['test_rmse'])),
            'R-squared': float(np.nanmean(scores['test_r2'])),
            'MAE': float(-np.mean(scores['test_mae'])),
        }

        self.results = sm.OLS(y, sm.add_constant(X, has_constant='add')).fit()

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return np.asarray(self.results.predict(sm.add_constant(X, has_constant='add')))

    def coefficient_table(self) -> pd.DataFrame:
        """
        Per-term estimate, standard error, t-statistic and p-value.
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        return pd.DataFrame({
            'Feature': ['(Intercept)'] + self.predictors,
            'Estimate': self.results.params,
            'Std.Error': self.results.bse,
            'T-value': self.results.tvalues,
            'P-value': self.results.pvalues,
        })


class DecisionTreeModel(RegressionModel):
    """
    Single regression tree with cost-complexity pruning.

    The complexity parameter ``cp`` is relative to the root node error:
    ccp_alpha = cp * Var(target).
    """

    key = "decision_tree"
    name = "Decision Tree"

    def __init__(
        self,
        predictors: List[str] = PREDICTORS,
        target: str = TARGET,
        random_state: int = 123,
        cp: float = 0.01,
        min_samples_split: int = 20,
        min_samples_leaf: int = 7
    ):
        super().__init__(predictors, target, random_state)
        self.cp = cp
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.tree: Optional[DecisionTreeRegressor] = None

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        ccp_alpha = self.cp * float(np.var(y))
        self.tree = DecisionTreeRegressor(
            ccp_alpha=ccp_alpha,
            min_samples_split=self.min_samples_split,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state
        )
        self.tree.fit(X, y)
        logger.info(f"  ccp_alpha={ccp_alpha:.6g}, leaves={self.tree.get_n_leaves()}")

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self.tree.predict(X)


class LocalRegressionModel(RegressionModel):
    """
    LOESS fit of the target against its most correlated predictor.
    """

    key = "loess"
    name = "LOESS"

    def __init__(
        self,
        predictors: List[str] = PREDICTORS,
        target: str = TARGET,
        random_state: int = 123,
        span: float = 0.8
    ):
        super().__init__(predictors, target, random_state)
        self.span = span
        self.best_predictor: Optional[str] = None
        self.correlations: Optional[pd.Series] = None
        self._x: Optional[np.ndarray] = None
        self._y: Optional[np.ndarray] = None

    @property
    def min_rows(self) -> int:
        return 3

    def fit(self, train: pd.DataFrame) -> 'LocalRegressionModel':
        if not self._is_fitted and len(train) >= self.min_rows:
            self.best_predictor, self.correlations = select_best_predictor(
                train, self.predictors, self.target
            )
            logger.info(
                f"  best predictor: {self.best_predictor} "
                f"(r={self.correlations[self.best_predictor]:.3f})"
            )
        return super().fit(train)

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        column = self.predictors.index(self.best_predictor)
        self._x = X[:, column]
        self._y = y

    def _predict(self, X: np.ndarray) -> np.ndarray:
        """
        Smoothed values at the new predictor points.

        Points outside the training range of the predictor get NaN rather
        than a linear extrapolation.
        """
        column = self.predictors.index(self.best_predictor)
        xvals = X[:, column]
        predicted = np.array(lowess(
            self._y, self._x,
            frac=self.span,
            it=0,
            xvals=xvals
        ), dtype=float)
        outside = (xvals < self._x.min()) | (xvals > self._x.max())
        predicted[outside] = np.nan
        return predicted


MODEL_CLASSES = {
    cls.key: cls
    for cls in (RandomForestModel, LinearModel, DecisionTreeModel, LocalRegressionModel)
}


def build_models(
    config: Optional[Dict[str, Any]] = None,
    predictors: List[str] = PREDICTORS,
    target: str = TARGET,
    seed: int = 123
) -> List[RegressionModel]:
    """
    Create the four unfitted models from the 'models' config section.

    Args:
        config: Configuration dictionary
        predictors: Predictor columns
        target: Target column
        seed: Random seed passed to every model

    Returns:
        Models in fixed order: random forest, linear, tree, LOESS
    """
    model_config = (config or {}).get('models', {})
    return [
        cls(predictors=predictors, target=target, random_state=seed,
            **model_config.get(key, {}))
        for key, cls in MODEL_CLASSES.items()
    ]


def train_models(
    models: List[RegressionModel],
    train: pd.DataFrame
) -> Tuple[Dict[str, RegressionModel], Dict[str, str]]:
    """
    Fit every model on the same training partition.

    A TrainingError stops only the model that raised it.

    Args:
        models: Unfitted models
        train: Training partition (not modified)

    Returns:
        Tuple of (fitted models by key, failure messages by key)
    """
    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING")
    logger.info("=" * 60)

    fitted = {}
    failures = {}
    for model in models:
        try:
            fitted[model.key] = model.fit(train)
        except TrainingError as e:
            logger.error(f"{model.name} failed: {e}")
            failures[model.key] = str(e)

    logger.info("=" * 60)
    logger.info(f"MODEL TRAINING COMPLETE: {len(fitted)} fitted, {len(failures)} failed")
    logger.info("=" * 60)

    return fitted, failures


def save_models(fitted: Dict[str, RegressionModel], directory: str) -> Dict[str, str]:
    """
    Persist fitted models as joblib files.

    Returns:
        Saved file path per model key
    """
    directory = Path(directory)
    paths = {}
    for key, model in fitted.items():
        path = directory / f"{key}.joblib"
        model.save(str(path))
        paths[key] = str(path)
    return paths


def print_model_summary(model: RegressionModel) -> None:
    """
    Print a summary of a trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)

    if isinstance(model, RandomForestModel):
        print(f"Trees: {model.n_estimators} | min leaf: {model.min_samples_leaf} "
              f"| max leaves: {model.max_leaf_nodes}")
        print(f"Best max_features: {model.search.best_params_['max_features']}")
    elif isinstance(model, LinearModel):
        print(f"R² (train): {model.results.rsquared:.4f}")
    elif isinstance(model, DecisionTreeModel):
        print(f"cp: {model.cp} | leaves: {model.tree.get_n_leaves()} | depth: {model.tree.get_depth()}")
    elif isinstance(model, LocalRegressionModel):
        print(f"Predictor: {model.best_predictor} | span: {model.span}")

    if model.training_info:
        print(f"Samples: {model.training_info.get('n_samples', 'N/A')}")
        print(f"Duration: {model.training_info.get('training_duration_seconds', 0):.2f}s")

    print("=" * 50 + "\n")
