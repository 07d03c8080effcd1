"""
Model Evaluation Module
=======================

Applies one RMSE metric to every fitted model on both partitions and
builds the comparison tables.

Features:
    - RMSE metric shared by all models
    - RMSE comparison table (train and test)
    - Random forest cross-validation summary and feature importance
    - Linear model coefficient table
    - Actual vs predicted, feature importance and tree plots
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error
from sklearn.tree import plot_tree

from .exceptions import DimensionMismatchError
from .model import (
    RegressionModel,
    RandomForestModel,
    LinearModel,
    DecisionTreeModel,
    MODEL_CLASSES,
)
from .preprocessing import TARGET

logger = logging.getLogger(__name__)


def rmse(predicted: Sequence[float], observed: Sequence[float]) -> float:
    """
    Root mean squared error.

    Args:
        predicted: Predicted values
        observed: Observed values, same length

    Returns:
        sqrt(mean((predicted - observed)^2))

    Raises:
        DimensionMismatchError: If the lengths differ or are zero
    """
    predicted = np.asarray(predicted, dtype=float).ravel()
    observed = np.asarray(observed, dtype=float).ravel()

    if len(predicted) != len(observed):
        raise DimensionMismatchError(
            f"Predicted ({len(predicted)}) and observed ({len(observed)}) lengths differ"
        )
    if len(predicted) == 0:
        raise DimensionMismatchError("Cannot compute RMSE of empty sequences")

    return float(np.sqrt(mean_squared_error(observed, predicted)))


def _partition_rmse(model: RegressionModel, rows: pd.DataFrame, target: str) -> float:
    predicted = model.predict(rows)
    observed = rows[target].to_numpy(dtype=float)

    if len(predicted) != len(observed):
        raise DimensionMismatchError(
            f"{model.name} returned {len(predicted)} predictions for {len(observed)} rows"
        )

    finite = np.isfinite(predicted)
    if not finite.all():
        logger.warning(
            f"{model.name}: {int((~finite).sum())} non-finite predictions excluded from RMSE"
        )
        if not finite.any():
            return float('nan')

    return rmse(predicted[finite], observed[finite])


def evaluate_models(
    fitted: Dict[str, RegressionModel],
    train: pd.DataFrame,
    test: pd.DataFrame,
    target: str = TARGET
) -> pd.DataFrame:
    """
    RMSE of every fitted model on the train and test partitions.

    Args:
        fitted: Fitted models by key
        train: Training partition
        test: Test partition
        target: Target column

    Returns:
        DataFrame with columns Model, Train_RMSE, Test_RMSE
    """
    rows = []
    for key, model in fitted.items():
        rows.append({
            'Model': model.name,
            'Train_RMSE': _partition_rmse(model, train, target),
            'Test_RMSE': _partition_rmse(model, test, target),
        })
        logger.info(
            f"{model.name}: train RMSE {rows[-1]['Train_RMSE']:.6f}, "
            f"test RMSE {rows[-1]['Test_RMSE']:.6f}"
        )

    return pd.DataFrame(rows, columns=['Model', 'Train_RMSE', 'Test_RMSE'])


def cv_summary_table(model: RandomForestModel) -> pd.DataFrame:
    """Cross-validation RMSE, R² and MAE of the random forest."""
    return pd.DataFrame(
        {'Metric': list(model.cv_results.keys()), 'Value': list(model.cv_results.values())}
    )


def coefficient_table(model: LinearModel) -> pd.DataFrame:
    """Estimate, Std.Error, T-value and P-value per linear model term."""
    return model.coefficient_table().reset_index(drop=True)


def feature_importance_table(model: RandomForestModel) -> pd.DataFrame:
    """Predictors ranked by scaled random forest importance."""
    importance = model.feature_importance()
    return pd.DataFrame({'Feature': importance.index, 'Importance': importance.values})


def plot_actual_vs_predicted(
    fitted: Dict[str, RegressionModel],
    test: pd.DataFrame,
    target: str = TARGET,
    figsize: Tuple[int, int] = (12, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Actual vs predicted scatter on the test set, one panel per model.

    Args:
        fitted: Fitted models by key
        test: Test partition
        target: Target column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    n_models = max(len(fitted), 1)
    n_rows = (n_models + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    observed = test[target].to_numpy(dtype=float)
    for ax, model in zip(axes, fitted.values()):
        predicted = model.predict(test)
        ax.scatter(observed, predicted, alpha=0.6, s=20)

        finite = np.isfinite(predicted)
        if finite.any():
            lo = min(observed.min(), predicted[finite].min())
            hi = max(observed.max(), predicted[finite].max())
            ax.plot([lo, hi], [lo, hi], 'r--', linewidth=2, label='Perfect')

        ax.set_xlabel(f'Actual {target}')
        ax.set_ylabel(f'Predicted {target}')
        ax.set_title(model.name, fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    for idx in range(len(fitted), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Actual vs Predicted (Test Set)', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_feature_importance(
    importance: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Horizontal bar chart of the random forest feature importance.

    Args:
        importance: Table from feature_importance_table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    ordered = importance.sort_values('Importance')
    sns.barplot(x='Importance', y='Feature', data=ordered, color='steelblue', ax=ax)

    ax.set_xlabel('Permutation importance (scaled 0-100)')
    ax.set_ylabel('')
    ax.set_title('Random Forest Feature Importance', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Feature importance plot saved to {save_path}")

    return fig


def plot_decision_tree(
    model: DecisionTreeModel,
    figsize: Tuple[int, int] = (14, 8),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Draw the fitted regression tree."""
    fig, ax = plt.subplots(figsize=figsize)
    plot_tree(
        model.tree,
        feature_names=model.predictors,
        filled=True,
        rounded=True,
        precision=3,
        ax=ax
    )
    ax.set_title('Decision Tree', fontsize=14, fontweight='bold')

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Decision tree plot saved to {save_path}")

    return fig


def evaluate_pipeline(
    fitted: Dict[str, RegressionModel],
    failures: Dict[str, str],
    train: pd.DataFrame,
    test: pd.DataFrame,
    target: str = TARGET,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Compute every table the fitted models allow and write the reports.

    Tables belonging to a failed model are skipped; the failures are
    listed in the result.

    Args:
        fitted: Fitted models by key
        failures: Failure messages by model key
        train: Training partition
        test: Test partition
        target: Target column
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing tables, file paths and failures
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    tables: Dict[str, pd.DataFrame] = {}
    figures: List[str] = []

    tables['rmse_comparison'] = evaluate_models(fitted, train, test, target)

    forest = fitted.get(RandomForestModel.key)
    if forest is not None:
        tables['rf_cv_results'] = cv_summary_table(forest)
        tables['feature_importance'] = feature_importance_table(forest)
        plot_feature_importance(
            tables['feature_importance'],
            save_path=str(figures_dir / "eval_feature_importance.png")
        )
        figures.append("eval_feature_importance.png")

    linear = fitted.get(LinearModel.key)
    if linear is not None:
        tables['lm_coefficients'] = coefficient_table(linear)

    tree = fitted.get(DecisionTreeModel.key)
    if tree is not None:
        plot_decision_tree(tree, save_path=str(figures_dir / "eval_decision_tree.png"))
        figures.append("eval_decision_tree.png")

    if fitted:
        plot_actual_vs_predicted(
            fitted, test, target,
            save_path=str(figures_dir / "eval_actual_vs_predicted.png")
        )
        figures.append("eval_actual_vs_predicted.png")

    table_files = {}
    for name, table in tables.items():
        path = metrics_dir / f"{name}.csv"
        table.to_csv(path, index=False)
        table_files[name] = str(path)

    failed_names = {MODEL_CLASSES[key].name: msg for key, msg in failures.items()}
    metrics = {
        'rmse': tables['rmse_comparison'].to_dict(orient='records'),
        'failed_models': failed_names,
        'n_train': int(len(train)),
        'n_test': int(len(test)),
    }
    if 'rf_cv_results' in tables:
        metrics['rf_cv'] = dict(forest.cv_results)
        metrics['rf_cv_folds'] = forest.cv_folds
    if linear is not None:
        metrics['lm_cv'] = dict(linear.cv_results)

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info("=" * 60)

    return {
        'tables': tables,
        'figures': figures,
        'table_files': table_files,
        'metrics_file': str(metrics_file),
        'failures': failed_names,
        'rf_cv_folds': forest.cv_folds if forest is not None else None
    }


def print_evaluation_report(result: Dict[str, Any]) -> None:
    """
    Print the comparison tables to console.

    Args:
        result: Dictionary from evaluate_pipeline
    """
    tables = result['tables']

    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)

    if 'rf_cv_results' in tables:
        print(f"\nRandom Forest {result['rf_cv_folds']}-Fold Cross-Validation Results:")
        print("-" * 70)
        print(tables['rf_cv_results'].to_string(index=False, float_format='{:.4f}'.format))

    if 'lm_coefficients' in tables:
        print("\nLinear Regression Coefficients:")
        print("-" * 70)
        print(tables['lm_coefficients'].to_string(index=False, float_format='{:.4f}'.format))

    print("\nRMSE Comparison of Different Models:")
    print("-" * 70)
    print(tables['rmse_comparison'].to_string(index=False, float_format='{:.6f}'.format))

    if 'feature_importance' in tables:
        print("\nFeature Importance (Random Forest):")
        print("-" * 70)
        print(tables['feature_importance'].to_string(index=False, float_format='{:.1f}'.format))

    if result['failures']:
        print("\nModels that could not be trained:")
        for name, message in result['failures'].items():
            print(f"  ✗ {name}: {message}")

    comparison = tables['rmse_comparison'].dropna(subset=['Test_RMSE'])
    if not comparison.empty:
        best = comparison.loc[comparison['Test_RMSE'].idxmin()]
        print(f"\n✓ Lowest test RMSE: {best['Model']} ({best['Test_RMSE']:.6f})")

    print("=" * 70 + "\n")
