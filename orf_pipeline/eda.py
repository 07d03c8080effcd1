"""
Exploratory Data Analysis (EDA) Module
======================================

Summaries and visualizations of the filtered reservoir dataset.

Functions:
    - percentile_table: P10/P50/P90 of each named parameter
    - plot_scatter_panels: ORF against each predictor
    - plot_percentile_histograms: Histograms annotated with P10/P50/P90
    - plot_correlation_matrix: Correlation heatmap
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Iterable

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .preprocessing import PARAMETERS, PREDICTORS, TARGET

logger = logging.getLogger(__name__)

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

PERCENTILES = {'P10': 0.10, 'P50': 0.50, 'P90': 0.90}


def percentile_table(
    df: pd.DataFrame,
    parameters: Iterable[str] = PARAMETERS
) -> pd.DataFrame:
    """
    P10, P50 and P90 of every named parameter present in the data.

    Args:
        df: Filtered dataset
        parameters: Parameter names, in output order

    Returns:
        DataFrame with columns Parameter, P10, P50, P90
    """
    rows = []
    for param in parameters:
        if param not in df.columns:
            continue
        row = {'Parameter': param}
        for label, q in PERCENTILES.items():
            row[label] = float(df[param].quantile(q))
        rows.append(row)

    return pd.DataFrame(rows, columns=['Parameter'] + list(PERCENTILES))


def _grid(n_panels: int, n_cols: int, figsize: Tuple[int, int]):
    n_rows = (n_panels + n_cols - 1) // n_cols
    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize, squeeze=False)
    axes = axes.flatten()
    for idx in range(n_panels, len(axes)):
        axes[idx].set_visible(False)
    return fig, axes


def plot_scatter_panels(
    df: pd.DataFrame,
    predictors: List[str] = PREDICTORS,
    target: str = TARGET,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter plot of the target against each predictor.

    Args:
        df: Filtered dataset
        predictors: Predictor columns
        target: Target column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = _grid(len(predictors), 3, figsize)

    for ax, col in zip(axes, predictors):
        ax.scatter(df[col], df[target], alpha=0.5, s=15)
        ax.set_xlabel(PARAMETERS.get(col, col), fontsize=8)
        ax.set_ylabel(target)
        ax.set_title(f'{target} vs {col}', fontsize=10, fontweight='bold')

    plt.suptitle('Oil Recovery Factor vs Reservoir Parameters', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Scatter plots saved to {save_path}")

    return fig


def plot_percentile_histograms(
    df: pd.DataFrame,
    parameters: Iterable[str] = PARAMETERS,
    bins: int = 30,
    figsize: Tuple[int, int] = (14, 12),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram of every parameter with P10, P50 and P90 marked.

    Args:
        df: Filtered dataset
        parameters: Parameter names
        bins: Histogram bins
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    columns = [p for p in parameters if p in df.columns]
    fig, axes = _grid(len(columns), 2, figsize)
    colors = {'P10': 'red', 'P50': 'green', 'P90': 'blue'}

    for ax, col in zip(axes, columns):
        sns.histplot(df[col], bins=bins, ax=ax, alpha=0.7)
        for label, q in PERCENTILES.items():
            value = df[col].quantile(q)
            ax.axvline(value, color=colors[label], linestyle='--',
                       label=f'{label}: {value:.2f}')
        ax.set_xlabel(PARAMETERS.get(col, col), fontsize=8)
        ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=7)

    plt.suptitle('Parameter Distributions with P10/P50/P90', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Percentile histograms saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df.select_dtypes(include=[np.number]).corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.3f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the EDA figures and the percentile table.

    Args:
        df: Filtered dataset
        output_dir: Directory to save figures and tables
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "correlation_matrix": None,
        "percentiles": None
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Computing P10/P50/P90 table...")
    percentiles = percentile_table(df)
    percentiles.to_csv(output_dir / "percentiles.csv", index=False)
    report["percentiles"] = percentiles

    logger.info("Generating scatter plots...")
    plot_scatter_panels(df, save_path=str(output_dir / "01_orf_scatter.png"))
    report["figures"].append("01_orf_scatter.png")

    logger.info("Plotting percentile histograms...")
    plot_percentile_histograms(df, save_path=str(output_dir / "02_percentile_histograms.png"))
    report["figures"].append("02_percentile_histograms.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df,
        save_path=str(output_dir / "03_correlation_matrix.png")
    )
    report["figures"].append("03_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_percentile_table(table: pd.DataFrame) -> None:
    """
    Print the P10/P50/P90 table with parameter descriptions.

    Args:
        table: Table from percentile_table
    """
    print("\n" + "=" * 50)
    print("PARAMETER PERCENTILES")
    print("=" * 50)
    for _, row in table.iterrows():
        description = PARAMETERS.get(row['Parameter'], row['Parameter'])
        print(f"  {row['Parameter']:<13} P10={row['P10']:<10.4g} P50={row['P50']:<10.4g} "
              f"P90={row['P90']:<10.4g} {description}")
    print("=" * 50 + "\n")
