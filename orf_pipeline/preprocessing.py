"""
Data Preprocessing Module
=========================

Turns the raw reservoir table into a model-ready dataset and partitions it.

Functions:
    - drop_incomplete_rows: Remove rows with any missing value
    - select_numeric_columns: Keep numeric columns only
    - filter_nonzero: Drop rows where a named parameter is exactly zero
    - filter_ranges: Apply the GOR and API validity ranges
    - select_modeling_columns: Project onto predictors + target
    - clean_and_filter: Full cleaning & filtering stage
    - split_train_test: Seeded, target-stratified train/test partition
"""

import logging
from typing import Dict, Any, Tuple, Optional, List, Iterable

import pandas as pd
import numpy as np
from sklearn.model_selection import train_test_split

from .exceptions import SchemaError, ConfigurationError, TrainingError

logger = logging.getLogger(__name__)

TARGET = "ORF"

# Order matters: nonzero filters run in this order
PARAMETERS = {
    "THK": "Total Net Thickness (feet)",
    "POROSITY": "Porosity",
    "SW": "Water Saturation",
    "PERMEABILITY": "Permeability (mD)",
    "PI": "Weighted Average Initial Pressure (psi)",
    "API": "Weighted Average of Oil API Gravity (API units)",
    "GOR": "Gas-Oil Ratio (Mcf/bbl)",
    "ORF": "Oil Recovery Factor",
}

PREDICTORS = [name for name in PARAMETERS if name != TARGET]

DEFAULT_THRESHOLDS = {
    "gor_min": 0.0,
    "gor_max": 10.0,
    "api_min": 5.0,
}


def drop_incomplete_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Remove every row holding a missing value in any column."""
    cleaned = df.dropna(how='any')
    logger.info(f"Dropped {len(df) - len(cleaned)} incomplete rows ({len(cleaned)} remain)")
    return cleaned


def select_numeric_columns(df: pd.DataFrame, target: str = TARGET) -> pd.DataFrame:
    """
    Keep only numeric columns.

    Args:
        df: DataFrame without missing values
        target: Column that must survive the selection

    Returns:
        Numeric-only DataFrame

    Raises:
        SchemaError: If the target column is not numeric or absent
    """
    numeric = df.select_dtypes(include=[np.number])
    dropped = [c for c in df.columns if c not in numeric.columns]
    if dropped:
        logger.info(f"Dropped {len(dropped)} non-numeric columns")
        logger.debug(f"Non-numeric columns: {dropped}")

    if target not in numeric.columns:
        raise SchemaError(f"{target} column not found in dataset after numeric selection.")

    return numeric


def filter_nonzero(df: pd.DataFrame, parameters: Iterable[str] = PARAMETERS) -> pd.DataFrame:
    """
    Drop rows where a named parameter equals exactly zero.

    Parameters absent from the table are skipped.

    Args:
        df: Numeric DataFrame
        parameters: Parameter names, applied in order

    Returns:
        Filtered DataFrame
    """
    dataset = df
    for param in parameters:
        if param not in dataset.columns:
            logger.debug(f"Parameter '{param}' not in dataset, skipping nonzero filter")
            continue
        before = len(dataset)
        dataset = dataset[dataset[param] != 0]
        if len(dataset) != before:
            logger.info(f"{param} != 0: removed {before - len(dataset)} rows")
    return dataset


def filter_ranges(
    df: pd.DataFrame,
    gor_min: float = DEFAULT_THRESHOLDS["gor_min"],
    gor_max: float = DEFAULT_THRESHOLDS["gor_max"],
    api_min: float = DEFAULT_THRESHOLDS["api_min"]
) -> pd.DataFrame:
    """
    Apply the domain validity ranges.

    GOR is kept in the open interval (gor_min, gor_max) and API above
    api_min. Each range is applied only when its column exists.

    Args:
        df: DataFrame to filter
        gor_min: Exclusive lower bound for GOR
        gor_max: Exclusive upper bound for GOR
        api_min: Exclusive lower bound for API

    Returns:
        Filtered DataFrame
    """
    dataset = df

    if "GOR" in dataset.columns:
        before = len(dataset)
        dataset = dataset[(dataset["GOR"] > gor_min) & (dataset["GOR"] < gor_max)]
        logger.info(f"{gor_min} < GOR < {gor_max}: removed {before - len(dataset)} rows")

    if "API" in dataset.columns:
        before = len(dataset)
        dataset = dataset[dataset["API"] > api_min]
        logger.info(f"API > {api_min}: removed {before - len(dataset)} rows")

    return dataset


def select_modeling_columns(
    df: pd.DataFrame,
    predictors: List[str] = PREDICTORS,
    target: str = TARGET
) -> pd.DataFrame:
    """
    Project onto the predictor set plus the target.

    Unlike filter_nonzero, an absent column is fatal here.

    Raises:
        SchemaError: If any predictor or the target is missing
    """
    required = list(predictors) + [target]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(f"Required modeling columns missing: {missing}")
    return df[required]


def clean_and_filter(
    df: pd.DataFrame,
    target: str = TARGET,
    parameters: Iterable[str] = PARAMETERS,
    predictors: List[str] = PREDICTORS,
    thresholds: Optional[Dict[str, float]] = None
) -> pd.DataFrame:
    """
    Run the complete cleaning & filtering stage.

    Steps, in order: drop incomplete rows, keep numeric columns,
    nonzero filters, GOR/API ranges, projection. The input frame is not
    modified.

    Args:
        df: Raw DataFrame
        target: Target column name
        parameters: Named parameters for the nonzero filters
        predictors: Predictor columns kept for modeling
        thresholds: Overrides for gor_min, gor_max and api_min

    Returns:
        Model-ready DataFrame with a fresh RangeIndex
    """
    limits = dict(DEFAULT_THRESHOLDS)
    if thresholds:
        limits.update({k: v for k, v in thresholds.items() if k in limits})

    logger.info("=" * 60)
    logger.info("STARTING DATA CLEANING & FILTERING")
    logger.info("=" * 60)
    logger.info(f"Raw table: {df.shape[0]} rows × {df.shape[1]} columns")

    dataset = drop_incomplete_rows(df)
    dataset = select_numeric_columns(dataset, target)
    dataset = filter_nonzero(dataset, parameters)
    dataset = filter_ranges(dataset, **limits)
    dataset = select_modeling_columns(dataset, predictors, target)
    dataset = dataset.reset_index(drop=True)

    logger.info(f"Filtered dataset: {len(dataset)} rows")
    logger.info("=" * 60)

    return dataset


def _stratification_bins(
    y: pd.Series,
    n_train: int,
    n_test: int,
    n_bins: int
) -> Optional[pd.Series]:
    """
    Quantile groups of the target usable for a stratified split.

    Returns None when no grouping with at least two groups is feasible.
    """
    ranks = y.rank(method='first')
    for k in range(min(n_bins, n_train, n_test), 1, -1):
        bins = pd.qcut(ranks, q=k, labels=False, duplicates='drop')
        counts = bins.value_counts()
        if len(counts) > 1 and counts.min() >= 2:
            return bins
    return None


def split_train_test(
    df: pd.DataFrame,
    target: str = TARGET,
    ratio: float = 0.8,
    seed: int = 123,
    n_bins: int = 5
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Partition the modeling dataset into train and test sets.

    The target is grouped into quantile bins and sampled within each bin
    so both partitions span its range. Train receives floor(ratio * N)
    rows. Same seed and same input give the same partition.

    Args:
        df: Model-ready DataFrame
        target: Target column used for stratification
        ratio: Fraction of rows assigned to train
        seed: Random seed for the partition
        n_bins: Maximum number of quantile groups

    Returns:
        Tuple of (train, test), each keeping the original row index

    Raises:
        ConfigurationError: If ratio is not in (0, 1)
        TrainingError: If there are fewer than two rows
    """
    if not 0 < ratio < 1:
        raise ConfigurationError(f"Split ratio must be in (0, 1), got {ratio}", stage="split")

    n = len(df)
    if n < 2:
        raise TrainingError(f"Cannot split {n} rows into train and test", stage="split")

    n_train = int(np.floor(ratio * n))
    n_train = min(max(n_train, 1), n - 1)
    n_test = n - n_train

    bins = _stratification_bins(df[target], n_train, n_test, n_bins)
    if bins is None:
        logger.warning("Too few rows for a stratified split, sampling without strata")

    train, test = train_test_split(
        df,
        train_size=n_train,
        test_size=n_test,
        random_state=seed,
        stratify=bins
    )
    train = train.sort_index()
    test = test.sort_index()

    logger.info(
        f"Train/Test split (ratio={ratio}, seed={seed}): "
        f"{len(train)} train samples, {len(test)} test samples"
    )

    return train, test


def preprocess_pipeline(
    df: pd.DataFrame,
    config: Optional[Dict[str, Any]] = None,
    target: str = TARGET
) -> Dict[str, Any]:
    """
    Clean, filter and split the raw table.

    Args:
        df: Raw DataFrame
        config: Configuration dictionary ('filters' and 'split' sections)
        target: Target column name

    Returns:
        Dictionary containing:
            - data: Model-ready DataFrame
            - train, test: Partition of the data
            - n_raw: Row count of the raw table
            - ratio, seed: Split parameters used
    """
    config = config or {}
    split_config = config.get('split', {})

    data = clean_and_filter(df, target=target, thresholds=config.get('filters'))

    ratio = split_config.get('ratio', 0.8)
    seed = split_config.get('seed', 123)
    train, test = split_train_test(
        data,
        target=target,
        ratio=ratio,
        seed=seed,
        n_bins=split_config.get('n_bins', 5)
    )

    return {
        'data': data,
        'train': train,
        'test': test,
        'n_raw': len(df),
        'ratio': ratio,
        'seed': seed
    }


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Raw rows: {result['n_raw']}")
    print(f"Filtered rows: {len(result['data'])}")
    print(f"Training samples: {len(result['train'])}")
    print(f"Test samples: {len(result['test'])}")
    print(f"Predictors: {', '.join(c for c in result['data'].columns if c != TARGET)}")
    print(f"\nTrain/Test split: {result['ratio']} (seed {result['seed']})")
    print("=" * 50 + "\n")
