"""
Oil Recovery Factor Modeling
============================

Cleaning, filtering and model comparison for the reservoir atlas dataset.

Modules:
    - exceptions: Pipeline error taxonomy
    - data_loader: Dataset acquisition, configuration and file reading
    - preprocessing: Cleaning & filtering stage and train/test split
    - model: Random forest, linear, decision tree and LOESS models
    - evaluation: RMSE metric, comparison tables and evaluation plots
    - eda: Percentile table and exploratory plots
"""

__version__ = "1.0.0"
__author__ = "Reservoir Analytics Team"
