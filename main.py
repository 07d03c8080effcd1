#!/usr/bin/env python3
"""
Oil Recovery Factor Modeling - Main Pipeline
=============================================

Orchestrates the analysis of the reservoir dataset.

Phases:
    1. Acquisition - Download, extract and read the dataset
    2. Cleaning - Missing values, numeric columns, domain filters, split
    3. EDA - Percentile table and exploratory plots
    4. Training - Random forest, linear regression, decision tree, LOESS
    5. Evaluation - RMSE comparison and model tables

Usage:
    # Run complete pipeline (downloads the dataset)
    python main.py

    # Use a local copy of the dataset
    python main.py --data data/raw/atlas.xlsx

    # Run specific phase
    python main.py --phase eda

    # Run with custom config
    python main.py --config config/custom.yaml --seed 42
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

from orf_pipeline.data_loader import load_config, load_dataset, print_data_summary
from orf_pipeline.eda import generate_eda_report, print_percentile_table
from orf_pipeline.exceptions import PipelineError
from orf_pipeline.preprocessing import (
    PARAMETERS,
    PREDICTORS,
    TARGET,
    preprocess_pipeline,
    print_preprocessing_summary,
)
from orf_pipeline.model import build_models, train_models, save_models, print_model_summary
from orf_pipeline.evaluation import evaluate_pipeline, print_evaluation_report

logger = logging.getLogger(__name__)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    force: bool = False
) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=force
    )


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Merge command line overrides into the configuration."""
    if args.url:
        config.setdefault('data', {})['url'] = args.url
    if args.seed is not None:
        config.setdefault('split', {})['seed'] = args.seed
    if args.ratio is not None:
        config.setdefault('split', {})['ratio'] = args.ratio
    if args.output:
        config.setdefault('output', {})['reports_path'] = args.output
        config['output']['figures_path'] = str(Path(args.output) / 'figures')
    return config


def run_preprocessing(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute the cleaning, filtering and split phase.

    Args:
        df: Raw data
        config: Configuration dictionary

    Returns:
        Preprocessing result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: CLEANING & FILTERING")
    print("=" * 70)

    result = preprocess_pipeline(df, config)
    print_preprocessing_summary(result)
    return result


def run_eda(data: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute the exploratory analysis phase.

    Args:
        data: Filtered dataset
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 3: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')
    report = generate_eda_report(data, output_dir=output_dir, show_plots=False)
    print_percentile_table(report['percentiles'])

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")
    return report


def run_training(prep_result: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute the training phase.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Dictionary with fitted models and failures
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    models = build_models(config, PREDICTORS, TARGET, seed=prep_result['seed'])
    fitted, failures = train_models(models, prep_result['train'])

    for model in fitted.values():
        print_model_summary(model)

    model_path = config.get('output', {}).get('model_path')
    if model_path:
        save_models(fitted, model_path)

    return {'fitted': fitted, 'failures': failures}


def run_evaluation(
    training: Dict[str, Any],
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute the evaluation phase.

    Args:
        training: Training result dictionary
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    result = evaluate_pipeline(
        training['fitted'],
        training['failures'],
        prep_result['train'],
        prep_result['test'],
        target=TARGET,
        output_dir=output_dir
    )
    print_evaluation_report(result)
    return result


def run_pipeline(
    config: Dict[str, Any],
    data_path: Optional[str] = None,
    phase: str = 'all'
) -> Dict[str, Any]:
    """
    Execute the pipeline up to the requested phase.

    Args:
        config: Configuration dictionary
        data_path: Optional local dataset path (skips the download)
        phase: 'eda', 'train', 'evaluate' or 'all'

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("OIL RECOVERY FACTOR MODELING PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print("\n" + "=" * 70)
    print("PHASE 1: DATA ACQUISITION")
    print("=" * 70)

    df = load_dataset(config, data_path=data_path, target=TARGET, parameters=PARAMETERS)
    print_data_summary(df)

    results = {'config': config, 'data_shape': df.shape}
    results['preprocessing'] = run_preprocessing(df, config)

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(results['preprocessing']['data'], config)

    if phase in ('train', 'evaluate', 'all'):
        results['training'] = run_training(results['preprocessing'], config)

    if phase in ('evaluate', 'all'):
        results['evaluation'] = run_evaluation(
            results['training'], results['preprocessing'], config
        )

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Modeling rows: {len(results['preprocessing']['data'])}")
    if 'training' in results:
        print(f"  • Models fitted: {len(results['training']['fitted'])} / 4")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main() -> int:
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Oil recovery factor modeling on the reservoir atlas dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --data data/raw/atlas.xlsx --phase eda
  python main.py --config config/custom.yaml --seed 42 --ratio 0.75
        """
    )

    parser.add_argument('--data', '-d', type=str, default=None,
                        help='Local CSV/XLSX dataset (skips the download)')
    parser.add_argument('--config', '-c', type=str, default='config/config.yaml',
                        help='Path to configuration file (default: config/config.yaml)')
    parser.add_argument('--phase', '-p', type=str,
                        choices=['eda', 'train', 'evaluate', 'all'], default='all',
                        help='Phase to run (default: all)')
    parser.add_argument('--url', type=str, default=None, help='Dataset archive URL')
    parser.add_argument('--seed', type=int, default=None, help='Train/test split seed')
    parser.add_argument('--ratio', type=float, default=None, help='Training fraction')
    parser.add_argument('--output', '-o', type=str, default=None,
                        help='Reports directory')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose output')

    args = parser.parse_args()

    if args.data and not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        return 1

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    setup_logging('DEBUG' if args.verbose else 'INFO')

    config = apply_overrides(load_config(args.config), args)
    log_config = config.get('logging', {})
    if log_config:
        setup_logging('DEBUG' if args.verbose else log_config.get('level', 'INFO'),
                      log_config.get('file'), force=True)

    try:
        run_pipeline(config, data_path=args.data, phase=args.phase)
        return 0

    except PipelineError as e:
        logger.error(f"{e.stage} failed: {e.kind}: {e}")
        print(f"\n❌ Pipeline failed during {e.stage}: {e.kind}: {e}")
        return 1

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
