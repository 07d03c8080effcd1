"""
Test Suite for Evaluation Module
================================

Tests for the RMSE metric, comparison tables and report files.
"""

import json

import numpy as np
import pandas as pd
import pytest

from orf_pipeline.exceptions import DimensionMismatchError
from orf_pipeline.evaluation import (
    rmse,
    evaluate_models,
    cv_summary_table,
    feature_importance_table,
    evaluate_pipeline,
    print_evaluation_report,
)
from orf_pipeline.model import (
    build_models,
    train_models,
    LinearModel,
    DecisionTreeModel,
    LocalRegressionModel,
    RandomForestModel,
)
from orf_pipeline.preprocessing import split_train_test, TARGET


class TestRmse:

    def test_zero_for_identical(self):
        x = np.array([0.1, 0.5, -2.0, 7.25])
        assert rmse(x, x) == 0.0

    def test_symmetric(self):
        rng = np.random.default_rng(0)
        a, b = rng.normal(size=50), rng.normal(size=50)
        assert rmse(a, b) == pytest.approx(rmse(b, a))

    def test_known_value(self):
        assert rmse([1.0, 2.0, 3.0, 4.0], [2.0, 2.0, 5.0, 4.0]) == pytest.approx(np.sqrt(5 / 4))

    def test_non_negative(self):
        assert rmse([-3.0, -1.0], [4.0, 2.0]) > 0

    def test_accepts_series(self):
        assert rmse(pd.Series([1.0, 3.0]), [1.0, 1.0]) == pytest.approx(np.sqrt(2))

    def test_length_mismatch(self):
        with pytest.raises(DimensionMismatchError) as exc_info:
            rmse([1.0, 2.0], [1.0])
        assert exc_info.value.stage == 'evaluation'

    def test_empty(self):
        with pytest.raises(DimensionMismatchError):
            rmse([], [])

    def test_matches_sklearn_mse(self):
        rng = np.random.default_rng(3)
        a, b = rng.normal(size=30), rng.normal(size=30)
        assert rmse(a, b) == pytest.approx(np.sqrt(np.mean((a - b) ** 2)))


class TestEvaluateModels:

    @pytest.fixture
    def split(self, modeling_data):
        return split_train_test(modeling_data, seed=123)

    def test_rmse_table(self, split):
        train, test = split
        fitted = {
            'linear': LinearModel().fit(train),
            'decision_tree': DecisionTreeModel().fit(train),
        }

        table = evaluate_models(fitted, train, test)

        assert list(table.columns) == ['Model', 'Train_RMSE', 'Test_RMSE']
        assert table['Model'].tolist() == ['Linear Regression', 'Decision Tree']
        assert (table[['Train_RMSE', 'Test_RMSE']] >= 0).all().all()

    def test_matches_direct_rmse(self, split):
        train, test = split
        model = LinearModel().fit(train)

        table = evaluate_models({'linear': model}, train, test)

        expected = rmse(model.predict(test), test['ORF'])
        assert table.loc[0, 'Test_RMSE'] == pytest.approx(expected)

    def test_loess_rows_outside_training_range_excluded(self, modeling_data, caplog):
        """Test rows beyond the LOESS support are dropped from its RMSE."""
        train = modeling_data.iloc[:50]
        model = LocalRegressionModel().fit(train)
        column = model.best_predictor
        low, high = train[column].min(), train[column].max()
        test = train.copy()
        test.loc[test.index[:3], column] = low - 1.0
        test.loc[test.index[3:5], column] = high + 1.0
        inside = test.iloc[5:]

        with caplog.at_level('WARNING', logger='orf_pipeline.evaluation'):
            table = evaluate_models({'loess': model}, train, test)

        expected = rmse(model.predict(inside), inside[TARGET])
        assert table.loc[0, 'Test_RMSE'] == pytest.approx(expected)
        assert '5 non-finite predictions excluded' in caplog.text


class TestEvaluatePipeline:

    @pytest.fixture
    def trained(self, modeling_data):
        train, test = split_train_test(modeling_data, seed=123)
        fitted, failures = train_models(build_models(), train)
        return fitted, failures, train, test

    def test_all_tables_and_files(self, trained, tmp_path):
        fitted, failures, train, test = trained

        result = evaluate_pipeline(fitted, failures, train, test, output_dir=str(tmp_path))

        tables = result['tables']
        assert set(tables) == {
            'rmse_comparison', 'rf_cv_results', 'feature_importance', 'lm_coefficients'
        }
        assert tables['rmse_comparison']['Model'].tolist() == [
            'Random Forest', 'Linear Regression', 'Decision Tree', 'LOESS'
        ]
        assert tables['rf_cv_results']['Metric'].tolist() == ['RMSE', 'R-squared', 'MAE']
        for name in tables:
            assert (tmp_path / "metrics" / f"{name}.csv").exists()
        for figure in result['figures']:
            assert (tmp_path / "figures" / figure).exists()

        with open(result['metrics_file']) as f:
            metrics = json.load(f)
        assert metrics['n_train'] == len(train)
        assert metrics['failed_models'] == {}

    def test_partial_report(self, modeling_data, tmp_path):
        """A failed forest drops its tables but keeps the rest."""
        train, test = split_train_test(modeling_data.iloc[:12], seed=123)
        fitted, failures = train_models(build_models(), train)

        result = evaluate_pipeline(fitted, failures, train, test, output_dir=str(tmp_path))

        assert 'Random Forest' in result['failures']
        assert 'rf_cv_results' not in result['tables']
        assert 'lm_coefficients' in result['tables']
        assert len(result['tables']['rmse_comparison']) == 3

    def test_feature_importance_table(self, trained):
        fitted = trained[0]
        table = feature_importance_table(fitted['random_forest'])

        assert list(table.columns) == ['Feature', 'Importance']
        assert table['Importance'].max() == pytest.approx(100.0)

    def test_cv_summary_table(self, trained):
        table = cv_summary_table(trained[0]['random_forest'])

        assert len(table) == 3

    def test_report_heading_uses_configured_folds(self, modeling_data, tmp_path, capsys):
        train, test = split_train_test(modeling_data, seed=123)
        forest = RandomForestModel(n_estimators=20, cv_folds=4).fit(train)

        result = evaluate_pipeline({'random_forest': forest}, {}, train, test,
                                   output_dir=str(tmp_path))
        print_evaluation_report(result)

        assert 'Random Forest 4-Fold Cross-Validation Results' in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
