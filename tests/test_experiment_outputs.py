"""Tests for the end-to-end experiment run, persisted artifacts and the analysis pass."""

import json
import os

import pandas as pd
import pytest

import analyze_rf_importance_results as analysis
import experiment_rf_importance_sweep as sweep


@pytest.fixture
def quick_config(results_folder):
    return {
        'results_folder': results_folder,
        'seed': 5,
        'rate_values': [0.0, 0.5, 1.0],
        'num_repeats': 4,
        'num_rows': 120,
        'n_estimators': 20,
    }


@pytest.fixture
def finished_run(quick_config, summary):
    sweep.run_experiment(summary, quick_config)
    return quick_config['results_folder']


class TestRunExperiment:
    def test_writes_artifacts(self, finished_run):
        for name in (sweep.SAMPLES_CSV_NAME, sweep.PERCENTILES_CSV_NAME,
                     sweep.CONFIG_JSON_NAME, sweep.BANDS_PLOT_NAME):
            assert os.path.exists(os.path.join(finished_run, name))

    def test_persisted_tables(self, finished_run):
        samples = pd.read_csv(os.path.join(finished_run, sweep.SAMPLES_CSV_NAME))
        table = pd.read_csv(os.path.join(finished_run, sweep.PERCENTILES_CSV_NAME))

        assert len(samples) == 12
        assert len(table) == 3
        assert 'x2_p95' in table.columns

    def test_config_round_trips(self, finished_run):
        with open(os.path.join(finished_run, sweep.CONFIG_JSON_NAME)) as f:
            config = json.load(f)

        assert config['num_repeats'] == 4
        assert config['rate_values'] == [0.0, 0.5, 1.0]
        assert config['importance_method'] == "impurity"
        assert config['percentiles'] == [5, 50, 95]

    def test_same_seed_same_samples(self, quick_config, summary, tmp_path):
        first, _ = sweep.run_experiment(summary, quick_config)
        second, _ = sweep.run_experiment(summary, {**quick_config, 'results_folder': str(tmp_path / "again")})

        pd.testing.assert_frame_equal(first, second)

    def test_summary_has_provenance(self, finished_run, summary):
        summary.close()
        with open(summary.filepath, encoding='utf-8') as f:
            text = f.read()

        assert "scikit-learn:" in text
        assert "Estimated total forest fits: 12" in text
        assert "--- Experiment End ---" in text


class TestAnalysis:
    def test_checks_pass_on_finished_run(self, finished_run, summary):
        assert analysis.run_analysis(summary, finished_run) is True
        assert os.path.exists(os.path.join(finished_run, analysis.ANALYSIS_SUBFOLDER,
                                           analysis.DISTRIBUTION_PLOT_NAME))

    def test_missing_results(self, results_folder, summary):
        assert analysis.load_results(results_folder, summary) is None
        assert analysis.run_analysis(summary, results_folder) is False

    def test_count_check_detects_missing_repeat(self, finished_run):
        samples, _, config = analysis.load_results(finished_run)
        assert analysis.check_sweep_counts(samples, 3, 4)

        truncated = samples.drop(samples.index[-1])
        assert not analysis.check_sweep_counts(truncated, 3, 4)
        assert not analysis.check_sweep_counts(samples, 4, 4)

    def test_ordering_check_detects_violation(self, finished_run):
        _, table, _ = analysis.load_results(finished_run)
        assert analysis.check_percentile_ordering(table)

        broken = table.copy()
        broken.loc[0, 'x1_p05'] = broken.loc[0, 'x1_p95'] + 1.0
        assert not analysis.check_percentile_ordering(broken)

    def test_dominance_table(self):
        table = pd.DataFrame({
            'rate': [0.0, 1.0],
            'x1_p05': [0.4, 0.1], 'x1_p50': [0.5, 0.5], 'x1_p95': [0.6, 0.6],
            'x3_p05': [0.1, 0.2], 'x3_p50': [0.2, 0.2], 'x3_p95': [0.3, 0.3],
        })
        result = analysis.check_dominance(table)

        assert list(result.columns) == ['rate', 'p05', 'p50', 'p95', 'all']
        assert list(result['all']) == [True, False]

    def test_compare_distributions_identical(self):
        samples = pd.DataFrame({
            'rate': [0.0] * 20, 'x1': [0.5] * 20,
            'x2': [0.1 * i for i in range(20)], 'x3': [0.1 * i for i in range(20)],
        })
        result = analysis.compare_distributions(samples, 0.0, 'x2', 'x3')

        assert result['ks_statistic'] == pytest.approx(0.0)
        assert result['ks_pvalue'] == pytest.approx(1.0)
        assert result['median_difference'] == pytest.approx(0.0)

    def test_rate_trend_monotone(self):
        table = pd.DataFrame({'rate': [0.0, 0.5, 1.0], 'x2_p50': [0.2, 0.3, 0.4]})
        rho, _ = analysis.rate_trend(table)

        assert rho == pytest.approx(1.0)


class TestCommandLine:
    def test_args_override_config(self, results_folder):
        args = sweep.parse_args(["--results-folder", results_folder, "--rate-steps", "3",
                                 "--repeats", "2", "--method", "permutation"])
        config = sweep.config_from_args(args)

        assert config['rate_values'] == [0.0, 0.5, 1.0]
        assert config['num_repeats'] == 2
        assert config['importance_method'] == "permutation"
        assert config['results_folder'] == results_folder

    def test_rate_steps_too_small(self):
        with pytest.raises(ValueError, match="rate-steps"):
            sweep.config_from_args(sweep.parse_args(["--rate-steps", "1"]))

    def test_unknown_method_rejected(self):
        with pytest.raises(SystemExit):
            sweep.parse_args(["--method", "gain"])

    def test_main_end_to_end(self, results_folder):
        code = sweep.main(["--results-folder", results_folder, "--rate-steps", "2",
                           "--repeats", "2", "--rows", "60", "--n-estimators", "5"])
        assert code == 0
        assert analysis.main(["--results-folder", results_folder]) == 0

    def test_main_reports_failure(self, results_folder):
        code = sweep.main(["--results-folder", results_folder, "--rows", "0"])

        assert code == 1
        with open(os.path.join(results_folder, sweep.SUMMARY_FILE_NAME), encoding='utf-8') as f:
            assert "AN UNHANDLED ERROR OCCURRED" in f.read()
