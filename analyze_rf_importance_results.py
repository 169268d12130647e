# analyze_rf_importance_results.py
import numpy as np
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
import argparse
import os
import sys
import time
import platform
import json  # Explicitly import for loading
import scipy.stats

from experiment_rf_importance_sweep import (
    BASE_FONT_SIZE,
    CANDIDATE_FEATURES,
    CONFIG_JSON_NAME,
    PERCENTILES,
    PERCENTILES_CSV_NAME,
    RESULTS_FOLDER,
    SAMPLES_CSV_NAME,
    SummaryWriter,
    percentile_column,
    percentile_label,
    swrite,
)

# --- Configuration ---
ANALYSIS_SUBFOLDER = "analysis_outputs"
ANALYSIS_SUMMARY_NAME = "analysis_summary.txt"
DISTRIBUTION_PLOT_NAME = "importance_distributions_by_rate.png"

STRONG_VARIABLE = 'x1'
SWITCHED_VARIABLE = 'x2'
WEAK_VARIABLE = 'x3'

# Two distributions "resemble" each other when the KS test cannot tell them apart at this level
KS_ALPHA = 0.01


# --- 1. Data Loading ---
def load_results(results_folder, summary=None):
    swrite(summary, f"\n--- 1. Loading Results from {results_folder} ---")
    samples_path = os.path.join(results_folder, SAMPLES_CSV_NAME)
    percentiles_path = os.path.join(results_folder, PERCENTILES_CSV_NAME)
    config_path = os.path.join(results_folder, CONFIG_JSON_NAME)
    for path in (samples_path, percentiles_path, config_path):
        if not os.path.exists(path):
            swrite(summary, f"ERROR: {path} not found. Run experiment_rf_importance_sweep.py first.")
            return None

    samples_df = pd.read_csv(samples_path)
    percentile_df = pd.read_csv(percentiles_path)
    with open(config_path, 'r') as f_json:
        config = json.load(f_json)
    swrite(summary, f"Samples shape: {samples_df.shape}, percentile table shape: {percentile_df.shape}")
    return samples_df, percentile_df, config


# --- 2. Structural Checks ---
def check_sweep_counts(samples_df, num_rate_steps, num_repeats):
    if samples_df['rate_index'].nunique() != num_rate_steps:
        return False
    counts = samples_df.groupby('rate_index')['repeat'].nunique()
    rows = samples_df.groupby('rate_index').size()
    return bool((counts == num_repeats).all() and (rows == num_repeats).all())

def check_percentile_ordering(percentile_df, percentiles=PERCENTILES):
    levels = sorted(percentiles)
    for variable in CANDIDATE_FEATURES:
        for lower, upper in zip(levels[:-1], levels[1:]):
            lower_col = percentile_df[percentile_column(variable, lower)]
            upper_col = percentile_df[percentile_column(variable, upper)]
            if (lower_col > upper_col).any():
                return False
    return True

def check_dominance(percentile_df, strong=STRONG_VARIABLE, weak=WEAK_VARIABLE, percentiles=PERCENTILES):
    """Per rate, whether each percentile of `strong` is at least the same percentile of `weak`."""
    result = pd.DataFrame({'rate': percentile_df['rate']})
    level_cols = []
    for level in sorted(percentiles):
        col = percentile_label(level)
        result[col] = percentile_df[percentile_column(strong, level)] >= percentile_df[percentile_column(weak, level)]
        level_cols.append(col)
    result['all'] = result[level_cols].all(axis=1)
    return result


# --- 3. Distribution Comparisons ---
def samples_at_rate(samples_df, rate):
    idx = (samples_df['rate'] - rate).abs().idxmin()
    nearest = samples_df.loc[idx, 'rate']
    return samples_df[samples_df['rate'] == nearest]

def compare_distributions(samples_df, rate, a, b):
    subset = samples_at_rate(samples_df, rate)
    ks = scipy.stats.ks_2samp(subset[a], subset[b])
    return {
        'rate': float(subset['rate'].iloc[0]),
        'ks_statistic': float(ks.statistic),
        'ks_pvalue': float(ks.pvalue),
        'median_difference': float(subset[a].median() - subset[b].median()),
    }

def rate_trend(percentile_df, variable=SWITCHED_VARIABLE, level=50):
    rho, pvalue = scipy.stats.spearmanr(percentile_df['rate'], percentile_df[percentile_column(variable, level)])
    return float(rho), float(pvalue)


# --- 4. Visualization ---
def plot_importance_distributions(samples_df, path):
    long_df = samples_df.melt(id_vars=['rate'], value_vars=CANDIDATE_FEATURES,
                              var_name='variable', value_name='importance')
    long_df['rate'] = long_df['rate'].round(2)
    fig, ax = plt.subplots(figsize=(16, 8))
    sns.boxplot(data=long_df, x='rate', y='importance', hue='variable', ax=ax,
                palette={'x1': 'tab:green', 'x2': 'tab:blue', 'x3': 'tab:gray'},
                fliersize=2)
    ax.set_xlabel("Rate")
    ax.set_ylabel("Importance")
    ax.set_title("Importance distributions across repeated fits")
    ax.grid(True, alpha=0.3, axis='y')
    ax.legend(fontsize=BASE_FONT_SIZE * 0.7)
    plt.tight_layout()
    plt.savefig(path)
    plt.close(fig)
    plt.close('all')
    return path


# --- Main Analysis ---
def run_analysis(summary, results_folder=RESULTS_FOLDER):
    metrics_table_records = []
    summary.write("--- Provenance & Runtime Info ---")
    summary.write(f"Start timestamp: {time.strftime('%Y-%m-%d %H:%M:%S')}")
    summary.write(f"Python: {platform.python_version()}")
    summary.write(f"numpy: {np.__version__}, pandas: {pd.__version__}, scipy: {scipy.__version__}, seaborn: {sns.__version__}")

    loaded = load_results(results_folder, summary)
    if loaded is None:
        return False
    samples_df, percentile_df, config = loaded
    percentiles = config.get('percentiles', list(PERCENTILES))

    summary.write("\n--- 2. Structural Checks ---")
    counts_ok = check_sweep_counts(samples_df, len(config['rate_values']), config['num_repeats'])
    summary.write(f"Sweep counts ({len(config['rate_values'])} rates x {config['num_repeats']} repeats): {'PASS' if counts_ok else 'FAIL'}")
    metrics_table_records.append(('counts', 'pass', counts_ok))

    ordering_ok = check_percentile_ordering(percentile_df, percentiles)
    summary.write(f"Percentile ordering p05 <= p50 <= p95: {'PASS' if ordering_ok else 'FAIL'}")
    metrics_table_records.append(('ordering', 'pass', ordering_ok))

    dominance = check_dominance(percentile_df, percentiles=percentiles)
    summary.write(f"Dominance of {STRONG_VARIABLE} over {WEAK_VARIABLE} per rate:\n" + dominance.to_string(index=False))
    metrics_table_records.append(('dominance', 'rates_fully_dominated', f"{int(dominance['all'].sum())}/{len(dominance)}"))

    summary.write("\n--- 3. Endpoint Comparisons ---")
    low_rate = compare_distributions(samples_df, 0.0, SWITCHED_VARIABLE, WEAK_VARIABLE)
    high_rate = compare_distributions(samples_df, 1.0, SWITCHED_VARIABLE, STRONG_VARIABLE)
    for label, comparison in ((f"{SWITCHED_VARIABLE} vs {WEAK_VARIABLE}", low_rate),
                              (f"{SWITCHED_VARIABLE} vs {STRONG_VARIABLE}", high_rate)):
        resembles = comparison['ks_pvalue'] >= KS_ALPHA
        summary.write(f"  rate={comparison['rate']:.2f} {label}: KS={comparison['ks_statistic']:.3f}, "
                      f"p={comparison['ks_pvalue']:.3g}, median diff={comparison['median_difference']:.4f} "
                      f"-> {'indistinguishable' if resembles else 'distinguishable'} at alpha={KS_ALPHA}")
        metrics_table_records.append((f"rate={comparison['rate']:.2f} {label}", 'ks_pvalue', f"{comparison['ks_pvalue']:.3g}"))

    rho, rho_p = rate_trend(percentile_df)
    summary.write(f"  Spearman rho of {SWITCHED_VARIABLE} median vs rate: {rho:.3f} (p={rho_p:.3g})")
    metrics_table_records.append(('trend', 'spearman_rho', f"{rho:.3f}"))

    summary.write("\n--- 4. Visualization ---")
    analysis_folder = os.path.join(results_folder, ANALYSIS_SUBFOLDER)
    os.makedirs(analysis_folder, exist_ok=True)
    plot_path = plot_importance_distributions(samples_df, os.path.join(analysis_folder, DISTRIBUTION_PLOT_NAME))
    summary.write(f"Distribution plot saved to {plot_path}")

    summary.write("\n--- Numerical Summary Table ---")
    summary.write("CHECK, METRIC, VALUE")
    for check, metric, val in metrics_table_records:
        summary.write(f"{check}, {metric}, {val}")

    return counts_ok and ordering_ok


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Sanity checks over a finished importance sweep.")
    p.add_argument("--results-folder", default=RESULTS_FOLDER)
    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    summary_path = os.path.join(args.results_folder, ANALYSIS_SUBFOLDER, ANALYSIS_SUMMARY_NAME)
    with SummaryWriter(summary_path, print_to_console=True) as summary:
        try:
            passed = run_analysis(summary, args.results_folder)
        except Exception as e:
            summary.write(f"\n!!!!!!!! AN UNHANDLED ERROR OCCURRED !!!!!!!!")
            summary.write(f"Error Type: {type(e).__name__}")
            summary.write(f"Error Message: {str(e)}")
            return 1
    return 0 if passed else 1


# --- Main Analysis Execution ---
if __name__ == "__main__":
    sys.exit(main())
