# experiment_rf_importance_sweep.py
import numpy as np
import matplotlib.pyplot as plt

# Double all default font sizes across generated figures
BASE_FONT_SIZE = plt.rcParams.get("font.size", 10) * 2
for key in [
    "font.size",
    "axes.labelsize",
    "axes.titlesize",
    "xtick.labelsize",
    "ytick.labelsize",
    "legend.fontsize",
    "figure.titlesize",
]:
    plt.rcParams[key] = BASE_FONT_SIZE
import pandas as pd
import argparse
import time
import os
import sys
import platform
import json # For saving the effective sweep configuration

# Scikit-learn imports
from sklearn.ensemble import RandomForestRegressor
from sklearn.inspection import permutation_importance
import sklearn

# --- Configuration Parameters ---
RESULTS_FOLDER = "results_rf_importance_sweep"
RANDOM_SEED = 123

# Rate sweep parameters
NUM_RATE_STEPS = 11
RATE_VALUES_FOR_SWEEP = np.linspace(0.0, 1.0, NUM_RATE_STEPS)
NUM_REPEATS_PER_RATE = 100
NUM_ROWS = 500

# Forest parameters (classic regression forest: mtry = floor(p/3), nodesize = 5)
N_ESTIMATORS = 500
MAX_FEATURES = 1
MIN_SAMPLES_LEAF = 5

# "impurity" -> feature_importances_, "permutation" -> held-out permutation importance
IMPORTANCE_METHOD = "impurity"
IMPORTANCE_METHODS = ("impurity", "permutation")
PERMUTATION_REPEATS = 5

PERCENTILES = (5, 50, 95)

CANDIDATE_FEATURES = ['x1', 'x2', 'x3']
DECOY_FEATURE = 'x4'
TARGET_VARIABLE = 'y'

SAMPLES_CSV_NAME = "importance_samples.csv"
PERCENTILES_CSV_NAME = "importance_percentiles.csv"
CONFIG_JSON_NAME = "sweep_config.json"
BANDS_PLOT_NAME = "importance_percentile_bands.png"
SUMMARY_FILE_NAME = "experiment_summary.txt"

VARIABLE_COLORS = {'x1': 'tab:green', 'x2': 'tab:blue', 'x3': 'tab:gray'}
VARIABLE_LABELS = {
    'x1': 'x1 (always informative)',
    'x2': 'x2 (informative with prob. rate)',
    'x3': 'x3 (never informative)',
}


class ModelFitError(RuntimeError):
    """Raised when a forest cannot be fitted or yields unusable importances."""

    def __init__(self, rate, repeat, message):
        self.rate = rate
        self.repeat = repeat
        super().__init__(f"Model fit failed at rate={rate}, repeat={repeat}: {message}")


# --- Summary Writer Class ---
class SummaryWriter:
    def __init__(self, filepath, print_to_console=True):
        self.filepath = filepath
        self.print_to_console = print_to_console
        # Ensure the directory exists
        os.makedirs(os.path.dirname(self.filepath) or ".", exist_ok=True)
        self.file_handle = open(self.filepath, 'w', encoding='utf-8')
        if self.print_to_console:
            print(f"Summary will be saved to: {self.filepath}")

    def write(self, message, end="\n", console_only=False):
        if self.print_to_console:
            print(str(message), end=end)
        if not console_only and self.file_handle:
            self.file_handle.write(str(message) + end)
            self.file_handle.flush() # Ensure it's written immediately

    def close(self):
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None
            if self.print_to_console:
                print(f"Summary file closed: {self.filepath}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

def swrite(summary, msg, **kwargs):
    if summary is not None:
        summary.write(msg, **kwargs)
    elif not kwargs.get('console_only'):
        print(msg)


def default_config():
    return {
        'results_folder': RESULTS_FOLDER,
        'seed': RANDOM_SEED,
        'rate_values': [float(r) for r in RATE_VALUES_FOR_SWEEP],
        'num_repeats': NUM_REPEATS_PER_RATE,
        'num_rows': NUM_ROWS,
        'n_estimators': N_ESTIMATORS,
        'max_features': MAX_FEATURES,
        'min_samples_leaf': MIN_SAMPLES_LEAF,
        'importance_method': IMPORTANCE_METHOD,
        'permutation_repeats': PERMUTATION_REPEATS,
        'percentiles': list(PERCENTILES),
    }


# --- Synthetic Data Generation ---
def generate_synthetic_dataset(rate, num_rows, rng):
    """
    Draws one synthetic dataset.

    x1..x4 are independent U(0, 1). A per-row switch ~ Bernoulli(rate) decides
    whether the output uses x2 or the decoy x4:

        y = x1 + switch * x2 + (1 - switch) * x4

    x1 always drives y, x3 never does, and x4 is kept out of the model inputs.
    """
    if not 0.0 <= rate <= 1.0:
        raise ValueError(f"rate must lie in [0, 1], got {rate}")
    if num_rows < 1:
        raise ValueError(f"num_rows must be positive, got {num_rows}")

    uniforms = rng.uniform(0.0, 1.0, size=(num_rows, 4))
    switch = rng.binomial(1, rate, size=num_rows)
    x1, x2, x3, x4 = uniforms.T
    y = x1 + switch * x2 + (1 - switch) * x4

    return pd.DataFrame({
        'x1': x1, 'x2': x2, 'x3': x3, DECOY_FEATURE: x4,
        'switch': switch, TARGET_VARIABLE: y,
    })


# --- Model Fitting & Importance Extraction ---
def build_forest(random_state, n_estimators=N_ESTIMATORS, max_features=MAX_FEATURES,
                 min_samples_leaf=MIN_SAMPLES_LEAF):
    return RandomForestRegressor(
        n_estimators=n_estimators,
        max_features=max_features,
        min_samples_leaf=min_samples_leaf,
        random_state=random_state,
    )

def fit_forest_importance(data, method, rng, rate=None, repeat=None,
                          n_estimators=N_ESTIMATORS, max_features=MAX_FEATURES,
                          min_samples_leaf=MIN_SAMPLES_LEAF,
                          permutation_repeats=PERMUTATION_REPEATS):
    """
    Fits a forest on the candidate inputs and returns their importances
    in CANDIDATE_FEATURES order.

    Permutation importance is scored on a fresh held-out draw at the same rate,
    so `rate` is required for that method.
    """
    if method not in IMPORTANCE_METHODS:
        raise ValueError(f"Unknown importance method '{method}'. Expected one of {IMPORTANCE_METHODS}.")
    if method == "permutation" and rate is None:
        raise ValueError("Permutation importance needs the rate to draw a held-out dataset.")

    X = data[CANDIDATE_FEATURES]
    y = data[TARGET_VARIABLE]
    model = build_forest(int(rng.integers(0, 2**31 - 1)), n_estimators=n_estimators,
                         max_features=max_features, min_samples_leaf=min_samples_leaf)
    try:
        model.fit(X, y)
        if method == "impurity":
            importances = np.asarray(model.feature_importances_, dtype=float)
        else:
            held_out = generate_synthetic_dataset(rate, len(data), rng)
            perm = permutation_importance(
                model, held_out[CANDIDATE_FEATURES], held_out[TARGET_VARIABLE],
                n_repeats=permutation_repeats, random_state=int(rng.integers(0, 2**31 - 1)),
            )
            importances = np.asarray(perm.importances_mean, dtype=float)
    except Exception as e:
        raise ModelFitError(rate, repeat, f"{type(e).__name__}: {e}") from e

    if importances.shape != (len(CANDIDATE_FEATURES),) or not np.all(np.isfinite(importances)):
        raise ModelFitError(rate, repeat, f"unusable importance vector {importances!r}")
    # All-zero importances: no tree made a split, so the forest ignores its inputs
    if not np.any(importances):
        raise ModelFitError(rate, repeat, "degenerate fit, no tree split on any input")
    return importances


# --- Rate Sweep (Monte Carlo double loop) ---
def run_rate_sweep(rate_values, num_repeats, num_rows, method, rng, summary=None,
                   n_estimators=N_ESTIMATORS, max_features=MAX_FEATURES,
                   min_samples_leaf=MIN_SAMPLES_LEAF,
                   permutation_repeats=PERMUTATION_REPEATS):
    if num_repeats < 1:
        raise ValueError(f"num_repeats must be positive, got {num_repeats}")

    sample_records = []
    rate_values = list(rate_values)

    for rate_index, rate in enumerate(rate_values):
        start_time_rate = time.time()
        progress_pct = (rate_index + 1) / len(rate_values) * 100
        swrite(summary, f"Running rate {rate_index+1}/{len(rate_values)} (rate={rate:.2f}, {progress_pct:.1f}%) ",
               end='\r', console_only=True)

        for repeat in range(num_repeats):
            data = generate_synthetic_dataset(rate, num_rows, rng)
            importances = fit_forest_importance(
                data, method, rng, rate=rate, repeat=repeat,
                n_estimators=n_estimators, max_features=max_features,
                min_samples_leaf=min_samples_leaf, permutation_repeats=permutation_repeats,
            )
            sample_records.append({
                'rate_index': rate_index, 'rate': float(rate), 'repeat': repeat,
                **dict(zip(CANDIDATE_FEATURES, importances)),
            })

        swrite(summary, f"  Rate {rate:.2f}: {num_repeats} fits in {time.time() - start_time_rate:.2f}s")

    return pd.DataFrame(sample_records, columns=['rate_index', 'rate', 'repeat'] + CANDIDATE_FEATURES)


# --- Percentile Aggregation ---
def percentile_label(level):
    level = float(level)
    if level.is_integer():
        return f"p{int(level):02d}"
    return f"p{level:g}"

def percentile_column(variable, level):
    return f"{variable}_{percentile_label(level)}"

def summarize_percentiles(samples_df, percentiles=PERCENTILES):
    percentiles = sorted(percentiles)
    summary_records = []
    for rate, group in samples_df.groupby('rate', sort=True):
        record = {'rate': rate}
        for variable in CANDIDATE_FEATURES:
            values = np.percentile(group[variable].to_numpy(), percentiles)
            for level, value in zip(percentiles, values):
                record[percentile_column(variable, level)] = value
        summary_records.append(record)
    return pd.DataFrame(summary_records)


# --- Plotting ---
def plot_percentile_bands(percentile_df, path, percentiles=PERCENTILES, method=IMPORTANCE_METHOD):
    low, mid, high = sorted(percentiles)
    fig, ax = plt.subplots(figsize=(12, 8))
    for variable in CANDIDATE_FEATURES:
        color = VARIABLE_COLORS[variable]
        ax.fill_between(percentile_df['rate'],
                        percentile_df[percentile_column(variable, low)],
                        percentile_df[percentile_column(variable, high)],
                        color=color, alpha=0.2)
        ax.plot(percentile_df['rate'], percentile_df[percentile_column(variable, mid)],
                color=color, marker='o', ms=5, label=VARIABLE_LABELS[variable])
    ax.set_xlabel("Rate (P[output uses x2])")
    ax.set_ylabel(f"Importance ({method})")
    ax.set_title(f"Random-forest importance vs. rate\nMedian with {percentile_label(low)}-{percentile_label(high)} band")
    ax.grid(True, alpha=0.4, linestyle=':')
    ax.legend(fontsize=BASE_FONT_SIZE * 0.7)
    plt.tight_layout()
    plt.savefig(path)
    plt.close(fig)
    plt.close('all')
    return path


# --- Main Experiment ---
def run_experiment(summary, config=None):
    config = {**default_config(), **(config or {})}
    results_folder = config['results_folder']
    os.makedirs(results_folder, exist_ok=True)
    rng = np.random.default_rng(config['seed'])
    start_time_total = time.time()

    summary.write("--- Experiment Run Start ---")
    summary.write(f"Timestamp: {time.strftime('%Y-%m-%d %H:%M:%S')}")
    summary.write("Python and library versions:")
    summary.write(f"  Python: {platform.python_version()}")
    summary.write(f"  numpy: {np.__version__}")
    summary.write(f"  pandas: {pd.__version__}")
    summary.write(f"  scikit-learn: {sklearn.__version__}")

    summary.write("\n--- Experiment Configuration ---")
    for key, value in config.items():
        summary.write(f"  {key}: {value}")
    rate_values = config['rate_values']
    estimated_total_fits = len(rate_values) * config['num_repeats']
    summary.write(f"Rate sweep: {len(rate_values)} points from {min(rate_values):.2f} to {max(rate_values):.2f}")
    summary.write(f"Estimated total forest fits: {estimated_total_fits:,}")
    summary.write("-" * 30)

    summary.write("\n--- 1. Rate Sweep ---")
    samples_df = run_rate_sweep(
        rate_values, config['num_repeats'], config['num_rows'],
        config['importance_method'], rng, summary=summary,
        n_estimators=config['n_estimators'], max_features=config['max_features'],
        min_samples_leaf=config['min_samples_leaf'],
        permutation_repeats=config['permutation_repeats'],
    )
    summary.write(f"Finished all {len(rate_values)} rates ({len(samples_df)} importance samples).")

    summary.write("\n--- 2. Percentile Aggregation ---")
    percentile_df = summarize_percentiles(samples_df, config['percentiles'])
    summary.write(percentile_df.to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    summary.write("\n--- 3. Saving Results ---")
    samples_path = os.path.join(results_folder, SAMPLES_CSV_NAME)
    samples_df.to_csv(samples_path, index=False)
    summary.write(f"Raw importance samples saved to {samples_path}")

    percentiles_path = os.path.join(results_folder, PERCENTILES_CSV_NAME)
    percentile_df.to_csv(percentiles_path, index=False)
    summary.write(f"Percentile table saved to {percentiles_path}")

    config_path = os.path.join(results_folder, CONFIG_JSON_NAME)
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2, default=str) # default=str for np types
    summary.write(f"Sweep configuration saved to {config_path}")

    plot_path = plot_percentile_bands(percentile_df, os.path.join(results_folder, BANDS_PLOT_NAME),
                                      percentiles=config['percentiles'], method=config['importance_method'])
    summary.write(f"Percentile band plot saved to {plot_path}")

    total_time = time.time() - start_time_total
    summary.write(f"\n--- Experiment End ---")
    summary.write(f"Total execution time: {total_time:.2f} seconds ({total_time/60:.2f} minutes).")
    return samples_df, percentile_df


# --- Command Line ---
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Random-forest variable importance across a swept mixing rate.")
    p.add_argument("--results-folder", default=RESULTS_FOLDER)
    p.add_argument("--seed", type=int, default=RANDOM_SEED)
    p.add_argument("--rate-steps", type=int, default=NUM_RATE_STEPS)
    p.add_argument("--repeats", type=int, default=NUM_REPEATS_PER_RATE)
    p.add_argument("--rows", type=int, default=NUM_ROWS)
    p.add_argument("--n-estimators", type=int, default=N_ESTIMATORS)
    p.add_argument("--method", choices=IMPORTANCE_METHODS, default=IMPORTANCE_METHOD)
    return p.parse_args(argv)

def config_from_args(args):
    if args.rate_steps < 2:
        raise ValueError(f"--rate-steps must be at least 2, got {args.rate_steps}")
    return {
        **default_config(),
        'results_folder': args.results_folder,
        'seed': args.seed,
        'rate_values': [float(r) for r in np.linspace(0.0, 1.0, args.rate_steps)],
        'num_repeats': args.repeats,
        'num_rows': args.rows,
        'n_estimators': args.n_estimators,
        'importance_method': args.method,
    }

def main(argv=None):
    args = parse_args(argv)
    summary_filepath = os.path.join(args.results_folder, SUMMARY_FILE_NAME)
    with SummaryWriter(summary_filepath, print_to_console=True) as summary:
        try:
            run_experiment(summary, config_from_args(args))
        except Exception as e:
            summary.write(f"\n!!!!!!!! AN UNHANDLED ERROR OCCURRED !!!!!!!!")
            summary.write(f"Error Type: {type(e).__name__}")
            summary.write(f"Error Message: {str(e)}")
            return 1
    return 0


# --- Main Execution Block ---
if __name__ == "__main__":
    sys.exit(main())
