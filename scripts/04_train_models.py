#!/usr/bin/env python3
"""
Script 04: Train classifiers that separate the polarization states.

This script:
1. Loads the filtered snapshot
2. Keeps the most informative genes (mutual information)
3. Trains a random forest and an L1 logistic regression per seed
4. Ranks genes by importance and counts them across seeds
5. Saves model results, performance metrics and consensus genes

Usage:
    python scripts/04_train_models.py [--seeds 2 4 8] [--data-dir DATA_DIR]
"""

import os
import sys
import argparse

import pandas as pd

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.data_loading import load_snapshot
from macrophage_rnaseq.feature_selection import filter_informative_genes
from macrophage_rnaseq.models import (
    run_random_forest,
    run_logistic_regression,
    rank_features_across_seeds,
)
from macrophage_rnaseq.preprocessing import full_transform
from macrophage_rnaseq.utils import store_results, write_gene_sets
from macrophage_rnaseq.visualization import plot_feature_importance
from macrophage_rnaseq.config import (
    CLF_PERF, FIGURES_DIR, GROUP_COL, K_INFORMATIVE, MODELS, N_FOLDS,
    N_GENES, RESULTS_DIR, SEEDS, SNAPSHOT_FILENAME, TEST_SIZE, X_LIST,
)


MODEL_FUNCS = {
    'rf': run_random_forest,
    'logistic': run_logistic_regression,
}


def train_all_models(X_orig, y, seed, models=MODELS):
    """
    Train every configured classifier on the data.

    Args:
        X_orig (pd.DataFrame): Count matrix (samples x genes)
        y (np.ndarray): Polarization label per sample
        seed (int): Random seed
        models (list): Model keys from MODEL_FUNCS

    Returns:
        dict: Results for all models
    """
    results = {
        'genes': {},
        'estimators': {},
        'perfs': {},
        'importances': {},
    }

    # Gene filtering uses log-CPM, training transforms the raw counts itself
    X_log = pd.DataFrame(full_transform(X_orig, ['cpm', 'log']),
                         index=X_orig.index, columns=X_orig.columns)
    informative = filter_informative_genes(X_log, y, K_INFORMATIVE, seed).columns
    X_train = X_orig[informative]
    print(f"  Informative genes: {len(informative)}")

    for model_name in models:
        print(f"\n  Training {model_name.upper()}...")

        try:
            genes, estimator, perfs, importances = MODEL_FUNCS[model_name](
                y=y,
                X_orig=X_train,
                n_genes=N_GENES,
                score=CLF_PERF,
                xform_list=X_LIST,
                cv=N_FOLDS,
                seed=seed,
                test_size=TEST_SIZE,
            )

            results['genes'][model_name] = genes
            results['estimators'][model_name] = estimator
            results['perfs'][model_name] = perfs
            results['importances'][model_name] = importances

        except ValueError as e:
            print(f"    Error training {model_name}: {e}")
            results['genes'][model_name] = {}
            results['perfs'][model_name] = {'error': str(e)}

    return results


def save_performance(all_results, output_dir):
    """Write one row of metrics per seed and model."""
    perf_rows = []
    for seed, results in all_results.items():
        for model, perfs in results['perfs'].items():
            row = {'seed': seed, 'model': model}
            row.update(perfs)
            perf_rows.append(row)

    perf_df = pd.DataFrame(perf_rows)
    perf_df.to_csv(os.path.join(output_dir, 'performance_metrics.csv'), index=False)
    return perf_df


def main():
    parser = argparse.ArgumentParser(description='Train polarization classifiers')
    parser.add_argument(
        '--seeds',
        type=int,
        nargs='+',
        default=SEEDS,
        help='Random seeds'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        default=RESULTS_DIR,
        help='Directory containing the preprocessing snapshot'
    )
    parser.add_argument(
        '--min-perf',
        type=float,
        default=0.5,
        help='Ignore model runs with a lower test balanced accuracy'
    )
    args = parser.parse_args()

    output_dir = os.path.join(args.data_dir, 'models')
    figures_dir = os.path.join(output_dir, FIGURES_DIR)
    os.makedirs(figures_dir, exist_ok=True)

    print("=" * 60)
    print(f"Model Training ({len(args.seeds)} seeds)")
    print("=" * 60)

    # Load data
    print("\n[1/3] Loading snapshot...")
    snapshot = load_snapshot(os.path.join(args.data_dir, SNAPSHOT_FILENAME))
    X_orig = snapshot['counts'].T
    y = snapshot['metadata'].loc[X_orig.index, GROUP_COL].astype(str).values
    print(f"  X shape: {X_orig.shape}")
    print(f"  Classes: {pd.Series(y).value_counts().to_dict()}")

    # Train per seed
    print("\n[2/3] Training models...")
    all_results = {}
    for seed in args.seeds:
        print(f"\n{'#' * 60}")
        print(f"# Seed {seed}")
        print(f"{'#' * 60}")
        all_results[seed] = train_all_models(X_orig, y, seed)

        rf_importances = all_results[seed]['importances'].get('rf')
        if rf_importances is not None:
            plot_feature_importance(
                rf_importances, column='impurity', n=N_GENES,
                title=f'Random forest (seed {seed})',
                path=os.path.join(figures_dir, f'rf_importance_seed{seed}.png'),
            )

    # Aggregate
    print("\n[3/3] Ranking genes across seeds...")
    consensus = rank_features_across_seeds(all_results, key='pfi', min_perf=args.min_perf)
    print(f"  Frequent genes (>50% seeds): {len(consensus['frequent'])}")
    print(f"  Robust genes (>75% seeds): {len(consensus['robust'])}")

    perf_df = save_performance(all_results, output_dir)
    print(perf_df.groupby('model').mean(numeric_only=True).round(3))

    store_results({'seeds': all_results, 'consensus': consensus}, output_dir, name='model_results')
    write_gene_sets(
        {'frequent': consensus['frequent'], 'robust': consensus['robust']},
        os.path.join(output_dir, 'consensus_genes.txt'),
    )

    print("\n" + "=" * 60)
    print("Training complete!")
    print("=" * 60)


if __name__ == '__main__':
    main()
