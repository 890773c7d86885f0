#!/usr/bin/env python3
"""
Script 06: Pathway activity with GSVA.

This script:
1. Loads the filtered snapshot
2. Computes log-CPM expression indexed by gene symbol
3. Scores every sample on the hallmark gene sets (GSVA)
4. Tests pathway scores between polarization states with limma
5. Saves score matrix, result tables and a heatmap

Usage:
    python scripts/06_run_gsva.py [--data-dir DATA_DIR] [--gene-sets LIBRARY]
"""

import os
import sys
import argparse

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.data_loading import load_snapshot
from macrophage_rnaseq.enrichment import compare_gsva_scores, run_gsva
from macrophage_rnaseq.feature_selection import get_symbol_from_id
from macrophage_rnaseq.preprocessing import calc_norm_factors, cpm
from macrophage_rnaseq.utils import write_de_table
from macrophage_rnaseq.visualization import plot_gene_heatmap
from macrophage_rnaseq.config import (
    CONTRASTS, FIGURES_DIR, GROUP_COL, GSVA_GENE_SETS, ORGANISM,
    RESULTS_DIR, SNAPSHOT_FILENAME,
)


def symbol_expression(counts):
    """TMM-normalized log-CPM, one row per gene symbol."""
    lib_size = counts.sum(axis=0) * calc_norm_factors(counts)
    logcpm = cpm(counts, lib_size=lib_size, log=True)
    logcpm.index = get_symbol_from_id(list(logcpm.index), species=ORGANISM)
    return logcpm.groupby(level=0).mean()


def main():
    parser = argparse.ArgumentParser(description='GSVA pathway activity')
    parser.add_argument(
        '--data-dir',
        type=str,
        default=RESULTS_DIR,
        help='Directory containing the preprocessing snapshot'
    )
    parser.add_argument(
        '--gene-sets',
        type=str,
        default=GSVA_GENE_SETS,
        help='Enrichr library name or GMT file'
    )
    parser.add_argument(
        '--contrasts',
        type=str,
        nargs='+',
        default=CONTRASTS,
        help="Contrasts as 'A-B'"
    )
    args = parser.parse_args()

    output_dir = os.path.join(args.data_dir, 'gsva')
    figures_dir = os.path.join(output_dir, FIGURES_DIR)
    os.makedirs(figures_dir, exist_ok=True)

    print("=" * 60)
    print("GSVA Pathway Activity")
    print("=" * 60)

    print("\n[1/3] Loading snapshot...")
    snapshot = load_snapshot(os.path.join(args.data_dir, SNAPSHOT_FILENAME))
    metadata = snapshot['metadata']
    expression = symbol_expression(snapshot['counts'])
    print(f"  Expression: {expression.shape[0]} genes x {expression.shape[1]} samples")

    print("\n[2/3] Scoring gene sets...")
    scores = run_gsva(expression, args.gene_sets)
    scores.to_csv(os.path.join(output_dir, 'gsva_scores.csv'))

    print("\n[3/3] Testing pathway activity...")
    tables = compare_gsva_scores(scores, metadata, args.contrasts)
    for name, table in tables.items():
        write_de_table(table, os.path.join(output_dir, f'{name}_gsva_results.csv'))

    plot_gene_heatmap(scores, metadata[GROUP_COL], n_genes=50, cmap='vlag',
                      path=os.path.join(figures_dir, 'gsva_heatmap.png'))

    print("\n" + "=" * 60)
    print("GSVA complete!")
    print(f"Results saved to: {output_dir}")
    print("=" * 60)


if __name__ == '__main__':
    main()
