#!/usr/bin/env python3
"""
Script 03: Differential expression between polarization states.

This script:
1. Loads the filtered snapshot
2. Fits voom / limma (or DESeq2) with design ~ polarization + series
3. Writes one result table and volcano plot per contrast
4. Compares up- and down-regulated gene sets across contrasts
5. Draws a heatmap of the differentially expressed genes

Usage:
    python scripts/03_differential_expression.py [--data-dir DATA_DIR]
        [--method voom|deseq2] [--contrasts M1-M0 M2-M0 M1-M2]
"""

import os
import sys
import argparse

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.data_loading import load_snapshot
from macrophage_rnaseq.limma_voom import run_voom_limma
from macrophage_rnaseq.deseq2_utils import run_full_dgea
from macrophage_rnaseq.preprocessing import cpm
from macrophage_rnaseq.significance import (
    canonical_gene_id,
    compare_contrasts,
    count_calls,
    intersection_sizes,
    overlap_table,
    partition_genes,
)
from macrophage_rnaseq.utils import de_table_path, store_results, write_de_table, write_gene_sets
from macrophage_rnaseq.visualization import (
    plot_gene_heatmap,
    plot_mean_variance,
    plot_overlap,
    plot_volcano,
)
from macrophage_rnaseq.config import (
    CONTRASTS, EBAYES_TREND, FIGURES_DIR, GROUP_COL, OVERLAP_TEMPLATE,
    RESULTS_DIR, SIG_LFC, SIG_PADJ, SNAPSHOT_FILENAME, VOLCANO_TEMPLATE,
)


def run_differential_expression(counts, metadata, contrasts, method='voom', trend=EBAYES_TREND):
    """Fit the chosen method and return {'tables': ..., ...}."""
    if method == 'deseq2':
        return run_full_dgea(counts, metadata, contrasts)
    return run_voom_limma(counts, metadata, contrasts, trend=trend)


def report_contrasts(tables, results_dir, figures_dir, padj_thresh, lfc_thresh):
    """Write tables and volcano plots; return the per-contrast partitions."""
    partitions = {}

    for name, table in tables.items():
        write_de_table(table, de_table_path(results_dir, name))

        calls = count_calls(table, padj_thresh, lfc_thresh)
        print(f"  {name}: {calls['up']} up, {calls['down']} down, {calls['ns']} ns")

        plot_volcano(table, title=name, padj_thresh=padj_thresh, lfc_thresh=lfc_thresh,
                     path=os.path.join(figures_dir, VOLCANO_TEMPLATE.format(contrast=name)))

        partitions[name] = partition_genes(table, padj_thresh, lfc_thresh)

    return partitions


def report_overlaps(partitions, results_dir, figures_dir):
    """Write overlap tables, gene lists and Venn diagrams per direction."""
    overlaps = overlap_table(partitions)
    overlaps.to_csv(os.path.join(results_dir, 'de_overlaps.csv'), index=False)

    for direction in ('up', 'down'):
        named_sets = {name: part[direction] for name, part in partitions.items()}

        sizes = intersection_sizes(named_sets)
        for combo, size in sizes.items():
            if len(combo) > 1:
                print(f"  {direction} {' & '.join(combo)}: {size}")

        write_gene_sets(named_sets, os.path.join(results_dir, f'{direction}_genes.txt'))
        plot_overlap(named_sets, title=f'{direction}-regulated genes',
                     path=os.path.join(figures_dir, OVERLAP_TEMPLATE.format(direction=direction)))

        shared = compare_contrasts(partitions, direction).get(tuple(partitions), set())
        print(f"  {direction} in every contrast: {len(shared)}")

    return overlaps


def main():
    parser = argparse.ArgumentParser(description='Differential expression analysis')
    parser.add_argument(
        '--data-dir',
        type=str,
        default=RESULTS_DIR,
        help='Directory containing the preprocessing snapshot'
    )
    parser.add_argument(
        '--method',
        type=str,
        default='voom',
        choices=['voom', 'deseq2'],
        help='Differential expression method'
    )
    parser.add_argument(
        '--contrasts',
        type=str,
        nargs='+',
        default=CONTRASTS,
        help="Contrasts as 'A-B'"
    )
    parser.add_argument(
        '--padj',
        type=float,
        default=SIG_PADJ,
        help='Adjusted p-value cutoff'
    )
    parser.add_argument(
        '--lfc',
        type=float,
        default=SIG_LFC,
        help='Absolute log2 fold-change cutoff'
    )
    parser.add_argument(
        '--trend',
        action='store_true',
        default=EBAYES_TREND,
        help='Use an intensity-dependent eBayes prior'
    )
    args = parser.parse_args()

    results_dir = os.path.join(args.data_dir, 'de', args.method)
    figures_dir = os.path.join(results_dir, FIGURES_DIR)
    os.makedirs(figures_dir, exist_ok=True)

    print("=" * 60)
    print(f"Differential Expression ({args.method})")
    print("=" * 60)

    # Load data
    print("\n[1/4] Loading snapshot...")
    snapshot = load_snapshot(os.path.join(args.data_dir, SNAPSHOT_FILENAME))
    counts = snapshot['counts']
    metadata = snapshot['metadata']
    print(f"  Data: {counts.shape[0]} genes x {counts.shape[1]} samples")

    # Fit
    print("\n[2/4] Fitting model...")
    de = run_differential_expression(counts, metadata, args.contrasts,
                                     method=args.method, trend=args.trend)
    if 'voom' in de:
        plot_mean_variance(de['voom'], path=os.path.join(figures_dir, 'voom_mean_variance.png'))

    # Per-contrast results
    print("\n[3/4] Writing result tables...")
    partitions = report_contrasts(de['tables'], results_dir, figures_dir, args.padj, args.lfc)

    # Overlaps
    print("\n[4/4] Comparing contrasts...")
    report_overlaps(partitions, results_dir, figures_dir)

    de_genes = sorted(set().union(*(p['up'] | p['down'] for p in partitions.values())))
    print(f"  {len(de_genes)} genes called in at least one contrast")
    logcpm = cpm(counts, log=True)
    logcpm.index = [canonical_gene_id(g) for g in logcpm.index]
    plot_gene_heatmap(logcpm, metadata[GROUP_COL], gene_list=de_genes,
                      path=os.path.join(figures_dir, 'de_gene_heatmap.png'))

    store_results({
        'method': args.method,
        'tables': de['tables'],
        'partitions': partitions,
        'padj': args.padj,
        'lfc': args.lfc,
    }, results_dir, name='de_results')

    print("\n" + "=" * 60)
    print("Differential expression complete!")
    print(f"Results saved to: {results_dir}")
    print("=" * 60)


if __name__ == '__main__':
    main()
