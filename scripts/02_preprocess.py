#!/usr/bin/env python3
"""
Script 02: Preprocess RNA-seq data.

This script:
1. Builds the count matrix and sample metadata from the sample sheet
2. Validates polarization and batch labels
3. Applies gene filtering (expression level, optional biotype)
4. Removes samples that do not cluster with their polarization group
5. Saves QC plots and the filtered snapshot used by later stages

Usage:
    python scripts/02_preprocess.py [--sample-sheet PATH] [--data-dir DATA_DIR]
        [--output-dir OUTPUT_DIR] [--biotype non-coding] [--no-sample-filter]
"""

import os
import sys
import argparse

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.data_loading import (
    read_sample_sheet,
    build_count_matrix,
    build_sample_metadata,
    validate_sample_metadata,
    save_snapshot,
)
from macrophage_rnaseq.preprocessing import (
    cpm,
    filter_by_expr,
    filter_genes,
    filter_samples_by_clustering,
)
from macrophage_rnaseq.visualization import plot_pca, plot_sample_dendrogram
from macrophage_rnaseq.config import (
    BIOTYPE_FILTER, CLUSTER_MAX_DISTANCE, CLUSTER_N_GENES, DATA_DIR,
    FIGURES_DIR, FILTER_MIN_COUNT, FILTER_MIN_TOTAL_COUNT, GROUP_COL,
    RESULTS_DIR, SAMPLE_SHEET, SNAPSHOT_FILENAME,
)


def preprocess(sample_sheet_path, data_dir, output_dir, biotype=None,
               sample_filter=True, max_distance=CLUSTER_MAX_DISTANCE):
    """
    Run the preprocessing pipeline.

    Args:
        sample_sheet_path (str): Sample sheet CSV
        data_dir (str): Directory holding the count tables
        output_dir (str): Directory for the snapshot and reports
        biotype (str): Biotype filter passed to filter_genes (None to skip)
        sample_filter (bool): Remove outlier samples by clustering
        max_distance (float): Dendrogram cut height for sample filtering

    Returns:
        dict: Snapshot contents
    """
    figures_dir = os.path.join(output_dir, FIGURES_DIR)
    os.makedirs(figures_dir, exist_ok=True)

    # Step 1: Build count matrix
    print("\n[1/5] Building count matrix...")
    sheet = read_sample_sheet(sample_sheet_path)
    counts = build_count_matrix(sheet, data_dir)
    metadata = validate_sample_metadata(counts, build_sample_metadata(sheet))
    print(f"  Samples per state: {metadata[GROUP_COL].value_counts().to_dict()}")
    n_raw = counts.shape[0]

    # Step 2: Expression filter
    print("\n[2/5] Filtering lowly expressed genes...")
    counts = filter_by_expr(counts, metadata[GROUP_COL],
                            min_count=FILTER_MIN_COUNT,
                            min_total_count=FILTER_MIN_TOTAL_COUNT)
    print(f"  Genes: {n_raw} -> {counts.shape[0]}")

    # Step 3: Biotype filter
    print("\n[3/5] Filtering by biotype...")
    if biotype:
        n_before = counts.shape[0]
        counts = filter_genes(counts, drop=biotype)
        print(f"  Genes: {n_before} -> {counts.shape[0]}")
    else:
        print("  Skipped")

    # Step 4: Sample clustering
    print("\n[4/5] Checking sample clustering...")
    logcpm = cpm(counts, log=True)
    plot_sample_dendrogram(
        logcpm, metadata[GROUP_COL],
        path=os.path.join(figures_dir, 'sample_dendrogram_before.png'),
        n_genes=CLUSTER_N_GENES, max_distance=max_distance,
    )

    kept, report = filter_samples_by_clustering(
        logcpm, metadata[GROUP_COL],
        n_genes=CLUSTER_N_GENES, max_distance=max_distance,
    )
    report.to_csv(os.path.join(output_dir, 'sample_clustering_report.csv'))

    if sample_filter:
        counts = counts[kept]
        metadata = metadata.loc[kept]
        # Genes can fall below the expression filter once samples are dropped
        counts = filter_by_expr(counts, metadata[GROUP_COL],
                                min_count=FILTER_MIN_COUNT,
                                min_total_count=FILTER_MIN_TOTAL_COUNT)
        logcpm = cpm(counts, log=True)
    else:
        print("  Sample filter disabled, keeping all samples")

    # Step 5: QC plots and snapshot
    print("\n[5/5] Saving snapshot...")
    plot_pca(logcpm, metadata[GROUP_COL], n_genes=CLUSTER_N_GENES,
             path=os.path.join(figures_dir, 'pca_filtered.png'))
    plot_sample_dendrogram(
        logcpm, metadata[GROUP_COL],
        path=os.path.join(figures_dir, 'sample_dendrogram_filtered.png'),
        n_genes=CLUSTER_N_GENES, max_distance=max_distance,
    )

    snapshot = {
        'counts': counts,
        'metadata': metadata,
        'clustering_report': report,
        'n_genes_raw': n_raw,
    }
    save_snapshot(os.path.join(output_dir, SNAPSHOT_FILENAME), **snapshot)

    print(f"\n  Final data: {counts.shape[0]} genes x {counts.shape[1]} samples")
    return snapshot


def main():
    parser = argparse.ArgumentParser(description='Preprocess RNA-seq data')
    parser.add_argument(
        '--sample-sheet',
        type=str,
        default=SAMPLE_SHEET,
        help='Sample sheet CSV'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        default=DATA_DIR,
        help='Directory containing the downloaded count tables'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default=RESULTS_DIR,
        help='Output directory for the snapshot'
    )
    parser.add_argument(
        '--biotype',
        type=str,
        default=BIOTYPE_FILTER,
        choices=['non-coding', 'coding'],
        help="Drop 'non-coding' or 'coding' genes (BioMart lookup)"
    )
    parser.add_argument(
        '--max-distance',
        type=float,
        default=CLUSTER_MAX_DISTANCE,
        help='Correlation distance at which the sample dendrogram is cut'
    )
    parser.add_argument(
        '--no-sample-filter',
        action='store_true',
        help='Keep samples that do not cluster with their group'
    )
    args = parser.parse_args()

    print("=" * 60)
    print("Preprocessing")
    print("=" * 60)

    preprocess(
        args.sample_sheet,
        args.data_dir,
        args.output_dir,
        biotype=args.biotype,
        sample_filter=not args.no_sample_filter,
        max_distance=args.max_distance,
    )

    print("\n" + "=" * 60)
    print("Preprocessing complete!")
    print("=" * 60)


if __name__ == '__main__':
    main()
