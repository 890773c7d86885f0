#!/usr/bin/env python3
"""
Script 05: Run GO enrichment of differentially expressed genes.

This script:
1. Loads the differential expression results
2. Recomputes up / down gene sets per contrast
3. Runs Gene Ontology enrichment (Enrichr) on each set
4. Saves enrichment tables, a summary and bar charts

Usage:
    python scripts/05_run_enrichment.py [--data-dir DATA_DIR] [--method voom]

Note: Enrichr is queried over the network.
"""

import os
import sys
import argparse

import pandas as pd

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.enrichment import run_enrichment, summarize_enrichment
from macrophage_rnaseq.feature_selection import get_symbol_from_id
from macrophage_rnaseq.significance import get_sig_genes
from macrophage_rnaseq.utils import load_results
from macrophage_rnaseq.visualization import plot_enrichment
from macrophage_rnaseq.config import (
    FIGURES_DIR, GO_GENE_SETS, ORGANISM, RESULTS_DIR, SIG_LFC, SIG_PADJ,
)


def load_de_results(data_dir, method):
    """Load the stored differential expression results."""
    results_dir = os.path.join(data_dir, 'de', method)
    try:
        return load_results(results_dir, name='de_results'), results_dir
    except FileNotFoundError as e:
        raise FileNotFoundError(f"{e}\nRun 03_differential_expression.py first.") from e


def main():
    parser = argparse.ArgumentParser(description='Run GO enrichment')
    parser.add_argument(
        '--data-dir',
        type=str,
        default=RESULTS_DIR,
        help='Directory containing the pipeline results'
    )
    parser.add_argument(
        '--method',
        type=str,
        default='voom',
        choices=['voom', 'deseq2'],
        help='Which differential expression results to use'
    )
    parser.add_argument(
        '--gene-sets',
        type=str,
        nargs='+',
        default=GO_GENE_SETS,
        help='Enrichr libraries'
    )
    args = parser.parse_args()

    print("=" * 60)
    print("GO Enrichment")
    print("=" * 60)

    print("\n[1/2] Loading differential expression results...")
    de, results_dir = load_de_results(args.data_dir, args.method)
    padj = de.get('padj', SIG_PADJ)
    lfc = de.get('lfc', SIG_LFC)

    enrichment_dir = os.path.join(results_dir, 'enrichment')
    figures_dir = os.path.join(enrichment_dir, FIGURES_DIR)
    os.makedirs(figures_dir, exist_ok=True)

    print("\n[2/2] Running enrichment analysis...")
    summaries = []
    for name, table in de['tables'].items():
        for direction in ('up', 'down'):
            genes = list(get_sig_genes(table, padj, lfc, direction=direction).index)
            genes = get_symbol_from_id(genes, species=ORGANISM)
            print(f"\n  {name} {direction}: {len(genes)} genes")

            results = run_enrichment(
                genes,
                gene_sets=args.gene_sets,
                organism=ORGANISM,
                output_dir=enrichment_dir,
                prefix=f'{name}_{direction}_',
            )
            if not results:
                continue

            summary = summarize_enrichment(results)
            summary.insert(0, 'direction', direction)
            summary.insert(0, 'contrast', name)
            summaries.append(summary)

            for library, df in results.items():
                if len(df):
                    plot_enrichment(
                        df, title=f'{name} {direction}: {library}',
                        path=os.path.join(figures_dir, f'{name}_{direction}_{library}.png'),
                    )

    if summaries:
        pd.concat(summaries, ignore_index=True).to_csv(
            os.path.join(enrichment_dir, 'enrichment_summary.csv'), index=False
        )
        print(f"\n  Enrichment results saved to: {enrichment_dir}")
    else:
        print("\n  No enrichment results generated.")

    print("\n" + "=" * 60)
    print("Enrichment analysis complete!")
    print("=" * 60)


if __name__ == '__main__':
    main()
