"""
Pathway enrichment and pathway activity scoring.

- GO over-representation of gene lists through Enrichr (gseapy)
- Per-sample GSVA pathway scores (gseapy) and their differential
  activity between polarization states with the limma moderated t-test
"""

import os

import gseapy as gp
import numpy as np
import pandas as pd

from .config import (
    BATCH_COL,
    CONTRASTS,
    GO_GENE_SETS,
    GROUP_COL,
    MIN_ENRICHMENT_GENES,
    ORGANISM,
    SIG_PADJ,
)
from .limma_voom import build_design_matrix, contrasts_fit, ebayes, lm_fit, make_contrast_matrix, top_table


def run_enrichment(gene_list, gene_sets=None, organism=ORGANISM, output_dir=None, prefix=''):
    """
    Run GO enrichment of a gene list with Enrichr.

    Each library is queried on its own; a library that fails (network,
    unknown name) is reported and skipped.

    Args:
        gene_list (list): Gene symbols
        gene_sets (list): Enrichr library names
        organism (str): 'human' or 'mouse'
        output_dir (str): Directory to save per-library CSVs (optional)
        prefix (str): Prefix for output files

    Returns:
        dict: {library: results DataFrame}
    """
    if gene_sets is None:
        gene_sets = GO_GENE_SETS

    gene_list = sorted(set(gene_list))
    if len(gene_list) < MIN_ENRICHMENT_GENES:
        print(f"  Warning: Only {len(gene_list)} genes, skipping enrichment")
        return {}

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    results = {}
    for library in gene_sets:
        print(f"  Running {library} enrichment...")
        try:
            enr = gp.enrichr(
                gene_list=gene_list,
                gene_sets=[library],
                organism=organism,
                outdir=None,
            )
        except Exception as e:
            print(f"    {library} failed: {e}")
            continue

        results[library] = enr.results

        if output_dir:
            enr.results.to_csv(
                os.path.join(output_dir, f'{prefix}{library}.csv'),
                index=False
            )

    return results


def summarize_enrichment(results, top_n=10):
    """
    Print and collect the top enriched terms of each library.

    Args:
        results (dict): Output of run_enrichment
        top_n (int): Terms per library

    Returns:
        pd.DataFrame: library, Term, Adjusted P-value, Overlap
    """
    rows = []
    for library, df in results.items():
        if df is None or len(df) == 0 or 'Adjusted P-value' not in df.columns:
            continue

        print(f"\n  Top {top_n} {library} terms:")
        df_sorted = df.sort_values('Adjusted P-value', kind='mergesort').head(top_n)
        for _, row in df_sorted.iterrows():
            term = str(row.get('Term', 'Unknown'))[:50]
            pval = row['Adjusted P-value']
            print(f"    {term}: p={pval:.2e}")
            rows.append({
                'library': library,
                'Term': row.get('Term'),
                'Adjusted P-value': pval,
                'Overlap': row.get('Overlap'),
            })

    return pd.DataFrame(rows, columns=['library', 'Term', 'Adjusted P-value', 'Overlap'])


def run_gsva(expression, gene_sets, min_size=10, max_size=500, seed=0):
    """
    Per-sample pathway activity scores with GSVA.

    Args:
        expression (pd.DataFrame): log-scale expression (genes x samples),
            indexed by gene symbol
        gene_sets (str or dict): Enrichr library name, GMT path or
            {set name: genes}
        min_size (int): Smallest gene set scored
        max_size (int): Largest gene set scored
        seed (int): Random seed

    Returns:
        pd.DataFrame: Scores (gene sets x samples)
    """
    res = gp.gsva(
        data=expression,
        gene_sets=gene_sets,
        outdir=None,
        min_size=min_size,
        max_size=max_size,
        kcdf='Gaussian',
        seed=seed,
        verbose=False,
    )

    scores = res.res2d.pivot(index='Term', columns='Name', values='ES').astype(float)
    scores = scores.reindex(columns=[c for c in expression.columns if c in scores.columns])
    scores.index.name = 'gene_set'
    scores.columns.name = None
    print(f"  GSVA: {scores.shape[0]} gene sets scored in {scores.shape[1]} samples")

    return scores


def compare_gsva_scores(scores, metadata, contrasts=None, group_col=GROUP_COL,
                        batch_col=BATCH_COL):
    """
    Differential pathway activity between polarization states.

    The GSVA scores are tested with the same linear model and moderated
    t-statistics as the gene-level analysis, without precision weights.

    Args:
        scores (pd.DataFrame): GSVA scores (gene sets x samples)
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        contrasts (list): Contrasts ('A-B' strings or (A, B) tuples)
        group_col (str): Polarization column
        batch_col (str): Batch column (None for no batch term)

    Returns:
        dict: {contrast name: result table indexed by gene set}
    """
    if contrasts is None:
        contrasts = CONTRASTS

    metadata = metadata.loc[list(scores.columns)]
    design = build_design_matrix(metadata, group_col, batch_col)
    C = make_contrast_matrix(contrasts, design)

    fit = lm_fit(scores, design)
    fit = ebayes(contrasts_fit(fit, C))

    tables = {}
    for name in C.columns:
        table = top_table(fit, name)
        table.index.name = 'gene_set'
        tables[name] = table
        n_sig = int(np.sum(table['padj'] < SIG_PADJ))
        print(f"  {name}: {n_sig} gene sets with padj < {SIG_PADJ}")

    return tables
