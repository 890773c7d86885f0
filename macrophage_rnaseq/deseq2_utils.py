"""
DESeq2 utilities for differential gene expression analysis.

This module wraps pydeseq2 as an alternative to the voom / limma
workflow. Results are returned in the same table layout so that the
significance calls and plots downstream do not depend on the method.
"""

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from .config import BATCH_COL, CONTRASTS, GROUP_COL, RESULT_COLUMNS, contrast_name, parse_contrast
from .data_loading import check_count_matrix, check_sample_labels
from .limma_voom import build_design_matrix


def run_deseq2(counts, metadata, group_col=GROUP_COL, batch_col=BATCH_COL):
    """
    Fit DESeq2 with design ~ batch + group.

    The design is built and rank-checked first so that a confounded batch
    fails the same way it does for voom.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        group_col (str): Polarization column
        batch_col (str): Batch column (None for no batch term)

    Returns:
        DeseqDataSet: Fitted DESeq2 dataset object
    """
    columns = [group_col] if batch_col is None else [group_col, batch_col]
    check_sample_labels(metadata, list(counts.columns), columns)
    counts = check_count_matrix(counts)
    metadata = metadata.loc[list(counts.columns), columns].astype(str)

    build_design_matrix(metadata, group_col, batch_col)

    if batch_col is None or metadata[batch_col].nunique() < 2:
        design = f"~{group_col}"
    else:
        design = f"~{batch_col} + {group_col}"

    # pydeseq2 expects samples x genes
    dds = DeseqDataSet(
        counts=counts.T,
        metadata=metadata,
        design=design,
        quiet=True,
    )
    dds.deseq2()

    return dds


def get_results(dds, contrast, group_col=GROUP_COL):
    """
    Extract differential expression results for one contrast.

    Args:
        dds (DeseqDataSet): Fitted DESeq2 dataset
        contrast (str or tuple): 'A-B' or (A, B)
        group_col (str): Polarization column

    Returns:
        pd.DataFrame: Result table in the voom / limma column layout
    """
    group_a, group_b = parse_contrast(contrast)

    stats_results = DeseqStats(dds, contrast=[group_col, group_a, group_b], quiet=True)
    stats_results.summary()
    res = stats_results.results_df

    table = pd.DataFrame({
        'log2FoldChange': res['log2FoldChange'],
        'AveExpr': np.log2(res['baseMean'] + 0.5),
        'stat': res['stat'],
        'pvalue': res['pvalue'],
        'padj': res['padj'],
        'lods': np.nan,
    }, index=res.index)[RESULT_COLUMNS]
    table.index.name = 'gene_id'

    return table.sort_values('pvalue', kind='mergesort', na_position='last')


def run_full_dgea(counts, metadata, contrasts=None, group_col=GROUP_COL,
                  batch_col=BATCH_COL):
    """
    Run DESeq2 for every contrast.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)
        metadata (pd.DataFrame): Sample metadata
        contrasts (list): Contrasts ('A-B' strings or (A, B) tuples)
        group_col (str): Polarization column
        batch_col (str): Batch column

    Returns:
        dict: {'tables': {contrast name: result table}, 'dds': dataset}
    """
    if contrasts is None:
        contrasts = CONTRASTS

    dds = run_deseq2(counts, metadata, group_col, batch_col)
    tables = {contrast_name(c): get_results(dds, c, group_col) for c in contrasts}

    return {'tables': tables, 'dds': dds}
