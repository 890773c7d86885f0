"""
Significance calls and set overlaps of differentially expressed genes.

Genes are called 'up', 'down' or 'ns' (not significant) from a result table
using an adjusted p-value cutoff and a symmetric log2 fold-change cutoff.
Calls are always recomputed from the table. Gene sets from contrasts that
share a comparison axis are then intersected on canonical gene ids.
"""

import re
from dataclasses import dataclass
from itertools import combinations

import numpy as np
import pandas as pd

from .config import SIG_LFC, SIG_PADJ


DIRECTIONS = ['up', 'down', 'ns']

_ENSEMBL_VERSION = re.compile(r'^(ENS[A-Z]*[GTP]\d+)\.\d+$')
_R_DIGIT_PREFIX = re.compile(r'^X(?=\d)')


@dataclass(frozen=True)
class GeneRecord:
    """One row of a differential-expression result table."""

    gene_id: str
    log2FoldChange: float
    AveExpr: float
    stat: float
    pvalue: float
    padj: float
    lods: float


def table_to_records(table):
    """
    Convert a result table into an ordered list of GeneRecord.

    Args:
        table (pd.DataFrame): Result table indexed by gene id

    Returns:
        list: GeneRecord per row, in table order
    """
    return [
        GeneRecord(
            gene_id=str(gene),
            log2FoldChange=float(row.log2FoldChange),
            AveExpr=float(row.AveExpr),
            stat=float(row.stat),
            pvalue=float(row.pvalue),
            padj=float(row.padj),
            lods=float(row.lods),
        )
        for gene, row in table.iterrows()
    ]


def canonical_gene_id(gene_id):
    """
    Canonical form of a gene identifier for set comparisons.

    Upper-cases, strips whitespace, drops Ensembl version suffixes
    ('ENSG00000111640.15' -> 'ENSG00000111640') and undoes R make.names
    mangling ('HLA.DRA' -> 'HLA-DRA', 'X7SK' -> '7SK').

    Args:
        gene_id (str): Gene identifier as found in a table

    Returns:
        str: Canonical identifier
    """
    gene = str(gene_id).strip().upper()

    match = _ENSEMBL_VERSION.match(gene)
    if match:
        return match.group(1)

    gene = _R_DIGIT_PREFIX.sub('', gene)
    return gene.replace('.', '-')


def classify_genes(table, padj_thresh=SIG_PADJ, lfc_thresh=SIG_LFC):
    """
    Call each gene 'up', 'down' or 'ns'.

    'up' requires padj < padj_thresh and log2FC >= lfc_thresh, 'down'
    requires padj < padj_thresh and log2FC <= -lfc_thresh. Rows with an
    undefined padj or fold change are 'ns'.

    Args:
        table (pd.DataFrame): Result table with 'padj' and 'log2FoldChange'
        padj_thresh (float): Adjusted p-value cutoff
        lfc_thresh (float): Absolute log2 fold-change cutoff

    Returns:
        pd.Series: Call per gene, indexed like the table
    """
    padj = table['padj'].to_numpy(dtype=float)
    lfc = table['log2FoldChange'].to_numpy(dtype=float)

    with np.errstate(invalid='ignore'):
        significant = np.isfinite(padj) & np.isfinite(lfc) & (padj < padj_thresh)
        up = significant & (lfc >= lfc_thresh)
        down = significant & (lfc <= -lfc_thresh)

    calls = np.where(up, 'up', np.where(down, 'down', 'ns'))
    return pd.Series(calls, index=table.index, name='call')


def get_sig_genes(table, padj_thresh=SIG_PADJ, lfc_thresh=SIG_LFC, direction=None):
    """
    Filter for significantly differentially expressed genes.

    Args:
        table (pd.DataFrame): Result table
        padj_thresh (float): Adjusted p-value cutoff
        lfc_thresh (float): Absolute log2 fold-change cutoff
        direction (str): 'up', 'down' or None for both

    Returns:
        pd.DataFrame: Significant rows, in table order
    """
    calls = classify_genes(table, padj_thresh, lfc_thresh)
    if direction is None:
        return table[calls != 'ns']
    if direction not in ('up', 'down'):
        raise ValueError(f"direction must be 'up', 'down' or None, got {direction!r}")
    return table[calls == direction]


def count_calls(table, padj_thresh=SIG_PADJ, lfc_thresh=SIG_LFC):
    """Number of genes per call, always reporting all three calls."""
    calls = classify_genes(table, padj_thresh, lfc_thresh)
    return {d: int((calls == d).sum()) for d in DIRECTIONS}


def partition_genes(table, padj_thresh=SIG_PADJ, lfc_thresh=SIG_LFC):
    """
    Split the genes of a result table by call.

    Args:
        table (pd.DataFrame): Result table indexed by gene id
        padj_thresh (float): Adjusted p-value cutoff
        lfc_thresh (float): Absolute log2 fold-change cutoff

    Returns:
        dict: {'up': set, 'down': set, 'ns': set} of canonical gene ids
    """
    calls = classify_genes(table, padj_thresh, lfc_thresh)
    partition = {d: set() for d in DIRECTIONS}
    for gene, call in calls.items():
        partition[call].add(canonical_gene_id(gene))
    return partition


def intersection_sizes(named_sets):
    """
    Sizes of the plain intersections of every combination of sets.

    Args:
        named_sets (dict): {name: set}

    Returns:
        dict: {tuple of names: size of their intersection}
    """
    names = list(named_sets)
    sizes = {}
    for k in range(1, len(names) + 1):
        for combo in combinations(names, k):
            sizes[combo] = len(set.intersection(*(set(named_sets[n]) for n in combo)))
    return sizes


def overlap_regions(named_sets):
    """
    Exclusive Venn regions of a collection of sets.

    Each region holds the elements that are in exactly the named sets and in
    none of the others; together the regions partition the union.

    Args:
        named_sets (dict): {name: set}

    Returns:
        dict: {tuple of names: set of elements}, every combination present
    """
    names = list(named_sets)
    sets = {n: set(named_sets[n]) for n in names}
    union = set().union(*sets.values()) if sets else set()

    regions = {}
    for k in range(1, len(names) + 1):
        for combo in combinations(names, k):
            inside = set.intersection(*(sets[n] for n in combo))
            outside = set().union(*(sets[n] for n in names if n not in combo))
            regions[combo] = (inside & union) - outside
    return regions


def compare_contrasts(partitions, direction):
    """
    Venn regions of one direction's gene sets across contrasts.

    Args:
        partitions (dict): {contrast name: output of partition_genes}
        direction (str): 'up' or 'down'

    Returns:
        dict: {tuple of contrast names: set of canonical gene ids}
    """
    if direction not in ('up', 'down'):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    return overlap_regions({name: part[direction] for name, part in partitions.items()})


def overlap_table(partitions):
    """
    Long table of Venn regions for the 'up' and 'down' directions.

    Args:
        partitions (dict): {contrast name: output of partition_genes}

    Returns:
        pd.DataFrame: direction, region, n_genes, genes (';'-joined, sorted)
    """
    rows = []
    for direction in ('up', 'down'):
        for combo, genes in compare_contrasts(partitions, direction).items():
            rows.append({
                'direction': direction,
                'region': ' & '.join(combo),
                'n_sets': len(combo),
                'n_genes': len(genes),
                'genes': ';'.join(sorted(genes)),
            })
    return pd.DataFrame(rows, columns=['direction', 'region', 'n_sets', 'n_genes', 'genes'])
