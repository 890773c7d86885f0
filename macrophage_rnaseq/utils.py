"""
Utility functions for the RNA-seq analysis pipeline.

This module provides general-purpose utilities including:
- Result table export and import
- Results storage and loading
- Display configuration
"""

import os
import pickle

import pandas as pd

from .config import DE_TABLE_TEMPLATE, EXPORT_COLUMNS, RESULT_COLUMNS


def set_maxdisplay(n=None):
    """
    Set maximum display rows for pandas output.

    Args:
        n (int): Maximum rows to display (None for unlimited)
    """
    pd.set_option('display.max_rows', n)


def write_de_table(table, path, columns=None):
    """
    Write a result table as CSV with the gene id as row key.

    The exported columns lead with log2 fold change, p-value, adjusted
    p-value and average expression; the remaining result columns follow.
    Numbers are written with a fixed format so reruns are byte-identical.

    Args:
        table (pd.DataFrame): Result table indexed by gene id
        path (str): Output file path
        columns (list): Columns to write (default: all result columns)
    """
    if columns is None:
        columns = EXPORT_COLUMNS + [c for c in RESULT_COLUMNS if c not in EXPORT_COLUMNS]

    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    out = table[columns].copy()
    out.index.name = 'gene_id'
    out.to_csv(path, float_format='%.6g', na_rep='NA')


def read_de_table(path):
    """Read a table written by write_de_table."""
    table = pd.read_csv(path, index_col=0, na_values=['NA'])
    table.index = table.index.astype(str)
    table.index.name = 'gene_id'
    return table


def de_table_path(results_dir, contrast):
    """Path of the exported table for a contrast name."""
    return os.path.join(results_dir, DE_TABLE_TEMPLATE.format(contrast=contrast))


def store_results(results, loc, name='results'):
    """
    Save analysis results to disk.

    Args:
        results (dict): Results to pickle
        loc (str): Output directory path
        name (str): File stem
    """
    if not os.path.exists(loc):
        os.makedirs(loc)

    path = os.path.join(loc, f'{name}.pkl')
    with open(path, 'wb') as f:
        pickle.dump(results, f)

    print(f"Results saved to {path}")
    return path


def load_results(loc, name='results'):
    """
    Load previously saved analysis results.

    Args:
        loc (str): Directory containing saved results
        name (str): File stem

    Returns:
        dict: Stored results
    """
    path = os.path.join(loc, f'{name}.pkl')
    if not os.path.exists(path):
        raise FileNotFoundError(f"Results not found: {path}")

    with open(path, 'rb') as f:
        return pickle.load(f)


def write_gene_sets(gene_sets, path):
    """
    Write named gene sets as a readable text file.

    Args:
        gene_sets (dict): {name: iterable of gene ids}
        path (str): Output file path
    """
    with open(path, 'w') as f:
        for name, genes in gene_sets.items():
            genes = sorted(genes)
            f.write(f"{name.upper()} ({len(genes)}):\n")
            f.write(', '.join(genes) + '\n\n')
