"""
Preprocessing utilities for RNA-seq count data.

This module provides functions for:
- Library-size normalization (TMM) and counts-per-million
- Gene filtering (expression level, low counts, biotype)
- Clustering-based removal of outlier samples within each group
- Data transformations for classifier training
"""

from collections import Counter

import numpy as np
import pandas as pd
from pybiomart import Server
from rnanorm import CPM, TMM
from scipy.cluster.hierarchy import fcluster, linkage


from .config import (
    BIOMART_DATASET,
    BIOMART_HOST,
    CLUSTER_MAX_DISTANCE,
    CLUSTER_N_GENES,
    FILTER_MIN_COUNT,
    FILTER_MIN_TOTAL_COUNT,
)


def cpm(counts, lib_size=None, log=False, prior_count=2):
    """
    Counts per million, optionally on the log2 scale.

    Plain CPM on raw library sizes comes from rnanorm. For log=True the prior count is scaled by each library's size relative
    to the average library so that small libraries are not over-smoothed.

    Args:
        counts (pd.DataFrame or np.ndarray): Counts (genes x samples)
        lib_size (array-like): Effective library sizes (default: column sums)
        log (bool): Return log2-CPM
        prior_count (float): Prior count added before taking logs

    Returns:
        Same type as counts: (log-)CPM values
    """
    values = np.asarray(counts, dtype=float)
    if lib_size is None and not log:
        # rnanorm works on samples x genes
        out = np.asarray(CPM().fit_transform(values.T), dtype=float).T
    else:
        if lib_size is None:
            lib_size = values.sum(axis=0)
        lib_size = np.asarray(lib_size, dtype=float)

        if log:
            prior = prior_count * lib_size / lib_size.mean()
            out = np.log2((values + prior) / (lib_size + 2 * prior) * 1e6)
        else:
            out = values / lib_size * 1e6

    if isinstance(counts, pd.DataFrame):
        return pd.DataFrame(out, index=counts.index, columns=counts.columns)
    return out


def filter_by_expr(counts, groups=None, min_count=FILTER_MIN_COUNT,
                   min_total_count=FILTER_MIN_TOTAL_COUNT, large_n=10, min_prop=0.7):
    """
    Keep genes with enough counts to be worth testing.

    A gene is kept when its CPM exceeds the CPM equivalent of min_count
    (at the median library size) in at least as many samples as the smallest
    group, and its total count is at least min_total_count.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)
        groups (pd.Series): Group label per sample (None = one group)
        min_count (int): Minimum count at the median library size
        min_total_count (int): Minimum total count across samples
        large_n (int): Group size beyond which only min_prop is required
        min_prop (float): Proportion of samples needed in large groups

    Returns:
        pd.DataFrame: Filtered count matrix
    """
    lib_size = counts.sum(axis=0)

    if groups is None:
        min_sample_size = counts.shape[1]
    else:
        sizes = pd.Series(groups).loc[counts.columns].value_counts()
        min_sample_size = sizes[sizes > 0].min()
    if min_sample_size > large_n:
        min_sample_size = large_n + (min_sample_size - large_n) * min_prop

    cpm_cutoff = min_count / np.median(lib_size) * 1e6
    tol = 1e-14

    keep_cpm = (cpm(counts, lib_size) >= cpm_cutoff).sum(axis=1) >= min_sample_size - tol
    keep_total = counts.sum(axis=1) >= min_total_count - tol

    return counts[keep_cpm & keep_total]


def filter_low_count_genes(df, n=0, p=0):
    """
    Filter genes with low counts across a percentage of samples.

    Removes genes that have counts < n in more than a proportion p of samples.

    Args:
        df (pd.DataFrame): Gene expression matrix (genes x samples)
        n (int): Count threshold (genes with counts < n are considered low)
        p (float): Proportion of samples threshold (0-1)

    Returns:
        pd.DataFrame: Filtered dataframe
    """
    if n == 0 or p == 0:
        return df

    low_count_mask = (df < n).sum(axis='columns') <= int(p * len(df.columns))
    return df[low_count_mask]


def filter_genes(df, drop='non-coding'):
    """
    Filter genes based on biotype (protein-coding vs non-coding).

    Uses pybiomart to query Ensembl for gene biotype information. Rows are
    matched on Ensembl gene id or gene symbol, whichever the index holds.

    Args:
        df (pd.DataFrame): Gene expression matrix indexed by gene id
        drop (str): Either 'non-coding' (keep only protein-coding genes)
                   or 'coding' (keep only non-coding genes)

    Returns:
        pd.DataFrame: Filtered dataframe
    """
    from .significance import canonical_gene_id

    if drop is None or drop == 0:
        return df

    server = Server(host=BIOMART_HOST)
    dataset = server.marts['ENSEMBL_MART_ENSEMBL'].datasets[BIOMART_DATASET]
    gene_info = dataset.query(attributes=['ensembl_gene_id', 'external_gene_name', 'gene_biotype'])

    coding = gene_info['Gene type'] == 'protein_coding'
    if drop == 'non-coding':
        selected = gene_info[coding]
    elif drop == 'coding':
        selected = gene_info[~coding]
    else:
        return df

    wanted = set(selected['Gene stable ID'].dropna().map(canonical_gene_id))
    wanted |= set(selected['Gene name'].dropna().map(canonical_gene_id))

    mask = [canonical_gene_id(g) in wanted for g in df.index]
    return df[mask]


def calc_norm_factors(counts, logratio_trim=0.3, sum_trim=0.05):
    """
    TMM normalization factors (rnanorm).

    Each sample is compared with a reference sample picked by rnanorm from
    the upper quartiles. The log-ratios are trimmed by 30% on M and 5% on A,
    and a precision-weighted mean of the rest gives the sample's factor.
    Factors multiply to one.

    Args:
        counts (pd.DataFrame or np.ndarray): Counts (genes x samples)
        logratio_trim (float): Fraction trimmed from each end of M values
        sum_trim (float): Fraction trimmed from each end of A values

    Returns:
        pd.Series or np.ndarray: One factor per sample
    """
    values = np.asarray(counts, dtype=float)
    lib_size = values.sum(axis=0)

    if np.any(lib_size <= 0):
        raise ValueError("Cannot normalize samples with zero library size")

    values = values[values.sum(axis=1) > 0]
    n_samples = values.shape[1]

    if values.shape[0] == 0 or n_samples == 1:
        factors = np.ones(n_samples)
    else:
        # rnanorm works on samples x genes
        tmm = TMM(m_trim=logratio_trim, a_trim=sum_trim).fit(values.T)
        factors = np.asarray(tmm.get_norm_factors(values.T), dtype=float)

    if isinstance(counts, pd.DataFrame):
        return pd.Series(factors, index=counts.columns, name='norm_factor')
    return factors


def select_variable_genes(logcpm, n=CLUSTER_N_GENES):
    """Rows of the n genes with the largest variance across samples."""
    if n is None or n == 0 or n >= len(logcpm):
        return logcpm
    variances = logcpm.var(axis=1)
    top = variances.sort_values(ascending=False, kind='mergesort').index[:n]
    return logcpm.loc[top]


def filter_samples_by_clustering(logcpm, groups, n_genes=CLUSTER_N_GENES,
                                 max_distance=CLUSTER_MAX_DISTANCE, min_group_size=3):
    """
    Remove samples that do not cluster with the rest of their group.

    Within each polarization group the samples are clustered (average
    linkage, correlation distance) on the most variable genes and the tree
    is cut at max_distance. Samples outside the group's largest cluster(s)
    are flagged as outliers. Groups smaller than min_group_size are kept
    whole.

    Args:
        logcpm (pd.DataFrame): log-CPM matrix (genes x samples)
        groups (pd.Series): Group label per sample
        n_genes (int): Number of most variable genes to cluster on
        max_distance (float): Dendrogram cut height (1 - Pearson r)
        min_group_size (int): Smallest group that is filtered

    Returns:
        tuple: (kept sample ids, per-sample report DataFrame)
    """
    X = select_variable_genes(logcpm, n_genes)
    groups = pd.Series(groups).loc[X.columns]

    rows = []
    for group in pd.unique(groups):
        samples = list(groups.index[groups == group])
        data = X[samples]
        corr = np.corrcoef(data.T.values) if len(samples) > 1 else np.ones((1, 1))
        mean_corr = (corr.sum(axis=1) - 1) / max(len(samples) - 1, 1)

        if len(samples) < min_group_size:
            labels = np.ones(len(samples), dtype=int)
        else:
            Z = linkage(data.T.values, method='average', metric='correlation')
            labels = fcluster(Z, t=max_distance, criterion='distance')

        sizes = Counter(labels)
        largest = max(sizes.values())

        for sample, label, r in zip(samples, labels, mean_corr):
            rows.append({
                'sample': sample,
                'group': group,
                'cluster': int(label),
                'mean_correlation': float(r),
                'kept': sizes[label] == largest,
            })

    report = pd.DataFrame(rows).set_index('sample').loc[list(X.columns)]
    kept = list(report.index[report['kept']])

    n_dropped = len(report) - len(kept)
    print(f"  Sample clustering: kept {len(kept)}, dropped {n_dropped}")
    for sample in report.index[~report['kept']]:
        print(f"    Outlier: {sample} ({report.loc[sample, 'group']}, "
              f"r={report.loc[sample, 'mean_correlation']:.3f})")

    return kept, report


def full_transform(X, x_list):
    """
    Apply a sequence of transformations to expression data.

    Supported transformations:
    - 'cpm': Counts per million per sample
    - 'log': Log2(x+1) transformation
    - 'std': Standardization (z-score) of each gene

    Args:
        X (pd.DataFrame or np.ndarray): Expression data (samples x genes)
        x_list (list): List of transformation names to apply in order

    Returns:
        np.ndarray: Transformed data
    """
    temp = np.asarray(X, dtype=float)

    if 'cpm' in x_list:
        totals = temp.sum(axis=1, keepdims=True)
        totals[totals == 0] = 1
        temp = temp / totals * 1e6

    if 'log' in x_list:
        temp = np.log2(temp + 1)

    if 'std' in x_list:
        temp = (temp - np.mean(temp, axis=0)) / (np.std(temp, axis=0) + 0.01)

    return temp
