"""
Visualization utilities for the polarization analysis.

This module provides plotting functions for:
- Volcano plots and DE-gene overlap (Venn) diagrams
- PCA and sample dendrograms for quality control
- Heatmaps of differentially expressed genes
- The voom mean-variance trend
- Feature importances and enrichment results
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib_venn import venn2, venn3
from scipy.cluster.hierarchy import dendrogram, linkage
from sklearn.decomposition import PCA

from .config import DIRECTION_COLORS, PLOT_DPI, SIG_LFC, SIG_PADJ, STATE_COLORS
from .significance import classify_genes, count_calls, overlap_regions


def _save(fig, path):
    if path is None:
        return
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    fig.savefig(path, dpi=PLOT_DPI, bbox_inches='tight')
    plt.close(fig)


def plot_volcano(table, title='', path=None, padj_thresh=SIG_PADJ, lfc_thresh=SIG_LFC,
                 label_top=10):
    """
    Volcano plot of log2 fold change against -log10 adjusted p-value.

    Points are colored by their call and the up/down counts are shown in
    the legend. Genes with undefined statistics are not drawn.

    Args:
        table (pd.DataFrame): Result table
        title (str): Plot title (usually the contrast name)
        path (str): Output PNG path (optional)
        padj_thresh (float): Adjusted p-value cutoff
        lfc_thresh (float): Absolute log2 fold-change cutoff
        label_top (int): Number of most significant called genes to label

    Returns:
        matplotlib.figure.Figure
    """
    calls = classify_genes(table, padj_thresh, lfc_thresh)
    counts = count_calls(table, padj_thresh, lfc_thresh)

    shown = table['padj'].notna() & table['log2FoldChange'].notna()
    x = table.loc[shown, 'log2FoldChange']
    y = -np.log10(table.loc[shown, 'padj'].clip(lower=1e-300))
    c = calls[shown]

    fig, ax = plt.subplots(figsize=(7, 6))
    for direction in ('ns', 'down', 'up'):
        mask = c == direction
        label = direction if direction == 'ns' else f'{direction} ({counts[direction]})'
        ax.scatter(x[mask], y[mask], s=8, alpha=0.7,
                   color=DIRECTION_COLORS[direction], label=label)

    ax.axhline(-np.log10(padj_thresh), color='black', lw=0.8, ls='--')
    ax.axvline(lfc_thresh, color='black', lw=0.8, ls='--')
    ax.axvline(-lfc_thresh, color='black', lw=0.8, ls='--')

    if label_top:
        called = table.loc[shown][c != 'ns'].sort_values('padj', kind='mergesort')
        for gene, row in called.head(label_top).iterrows():
            ax.annotate(str(gene), (row['log2FoldChange'], -np.log10(max(row['padj'], 1e-300))),
                        fontsize=7)

    ax.set_xlabel('log2 fold change', fontsize=12)
    ax.set_ylabel('-log10 adjusted p-value', fontsize=12)
    ax.set_title(title, fontsize=14)
    ax.legend(loc='upper left', fontsize=9, frameon=False)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_overlap(named_sets, title='', path=None):
    """
    Overlap diagram of two or three gene sets.

    A Venn diagram is drawn for two or three non-empty sets. When a set is
    empty, or there are more than three sets, the exclusive region sizes
    are shown as a bar chart. If every set is empty the panel says so.

    Args:
        named_sets (dict): {name: set of gene ids}
        title (str): Plot title
        path (str): Output PNG path (optional)

    Returns:
        matplotlib.figure.Figure
    """
    names = list(named_sets)
    sets = [set(named_sets[n]) for n in names]

    fig, ax = plt.subplots(figsize=(7, 6))

    if not any(sets):
        ax.text(0.5, 0.5, 'No significant genes', ha='center', va='center', fontsize=14)
        ax.set_axis_off()
    elif len(sets) in (2, 3) and all(sets):
        labels = [f'{n} ({len(s)})' for n, s in zip(names, sets)]
        if len(sets) == 2:
            venn2(sets, set_labels=labels, ax=ax)
        else:
            venn3(sets, set_labels=labels, ax=ax)
    else:
        regions = overlap_regions(dict(zip(names, sets)))
        labels = [' & '.join(combo) for combo in regions]
        sizes = [len(genes) for genes in regions.values()]
        ax.barh(labels, sizes, color='steelblue')
        ax.invert_yaxis()
        ax.set_xlabel('Genes', fontsize=12)

    ax.set_title(title, fontsize=14)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_pca(logcpm, groups, path=None, n_genes=None, title='PCA'):
    """
    2D PCA of samples colored by polarization state.

    Args:
        logcpm (pd.DataFrame): log-CPM matrix (genes x samples)
        groups (pd.Series): Polarization state per sample
        path (str): Output PNG path (optional)
        n_genes (int): Restrict to the most variable genes (optional)
        title (str): Plot title

    Returns:
        matplotlib.figure.Figure
    """
    X = logcpm
    if n_genes:
        X = X.loc[X.var(axis=1).sort_values(ascending=False, kind='mergesort').index[:n_genes]]

    pca = PCA(n_components=2, random_state=0)
    X_r = pca.fit_transform(X.T.values)
    ratio = pca.explained_variance_ratio_
    print(f"  PCA explained variance ratio: {ratio}")

    groups = pd.Series(groups).loc[X.columns].astype(str)

    fig, ax = plt.subplots(figsize=(8, 6))
    for state in pd.unique(groups):
        mask = (groups == state).values
        ax.scatter(X_r[mask, 0], X_r[mask, 1], s=50, alpha=0.8, lw=2,
                   color=STATE_COLORS.get(state), label=state)

    ax.legend(loc='best', scatterpoints=1, fontsize=12)
    ax.set_xlabel(f'PC1 ({ratio[0]:.1%})', fontsize=14)
    ax.set_ylabel(f'PC2 ({ratio[1]:.1%})', fontsize=14)
    ax.set_title(title, fontsize=14)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_gene_heatmap(logcpm, groups, gene_list=None, n_genes=50, path=None, cmap='RdBu_r'):
    """
    Heatmap of row-centered expression with samples ordered by state.

    Args:
        logcpm (pd.DataFrame): log-CPM matrix (genes x samples)
        groups (pd.Series): Polarization state per sample
        gene_list (list): Specific genes to include (optional)
        n_genes (int): Number of top variable genes if gene_list not provided
        path (str): Output PNG path (optional)
        cmap (str): Colormap name

    Returns:
        matplotlib.figure.Figure
    """
    if gene_list is not None:
        genes = [g for g in gene_list if g in logcpm.index][:n_genes]
    else:
        genes = logcpm.var(axis=1).sort_values(ascending=False, kind='mergesort').index[:n_genes]

    groups = pd.Series(groups).loc[logcpm.columns].astype(str)
    order = groups.sort_values(kind='mergesort').index
    data = logcpm.loc[genes, order]
    data = data.sub(data.mean(axis=1), axis=0)

    fig, ax = plt.subplots(figsize=(12, 8))
    if len(data) == 0:
        ax.text(0.5, 0.5, 'No genes to show', ha='center', va='center', fontsize=14)
        ax.set_axis_off()
    else:
        sns.heatmap(data, cmap=cmap, center=0, xticklabels=True,
                    yticklabels=len(data) <= 60, ax=ax)
        ax.set_xticklabels([f'{s} ({groups[s]})' for s in order], rotation=90, fontsize=7)
        ax.set_xlabel('Samples', fontsize=12)
        ax.set_ylabel('Genes', fontsize=12)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_sample_dendrogram(logcpm, groups, path=None, n_genes=1000, max_distance=None):
    """
    Average-linkage dendrogram of all samples on correlation distance.

    Args:
        logcpm (pd.DataFrame): log-CPM matrix (genes x samples)
        groups (pd.Series): Polarization state per sample
        path (str): Output PNG path (optional)
        n_genes (int): Number of most variable genes
        max_distance (float): Draw the cut height used for filtering

    Returns:
        matplotlib.figure.Figure
    """
    X = logcpm.loc[logcpm.var(axis=1).sort_values(ascending=False, kind='mergesort').index[:n_genes]]
    groups = pd.Series(groups).loc[X.columns].astype(str)

    Z = linkage(X.T.values, method='average', metric='correlation')

    fig, ax = plt.subplots(figsize=(max(8, 0.35 * X.shape[1]), 5))
    dendrogram(Z, labels=[f'{s} ({groups[s]})' for s in X.columns],
               leaf_rotation=90, leaf_font_size=8, ax=ax)
    for tick in ax.get_xticklabels():
        state = tick.get_text().rsplit('(', 1)[-1].rstrip(')')
        tick.set_color(STATE_COLORS.get(state, 'black'))

    if max_distance is not None:
        ax.axhline(max_distance, color='red', ls='--', lw=0.8)
    ax.set_ylabel('1 - Pearson r', fontsize=12)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_mean_variance(voom_result, path=None):
    """
    voom mean-variance plot: sqrt residual SD against average log-count.

    Args:
        voom_result (dict): Output of voom
        path (str): Output PNG path (optional)

    Returns:
        matplotlib.figure.Figure
    """
    mv = voom_result['mean_variance']
    trend = voom_result['trend']

    fig, ax = plt.subplots(figsize=(7, 6))
    ax.scatter(mv['sx'], mv['sy'], s=4, alpha=0.4, color='black')
    ax.plot(trend['sx'], trend['sy'], color='red', lw=2)
    ax.set_xlabel('log2( count size + 0.5 )', fontsize=12)
    ax.set_ylabel('Sqrt( standard deviation )', fontsize=12)
    ax.set_title('voom: Mean-variance trend', fontsize=14)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_feature_importance(importances, column='impurity', n=20, path=None, title=''):
    """
    Horizontal bar chart of the top n features.

    Args:
        importances (pd.DataFrame): Importance table indexed by gene
        column (str): Column to rank by
        n (int): Number of features
        path (str): Output PNG path (optional)
        title (str): Plot title

    Returns:
        matplotlib.figure.Figure
    """
    top = importances[column].sort_values(ascending=False, kind='mergesort').head(n)

    fig, ax = plt.subplots(figsize=(7, max(3, 0.3 * len(top))))
    ax.barh([str(g) for g in top.index], top.values, color='steelblue')
    ax.invert_yaxis()
    ax.set_xlabel(column, fontsize=12)
    ax.set_title(title, fontsize=14)
    fig.tight_layout()

    _save(fig, path)
    return fig


def plot_enrichment(df, top_n=10, path=None, title=''):
    """
    Bar chart of -log10 adjusted p-values of the top enriched terms.

    Args:
        df (pd.DataFrame): Enrichr results ('Term', 'Adjusted P-value')
        top_n (int): Number of terms
        path (str): Output PNG path (optional)
        title (str): Plot title

    Returns:
        matplotlib.figure.Figure
    """
    top = df.sort_values('Adjusted P-value', kind='mergesort').head(top_n)
    scores = -np.log10(top['Adjusted P-value'].clip(lower=1e-300))
    terms = [str(t)[:60] for t in top['Term']]

    fig, ax = plt.subplots(figsize=(8, max(3, 0.4 * len(top))))
    ax.barh(terms, scores, color='firebrick')
    ax.invert_yaxis()
    ax.set_xlabel('-log10 adjusted p-value', fontsize=12)
    ax.set_title(title, fontsize=14)
    fig.tight_layout()

    _save(fig, path)
    return fig
