"""
Feature selection utilities for gene expression classifiers.

This module provides:
- Mutual-information gene filtering
- Permutation feature importance
- Gene ID to symbol conversion utilities
"""

import warnings

import mygene
import numpy as np
import pandas as pd
from sklearn.feature_selection import SelectKBest, mutual_info_classif
from sklearn.inspection import permutation_importance


def custom_mutual_info_classif(X, y, seed=42):
    """
    Wrapper for mutual information classification with fixed random state.

    Used as score function for SelectKBest feature selection.

    Args:
        X (np.ndarray): Feature matrix
        y (np.ndarray): Class labels
        seed (int): Random seed

    Returns:
        np.ndarray: Mutual information scores for each feature
    """
    return mutual_info_classif(X, y, random_state=seed)


def filter_informative_genes(X, y, k, seed):
    """
    Keep the k genes most informative about the class labels.

    Args:
        X (pd.DataFrame): Expression matrix (samples x genes)
        y (np.ndarray): Class labels
        k (int): Number of genes to keep (0 = no filtering)
        seed (int): Random seed

    Returns:
        pd.DataFrame: X restricted to the selected genes
    """
    if k == 0 or k >= X.shape[1]:
        return X

    def score_func(X, y):
        return custom_mutual_info_classif(X, y, seed=seed)

    selector = SelectKBest(score_func=score_func, k=k)
    selector.fit(X.to_numpy(), y)
    indices = selector.get_support(indices=True)

    return X.iloc[:, indices]


def permutation_feature_importance(model, X_, y_, genes=None, scoring='accuracy',
                                   n=20, random_state=0):
    """
    Calculate permutation feature importance for a trained model.

    Permutation importance measures feature importance by randomly shuffling
    each feature and measuring the decrease in model performance.

    Args:
        model: Trained sklearn-compatible model
        X_ (np.ndarray): Feature matrix
        y_ (np.ndarray): Class labels
        genes (list): Gene names corresponding to features
        scoring (str): Scoring metric (e.g., 'balanced_accuracy')
        n (int): Number of top features to return
        random_state (int): Random seed

    Returns:
        pd.DataFrame: Top n features with importance mean and std
    """
    r = permutation_importance(
        model, X_, y_,
        n_repeats=5,
        scoring=scoring,
        random_state=random_state
    )

    if genes is None:
        genes = list(range(X_.shape[1]))

    order = np.argsort(-r.importances_mean, kind='mergesort')[:n]
    feat_imp_df = pd.DataFrame({
        'feature': [genes[i] for i in order],
        'importance_mean': np.round(r.importances_mean[order], 4),
        'importance_std': np.round(r.importances_std[order], 4),
    })

    return feat_imp_df.reset_index(drop=True)


def get_symbol_from_id(gene_list, species='human'):
    """
    Convert Ensembl gene IDs to gene symbols using mygene.

    Ids that are not Ensembl ids, or that mygene cannot resolve, are
    returned unchanged.

    Args:
        gene_list (list): List of gene ids (e.g., 'ENSG00000111640')
        species (str): 'human' or 'mouse'

    Returns:
        list: Gene symbols, in input order
    """
    gene_list = list(gene_list)
    ensembl = [g for g in gene_list if str(g).upper().startswith('ENS')]
    if not ensembl:
        return gene_list

    mg = mygene.MyGeneInfo()
    try:
        ginfo = mg.querymany(ensembl, scopes='ensembl.gene', fields='symbol',
                             species=species, verbose=False)
    except Exception as e:
        warnings.warn(f"Gene symbol conversion failed: {e}")
        return gene_list

    symbols = {}
    for g in ginfo:
        if g['query'] in symbols:
            continue
        if 'symbol' in g:
            symbols[g['query']] = g['symbol']

    return [symbols.get(g, g) for g in gene_list]
