"""
Classification models that rank genes by how well they separate the
polarization states.

Each model is tuned with a grid search, cross-validated on the training
split and scored on a stratified held-out split. Genes are then ranked by
model-specific importances and by permutation importance on the held-out
samples.

Models included:
- Random forest
- L1-penalized logistic regression
"""

from collections import Counter

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, balanced_accuracy_score, f1_score
from sklearn.model_selection import (
    GridSearchCV, StratifiedKFold, cross_validate, train_test_split
)

from .feature_selection import get_symbol_from_id, permutation_feature_importance
from .preprocessing import full_transform


def _split_and_transform(X_orig, y, xform_list, seed, test_size):
    """Stratified train/test split, each side transformed on its own."""
    X_train, X_test, y_train, y_test = train_test_split(
        X_orig, y, test_size=test_size, random_state=seed, stratify=y
    )
    return (full_transform(X_train, xform_list), full_transform(X_test, xform_list),
            np.asarray(y_train), np.asarray(y_test))


def _cv_splitter(y_train, cv, seed):
    smallest = min(Counter(y_train).values())
    n_splits = max(2, min(cv, smallest))
    return StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=seed)


def _test_scores(estimator, X_test, y_test):
    y_pred = estimator.predict(X_test)
    return {
        'test_accuracy': accuracy_score(y_test, y_pred),
        'test_balanced_accuracy': balanced_accuracy_score(y_test, y_pred),
        'test_f1_macro': f1_score(y_test, y_pred, average='macro'),
    }


def _top_by_score(genes_list, scores, n_genes):
    order = np.argsort(-np.asarray(scores), kind='mergesort')[:n_genes]
    return [genes_list[i] for i in order]


def run_random_forest(y, X_orig, n_genes, score, xform_list, cv, seed,
                      test_size=0.30, param_grid=None, to_symbols=True):
    """
    Train a random forest classifier with hyperparameter tuning.

    Args:
        y (np.ndarray): Polarization label per sample
        X_orig (pd.DataFrame): Count matrix (samples x genes)
        n_genes (int): Number of top genes to extract
        score (str): Scoring metric for optimization (e.g., 'balanced_accuracy')
        xform_list (list): Transformations to apply (e.g., ['cpm', 'log'])
        cv (int): Number of cross-validation folds
        seed (int): Random seed
        test_size (float): Fraction of samples held out
        param_grid (dict): Grid for GridSearchCV
        to_symbols (bool): Report genes as symbols instead of Ensembl ids

    Returns:
        tuple: (gene_dict, best_estimator, perfs_dict, importances DataFrame)
    """
    if param_grid is None:
        param_grid = {'n_estimators': [100, 300], 'max_features': ['sqrt', 0.1]}

    perfs = {}
    X_train, X_test, y_train, y_test = _split_and_transform(
        X_orig, y, xform_list, seed, test_size
    )
    splitter = _cv_splitter(y_train, cv, seed)

    rf = RandomForestClassifier(random_state=seed, class_weight='balanced')
    grid_search = GridSearchCV(rf, param_grid, cv=splitter, scoring=score)
    grid_search.fit(X_train, y_train)
    best_params = grid_search.best_params_
    print(f'  RandomForest best params: {best_params}')

    clf = RandomForestClassifier(random_state=seed, class_weight='balanced', **best_params)
    output = cross_validate(
        clf, X_train, y_train,
        cv=splitter,
        scoring=score,
        return_estimator=True
    )

    best_estimator = output['estimator'][np.argmax(output['test_score'])]
    avg_score = np.median(output['test_score'])
    print(f'  RandomForest avg train score: {avg_score:.4f}')
    perfs['avg_train'] = avg_score

    perfs.update(_test_scores(best_estimator, X_test, y_test))
    print(f"  RandomForest test balanced accuracy: {perfs['test_balanced_accuracy']:.2f}, "
          f"F1: {perfs['test_f1_macro']:.2f}")

    genes_list = list(X_orig.columns)
    convert = get_symbol_from_id if to_symbols else list

    pfi = permutation_feature_importance(
        best_estimator, X_test, y_test,
        genes=genes_list, scoring=score, n=n_genes, random_state=seed
    )

    importances = pd.DataFrame({
        'impurity': best_estimator.feature_importances_,
    }, index=pd.Index(genes_list, name='gene_id'))
    importances = importances.sort_values('impurity', ascending=False, kind='mergesort')

    rf_genes = {
        'pfi': convert(pfi['feature']),
        'impurity': convert(_top_by_score(genes_list, best_estimator.feature_importances_, n_genes)),
    }
    print(f'  RandomForest top genes: {rf_genes["impurity"][:5]}...')

    return rf_genes, best_estimator, perfs, importances


def run_logistic_regression(y, X_orig, n_genes, score, xform_list, cv, seed,
                            test_size=0.30, param_grid=None, to_symbols=True):
    """
    Train an L1-penalized multinomial logistic regression.

    The penalty drives most coefficients to zero, so the genes left with
    large positive coefficients for a state are its markers.

    Args:
        y (np.ndarray): Polarization label per sample
        X_orig (pd.DataFrame): Count matrix (samples x genes)
        n_genes (int): Number of top genes to extract
        score (str): Scoring metric
        xform_list (list): Transformations to apply
        cv (int): Number of CV folds
        seed (int): Random seed
        test_size (float): Test set fraction
        param_grid (dict): Grid for GridSearchCV
        to_symbols (bool): Report genes as symbols instead of Ensembl ids

    Returns:
        tuple: (gene_dict, best_estimator, perfs_dict, coefficients DataFrame)
    """
    if param_grid is None:
        param_grid = {'C': [0.01, 0.1, 1, 10]}

    perfs = {}
    X_train, X_test, y_train, y_test = _split_and_transform(
        X_orig, y, xform_list, seed, test_size
    )
    splitter = _cv_splitter(y_train, cv, seed)

    logistic = LogisticRegression(l1_ratio=1.0, solver='saga', max_iter=5000,
                                  random_state=seed)
    grid_search = GridSearchCV(logistic, param_grid, cv=splitter, scoring=score)
    grid_search.fit(X_train, y_train)
    best_C = grid_search.best_params_['C']
    print(f'  Logistic best C: {best_C}')

    clf = LogisticRegression(l1_ratio=1.0, solver='saga', C=best_C, max_iter=5000,
                             random_state=seed)
    output = cross_validate(
        clf, X_train, y_train,
        cv=splitter,
        scoring=score,
        return_estimator=True
    )

    best_estimator = output['estimator'][np.argmax(output['test_score'])]
    avg_score = np.median(output['test_score'])
    print(f'  Logistic avg train score: {avg_score:.4f}')
    perfs['avg_train'] = avg_score

    perfs.update(_test_scores(best_estimator, X_test, y_test))
    print(f"  Logistic test balanced accuracy: {perfs['test_balanced_accuracy']:.2f}, "
          f"F1: {perfs['test_f1_macro']:.2f}")

    genes_list = list(X_orig.columns)
    convert = get_symbol_from_id if to_symbols else list

    logistic_genes = {}
    pfi = permutation_feature_importance(
        best_estimator, X_test, y_test,
        genes=genes_list, scoring=score, n=n_genes, random_state=seed
    )
    logistic_genes['pfi'] = convert(pfi['feature'])

    classes = [str(c) for c in best_estimator.classes_]
    # Binary problems have a single coefficient row, for the second class
    if best_estimator.coef_.shape[0] == 1:
        classes = classes[1:]
    coefs = pd.DataFrame(
        best_estimator.coef_.T,
        index=pd.Index(genes_list, name='gene_id'),
        columns=classes,
    )

    for state in coefs.columns:
        positive = coefs[state][coefs[state] > 0].sort_values(ascending=False, kind='mergesort')
        logistic_genes[state] = convert(list(positive.index[:n_genes]))

    return logistic_genes, best_estimator, perfs, coefs


def rank_features_across_seeds(seed_results, key='pfi', min_perf=0.0,
                               perf_key='test_balanced_accuracy'):
    """
    Count how often each gene is ranked across seeds.

    Args:
        seed_results (dict): {seed: {'genes': {model: gene_dict},
            'perfs': {model: perfs_dict}}}
        key (str): Which gene list of each model to count
        min_perf (float): Skip model runs scoring below this
        perf_key (str): Performance entry compared with min_perf

    Returns:
        dict: counts (Counter), n_seeds, frequent (> half the seeds),
            robust (> 75% of the seeds)
    """
    counts = Counter()
    seed_sets = {}

    for seed, results in seed_results.items():
        for model, genes in results['genes'].items():
            perf = results['perfs'].get(model, {}).get(perf_key, 0)
            if perf < min_perf:
                continue
            for gene in genes.get(key, []):
                counts[gene] += 1
                seed_sets.setdefault(gene, set()).add(seed)

    n_seeds = len(seed_results)

    return {
        'counts': counts,
        'n_seeds': n_seeds,
        'frequent': {g for g, s in seed_sets.items() if len(s) > n_seeds // 2},
        'robust': {g for g, s in seed_sets.items() if len(s) > n_seeds * 0.75},
    }
