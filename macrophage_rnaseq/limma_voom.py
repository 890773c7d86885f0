"""
limma-voom differential expression analysis.

Counts are TMM-normalized and converted to log-CPM values with
observation-level precision weights estimated from the mean-variance
trend (voom). A weighted linear model with polarization and batch
indicators is fitted per gene, contrasts between polarization states are
estimated, and gene-wise variances are shrunk with an empirical-Bayes
prior before computing moderated t-statistics, p-values, Benjamini-
Hochberg adjusted p-values and B-statistics (log-odds of differential
expression).
"""

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import digamma, polygamma
from statsmodels.nonparametric.smoothers_lowess import lowess
from statsmodels.stats.multitest import multipletests

from .config import (
    BATCH_COL,
    CONTRASTS,
    EBAYES_PROPORTION,
    EBAYES_TREND,
    GROUP_COL,
    POLARIZATION_STATES,
    RESULT_COLUMNS,
    STDEV_COEF_LIM,
    VOOM_SPAN,
    contrast_name,
    parse_contrast,
)
from .data_loading import check_count_matrix, check_sample_labels
from .preprocessing import calc_norm_factors


class DesignMatrixError(ValueError):
    """Raised when a design matrix cannot be fitted (e.g. rank deficient)."""


# =============================================================================
# DESIGN
# =============================================================================

def _ordered_levels(values, preferred=None):
    present = list(pd.unique(values))
    preferred = [p for p in (preferred or []) if p in present]
    return preferred + sorted(p for p in present if p not in preferred)


def check_design_rank(design):
    """
    Fail fast if any design column is a linear combination of the others.

    Args:
        design (pd.DataFrame): Design matrix (samples x coefficients)
    """
    X = np.asarray(design, dtype=float)
    n, p = X.shape
    rank = np.linalg.matrix_rank(X)

    if rank < p:
        # Walk the columns and report the ones that add no rank
        redundant = []
        kept = []
        for j, name in enumerate(design.columns):
            trial = kept + [j]
            if np.linalg.matrix_rank(X[:, trial]) == len(trial):
                kept = trial
            else:
                redundant.append(name)
        raise DesignMatrixError(
            f"Design matrix is rank deficient (rank {rank} < {p} columns); "
            f"coefficients not estimable: {redundant}"
        )

    if n <= p:
        raise DesignMatrixError(
            f"No residual degrees of freedom: {n} samples for {p} coefficients"
        )


def build_design_matrix(metadata, group_col=GROUP_COL, batch_col=BATCH_COL,
                        group_levels=None):
    """
    Build a no-intercept design with group and batch indicator columns.

    Every group level gets its own column; the batch is coded with the
    first level as reference. The design is checked for full rank.

    Args:
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        group_col (str): Group (polarization) column
        batch_col (str): Batch (series) column, None for no batch term
        group_levels (list): Preferred order of group levels

    Returns:
        pd.DataFrame: Design matrix (samples x coefficients)
    """
    columns = [group_col] if batch_col is None else [group_col, batch_col]
    check_sample_labels(metadata, list(metadata.index), columns)

    if group_levels is None:
        group_levels = POLARIZATION_STATES

    groups = metadata[group_col].astype(str)
    levels = _ordered_levels(groups, group_levels)
    design = pd.get_dummies(pd.Categorical(groups, categories=levels)).astype(float)
    design.columns = [str(c) for c in levels]
    design.index = metadata.index

    if batch_col is not None:
        batches = metadata[batch_col].astype(str)
        batch_levels = _ordered_levels(batches)
        if len(batch_levels) > 1:
            batch_design = pd.get_dummies(
                pd.Categorical(batches, categories=batch_levels), drop_first=True
            ).astype(float)
            batch_design.columns = [f"{batch_col}_{c}" for c in batch_levels[1:]]
            batch_design.index = metadata.index
            design = pd.concat([design, batch_design], axis=1)

    check_design_rank(design)
    return design


def make_contrast_matrix(contrasts, design):
    """
    Contrast matrix (coefficients x contrasts) for 'A-B' style contrasts.

    Args:
        contrasts (list): Contrasts as 'A-B' strings or (A, B) tuples
        design (pd.DataFrame): Design matrix whose columns include A and B

    Returns:
        pd.DataFrame: Contrast matrix with contrast names as columns
    """
    C = pd.DataFrame(0.0, index=design.columns,
                     columns=[contrast_name(c) for c in contrasts])

    for contrast in contrasts:
        group_a, group_b = parse_contrast(contrast)
        for level in (group_a, group_b):
            if level not in design.columns:
                raise DesignMatrixError(
                    f"Contrast {contrast!r} refers to {level!r}, which is not "
                    f"a design coefficient ({list(design.columns)})"
                )
        C.loc[group_a, contrast_name(contrast)] = 1.0
        C.loc[group_b, contrast_name(contrast)] = -1.0

    return C


# =============================================================================
# LINEAR MODEL
# =============================================================================

def lm_fit(E, design, weights=None, degenerate=None):
    """
    Fit a (weighted) linear model to each gene.

    Args:
        E (pd.DataFrame): Expression values (genes x samples)
        design (pd.DataFrame): Design matrix (samples x coefficients)
        weights (pd.DataFrame): Precision weights, same shape as E
        degenerate (array-like): Extra boolean mask of genes whose
            statistics must be left undefined

    Returns:
        dict: Fit with 'coefficients', 'cov_unscaled', 'stdev_unscaled',
              'sigma', 'df_residual', 'Amean', 'degenerate', 'genes',
              'coef_names'
    """
    Y = np.asarray(E, dtype=float)
    X = np.asarray(design, dtype=float)
    n_genes, n_samples = Y.shape
    n_coef = X.shape[1]

    if X.shape[0] != n_samples:
        raise DesignMatrixError(
            f"Design has {X.shape[0]} rows for {n_samples} samples"
        )
    check_design_rank(design)

    W = np.ones_like(Y) if weights is None else np.asarray(weights, dtype=float)

    XtWX = np.einsum('gn,ni,nj->gij', W, X, X, optimize=True)
    XtWy = np.einsum('gn,ni,gn->gi', W, X, Y, optimize=True)
    cov_unscaled = np.linalg.inv(XtWX)
    coef = np.einsum('gij,gj->gi', cov_unscaled, XtWy)

    resid = Y - coef @ X.T
    df_residual = n_samples - n_coef
    sigma = np.sqrt(np.sum(W * resid ** 2, axis=1) / df_residual)

    constant = ~(np.ptp(Y, axis=1) > 0)
    flagged = constant | ~np.isfinite(sigma)
    if degenerate is not None:
        flagged = flagged | np.asarray(degenerate, dtype=bool)

    return {
        'coefficients': coef,
        'cov_unscaled': cov_unscaled,
        'stdev_unscaled': np.sqrt(np.einsum('gii->gi', cov_unscaled)),
        'sigma': sigma,
        'df_residual': df_residual,
        'Amean': Y.mean(axis=1),
        'degenerate': flagged,
        'genes': pd.Index(getattr(E, 'index', range(n_genes)), name='gene_id'),
        'coef_names': list(getattr(design, 'columns', range(n_coef))),
    }


def contrasts_fit(fit, contrast_matrix):
    """
    Re-express a fit in terms of contrasts between coefficients.

    The standard error of each contrast uses the gene's own weighted
    covariance matrix, so no orthogonality assumption is needed.

    Args:
        fit (dict): Output of lm_fit
        contrast_matrix (pd.DataFrame): Coefficients x contrasts

    Returns:
        dict: Copy of the fit with contrast coefficients
    """
    C = contrast_matrix.loc[fit['coef_names']].values

    out = dict(fit)
    out['coefficients'] = fit['coefficients'] @ C
    out['stdev_unscaled'] = np.sqrt(
        np.einsum('ik,gij,jk->gk', C, fit['cov_unscaled'], C)
    )
    out['coef_names'] = list(contrast_matrix.columns)
    out['contrasts'] = contrast_matrix
    return out


# =============================================================================
# VOOM
# =============================================================================

def voom(counts, design, lib_size=None, norm_factors=None, span=VOOM_SPAN):
    """
    Transform counts to log-CPM with precision weights.

    The square root of the residual standard deviation of an unweighted fit
    is smoothed against the average log-count with LOWESS; each observation
    is weighted by the inverse of the predicted variance at its fitted
    log-count.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)
        design (pd.DataFrame): Design matrix (samples x coefficients)
        lib_size (array-like): Library sizes (default: column sums)
        norm_factors (array-like): Normalization factors (default: 1)
        span (float): LOWESS span

    Returns:
        dict: 'E' (log-CPM), 'weights', 'lib_size', 'trend' (sorted x, y),
              'mean_variance' (per-gene sx, sy), 'zero_variance'
    """
    values = np.asarray(counts, dtype=float)
    if lib_size is None:
        lib_size = values.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=float)
    if norm_factors is not None:
        lib_size = lib_size * np.asarray(norm_factors, dtype=float)

    E = np.log2((values + 0.5) / (lib_size + 1) * 1e6)
    fit = lm_fit(E, design)

    sx = fit['Amean'] + np.mean(np.log2(lib_size + 1)) - np.log2(1e6)
    sy = np.sqrt(fit['sigma'])

    use = (values.sum(axis=1) > 0) & np.isfinite(sy)
    if use.sum() < 2:
        raise ValueError("Too few expressed genes to estimate the mean-variance trend")

    trend = lowess(sy[use], sx[use], frac=span, return_sorted=True)
    trend_x, trend_y = trend[:, 0], trend[:, 1]
    floor = max(np.max(trend_y) * 1e-6, 1e-8)

    fitted_logcount = np.log2(1e-6 * 2 ** (fit['coefficients'] @ np.asarray(design, float).T)
                              * (lib_size + 1))
    predicted = np.maximum(np.interp(fitted_logcount, trend_x, trend_y), floor)
    weights = 1 / predicted ** 4

    genes = counts.index if isinstance(counts, pd.DataFrame) else None
    samples = counts.columns if isinstance(counts, pd.DataFrame) else None

    return {
        'E': pd.DataFrame(E, index=genes, columns=samples),
        'weights': pd.DataFrame(weights, index=genes, columns=samples),
        'lib_size': pd.Series(lib_size, index=samples, name='lib_size'),
        'trend': pd.DataFrame({'sx': trend_x, 'sy': trend_y}),
        'mean_variance': pd.DataFrame({'sx': sx, 'sy': sy}, index=genes),
        'zero_variance': values.var(axis=1) == 0,
        'design': design,
    }


# =============================================================================
# EMPIRICAL BAYES
# =============================================================================

def trigamma_inverse(x):
    """Solve trigamma(y) = x for y by Newton iteration."""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    y = 0.5 + 1 / x

    large = x > 1e7
    small = x < 1e-6
    for _ in range(50):
        tri = polygamma(1, y)
        dif = tri * (1 - tri / x) / polygamma(2, y)
        y = y + dif
        if np.max(-dif / y) < 1e-8:
            break

    y = np.where(large, 1 / np.sqrt(x), y)
    y = np.where(small, 1 / x, y)
    return y if y.size > 1 else float(y[0])


def fit_f_dist(s2, df, covariate=None, span=VOOM_SPAN):
    """
    Moment estimation of a scaled F prior for gene-wise variances.

    Args:
        s2 (np.ndarray): Residual variances (NaN entries are ignored)
        df (float): Residual degrees of freedom
        covariate (np.ndarray): Optional covariate (e.g. average expression)
            for a trended prior variance
        span (float): LOWESS span for the trend

    Returns:
        tuple: (prior variance, prior degrees of freedom). The prior
               variance is an array over all genes when a covariate is given.
    """
    s2 = np.asarray(s2, dtype=float)
    ok = np.isfinite(s2) & (s2 > -1e-15)
    x = np.maximum(s2[ok], 0)
    n = len(x)

    if n == 0:
        return np.nan, np.nan
    if n == 1:
        return float(x[0]), 0.0

    m = np.median(x)
    if m == 0:
        m = 1.0
    x = np.maximum(x, 1e-5 * m)

    e = np.log(x) - digamma(df / 2) + np.log(df / 2)

    if covariate is None:
        emean = np.mean(e)
        evar = np.sum((e - emean) ** 2) / (n - 1)
    else:
        covariate = np.asarray(covariate, dtype=float)
        smooth = lowess(e, covariate[ok], frac=span, return_sorted=True)
        emean_ok = np.interp(covariate[ok], smooth[:, 0], smooth[:, 1])
        evar = np.sum((e - emean_ok) ** 2) / (n - 1)
        emean = np.interp(covariate, smooth[:, 0], smooth[:, 1])

    evar = evar - polygamma(1, df / 2)

    if evar > 0:
        df2 = 2 * trigamma_inverse(evar)
        s20 = np.exp(emean + digamma(df2 / 2) - np.log(df2 / 2))
    else:
        df2 = np.inf
        s20 = np.exp(emean)

    return s20, df2


def squeeze_var(s2, df, covariate=None, span=VOOM_SPAN):
    """
    Shrink gene-wise variances toward the empirical-Bayes prior.

    Args:
        s2 (np.ndarray): Residual variances (NaN for undefined genes)
        df (float): Residual degrees of freedom
        covariate (np.ndarray): Optional covariate for a trended prior

    Returns:
        dict: 'var_prior', 'df_prior', 'var_post'
    """
    s2 = np.asarray(s2, dtype=float)
    var_prior, df_prior = fit_f_dist(s2, df, covariate=covariate, span=span)

    if np.isinf(df_prior):
        var_post = np.broadcast_to(var_prior, s2.shape).astype(float).copy()
    else:
        var_post = (df * s2 + df_prior * var_prior) / (df + df_prior)
    var_post[~np.isfinite(s2)] = np.nan

    return {'var_prior': var_prior, 'df_prior': df_prior, 'var_post': var_post}


def tmixture_vector(tstat, stdev_unscaled, df, proportion, v0_lim=None):
    """
    Estimate the prior variance of non-zero coefficients from the top t's.

    Args:
        tstat (np.ndarray): Moderated t-statistics of one contrast
        stdev_unscaled (np.ndarray): Unscaled standard errors
        df (float): Total degrees of freedom
        proportion (float): Expected proportion of DE genes
        v0_lim (tuple): Lower and upper limit for the estimate

    Returns:
        float: Prior variance (NaN if too few genes)
    """
    ok = np.isfinite(tstat)
    tstat = np.abs(tstat[ok])
    v1 = stdev_unscaled[ok] ** 2
    n_genes = len(tstat)

    n_target = int(np.ceil(proportion / 2 * n_genes))
    if n_target < 1:
        return np.nan

    p = max(n_target / n_genes, proportion)
    order = np.argsort(-tstat, kind='mergesort')[:n_target]
    tstat = tstat[order]
    v1 = v1[order]

    r = np.arange(1, n_target + 1)
    p0 = 2 * stats.t.sf(tstat, df)
    ptarget = ((r - 0.5) / n_genes - (1 - p) * p0) / p

    v0 = np.zeros(n_target)
    pos = ptarget > p0
    if pos.any():
        qtarget = stats.t.isf(ptarget[pos] / 2, df)
        v0[pos] = v1[pos] * ((tstat[pos] / qtarget) ** 2 - 1)

    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def ebayes(fit, proportion=EBAYES_PROPORTION, stdev_coef_lim=STDEV_COEF_LIM,
           trend=EBAYES_TREND):
    """
    Empirical-Bayes moderated statistics for a (contrast) fit.

    Args:
        fit (dict): Output of lm_fit or contrasts_fit
        proportion (float): Expected proportion of DE genes (B-statistic)
        stdev_coef_lim (tuple): Limits on the prior SD of non-zero effects
        trend (bool): Shrink toward an intensity-dependent prior variance

    Returns:
        dict: Fit with 't', 'p_value', 'lods', 's2_prior', 'df_prior',
              's2_post', 'df_total'
    """
    coef = fit['coefficients']
    su = fit['stdev_unscaled']
    df_residual = fit['df_residual']
    degenerate = fit['degenerate']

    s2 = np.where(degenerate, np.nan, fit['sigma'] ** 2)
    n_tested = int(np.sum(np.isfinite(s2)))
    if n_tested == 0:
        raise ValueError("No gene has a defined residual variance")

    squeezed = squeeze_var(s2, df_residual,
                           covariate=fit['Amean'] if trend else None)
    s2_prior = squeezed['var_prior']
    df_prior = squeezed['df_prior']
    s2_post = squeezed['var_post']

    df_pooled = df_residual * n_tested
    df_total = min(df_residual + df_prior, df_pooled)

    t = coef / su / np.sqrt(s2_post)[:, None]
    p_value = 2 * stats.t.sf(np.abs(t), df_total)

    # B-statistic
    var_prior_lim = np.asarray(stdev_coef_lim) ** 2 / np.nanmedian(np.atleast_1d(s2_prior))
    var_prior = np.array([
        tmixture_vector(t[:, j], su[:, j], df_total, proportion, var_prior_lim)
        for j in range(t.shape[1])
    ])
    missing = ~np.isfinite(var_prior)
    if missing.any():
        var_prior[missing] = 1 / np.nanmedian(np.atleast_1d(s2_prior))

    r = (su ** 2 + var_prior[None, :]) / su ** 2
    t2 = t ** 2
    if df_prior > 1e6:
        kernel = t2 * (1 - 1 / r) / 2
    else:
        kernel = (1 + df_total) / 2 * np.log((t2 + df_total) / (t2 / r + df_total))
    lods = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel

    out = dict(fit)
    out.update({
        't': t,
        'p_value': p_value,
        'lods': lods,
        's2_prior': s2_prior,
        'df_prior': df_prior,
        's2_post': s2_post,
        'df_total': df_total,
        'var_prior': var_prior,
    })
    return out


# =============================================================================
# RESULTS
# =============================================================================

def top_table(fit, coef=0, sort_by='pvalue'):
    """
    Result table for one contrast of an eBayes fit.

    Benjamini-Hochberg adjustment is applied jointly over every gene with a
    defined p-value. Genes with undefined statistics are kept with NaN
    values and sorted last.

    Args:
        fit (dict): Output of ebayes
        coef (int or str): Contrast index or name
        sort_by (str): 'pvalue' (default), 'lods', 'log2FoldChange' or None

    Returns:
        pd.DataFrame: Columns log2FoldChange, AveExpr, stat, pvalue, padj, lods
    """
    j = fit['coef_names'].index(coef) if isinstance(coef, str) else int(coef)

    pvalue = fit['p_value'][:, j]
    padj = np.full(pvalue.shape, np.nan)
    tested = np.isfinite(pvalue)
    if tested.any():
        padj[tested] = multipletests(pvalue[tested], method='fdr_bh')[1]

    table = pd.DataFrame({
        'log2FoldChange': fit['coefficients'][:, j],
        'AveExpr': fit['Amean'],
        'stat': fit['t'][:, j],
        'pvalue': pvalue,
        'padj': padj,
        'lods': fit['lods'][:, j],
    }, index=fit['genes'])[RESULT_COLUMNS]
    table.index.name = 'gene_id'

    if sort_by == 'pvalue':
        table = table.sort_values('pvalue', kind='mergesort', na_position='last')
    elif sort_by == 'lods':
        table = table.sort_values('lods', ascending=False, kind='mergesort',
                                  na_position='last')
    elif sort_by == 'log2FoldChange':
        order = np.argsort(-np.abs(table['log2FoldChange'].values), kind='mergesort')
        table = table.iloc[order]

    return table


def run_voom_limma(counts, metadata, contrasts=None, group_col=GROUP_COL,
                   batch_col=BATCH_COL, span=VOOM_SPAN, trend=EBAYES_TREND,
                   proportion=EBAYES_PROPORTION, stdev_coef_lim=STDEV_COEF_LIM,
                   normalize=True):
    """
    Run the complete voom / limma workflow on a count matrix.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        contrasts (list): Contrasts ('A-B' strings or (A, B) tuples)
        group_col (str): Polarization column
        batch_col (str): Batch column (None for no batch term)
        span (float): voom LOWESS span
        trend (bool): Trended eBayes prior
        proportion (float): Expected proportion of DE genes
        stdev_coef_lim (tuple): Limits on prior SD of non-zero effects
        normalize (bool): Apply TMM normalization factors

    Returns:
        dict: Results containing:
            - 'tables': {contrast name: result table}
            - 'voom': voom output (log-CPM, weights, trend)
            - 'fit': eBayes fit
            - 'design': design matrix
            - 'norm_factors': TMM factors
    """
    if contrasts is None:
        contrasts = CONTRASTS

    columns = [group_col] if batch_col is None else [group_col, batch_col]
    check_sample_labels(metadata, list(counts.columns), columns)
    counts = check_count_matrix(counts)
    metadata = metadata.loc[list(counts.columns)]

    design = build_design_matrix(metadata, group_col, batch_col)
    C = make_contrast_matrix(contrasts, design)
    print(f"  Design: {design.shape[0]} samples x {design.shape[1]} coefficients "
          f"({', '.join(design.columns)})")

    if normalize:
        norm_factors = calc_norm_factors(counts)
    else:
        norm_factors = pd.Series(1.0, index=counts.columns, name='norm_factor')

    v = voom(counts, design, norm_factors=norm_factors.values, span=span)
    fit = lm_fit(v['E'], design, weights=v['weights'], degenerate=v['zero_variance'])
    fit = ebayes(contrasts_fit(fit, C), proportion=proportion,
                 stdev_coef_lim=stdev_coef_lim, trend=trend)

    n_degenerate = int(np.sum(fit['degenerate']))
    if n_degenerate:
        print(f"  {n_degenerate} gene(s) with zero variance left untested")
    print(f"  Prior df: {fit['df_prior']:.2f}, residual df: {fit['df_residual']}")

    tables = {name: top_table(fit, name) for name in C.columns}

    return {
        'tables': tables,
        'voom': v,
        'fit': fit,
        'design': design,
        'norm_factors': norm_factors,
    }
