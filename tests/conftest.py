"""Shared fixtures: a small synthetic polarization experiment."""

import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest


STATES = ['M0', 'M1', 'M2']
N_PER_STATE = 4
N_GENES = 200


def make_metadata(n_per_state=N_PER_STATE):
    """Samples S01..S12, four per state, two per state in each series."""
    rows = []
    for i in range(n_per_state * len(STATES)):
        state = STATES[i // n_per_state]
        series = 'GSE100001' if i % 2 == 0 else 'GSE100002'
        rows.append({'sample': f'S{i + 1:02d}', 'polarization': state, 'series': series})
    return pd.DataFrame(rows).set_index('sample')


def make_counts(metadata, n_genes=N_GENES, seed=0):
    """
    Poisson counts with a handful of planted effects.

    GENE000 is 2**10 times higher in M1 than elsewhere, GENE001 is 8x lower
    in M2, GENE002 has no counts at all. Everything else is null.
    """
    rng = np.random.default_rng(seed)
    means = np.exp(rng.uniform(np.log(20), np.log(2000), size=n_genes))
    means = np.tile(means[:, None], (1, len(metadata)))

    states = metadata['polarization'].values
    means[0, :] = 20.0
    means[0, states == 'M1'] = 20.0 * 2 ** 10
    means[1, :] = 800.0
    means[1, states == 'M2'] = 100.0
    means[2, :] = 0.0

    counts = rng.poisson(means)
    genes = [f'GENE{i:03d}' for i in range(n_genes)]
    return pd.DataFrame(counts, index=pd.Index(genes, name='gene_id'), columns=metadata.index)


@pytest.fixture
def metadata():
    return make_metadata()


@pytest.fixture
def counts(metadata):
    return make_counts(metadata)


@pytest.fixture
def de_table():
    """Hand-made result table covering the call boundaries."""
    table = pd.DataFrame({
        'log2FoldChange': [5.0, 2.0, -2.0, -3.0, 3.0, 1.9, np.nan, 4.0],
        'AveExpr': [5.0] * 8,
        'stat': [10.0, 4.0, -4.0, -6.0, 2.0, 3.0, np.nan, 1.0],
        'pvalue': [1e-8, 1e-4, 1e-4, 1e-6, 0.01, 1e-5, np.nan, 0.2],
        'padj': [1e-6, 0.01, 0.049, 1e-4, 0.05, 1e-3, np.nan, np.nan],
        'lods': [8.0, 1.0, 1.0, 4.0, -1.0, 2.0, np.nan, -3.0],
    }, index=pd.Index(['IL6', 'CXCL10', 'MRC1', 'CD163', 'TNF', 'CCL22', 'ZERO1', 'ACTB'],
                      name='gene_id'))
    return table
