"""Tests for normalization, filtering and sample QC."""

import numpy as np
import pandas as pd
import pytest

from macrophage_rnaseq import preprocessing
from macrophage_rnaseq.preprocessing import (
    calc_norm_factors,
    cpm,
    filter_by_expr,
    filter_genes,
    filter_low_count_genes,
    filter_samples_by_clustering,
    full_transform,
    select_variable_genes,
)


class TestCpm:
    def test_columns_sum_to_a_million(self, counts):
        np.testing.assert_allclose(cpm(counts).sum(axis=0), 1e6)

    def test_cpm_by_hand(self):
        counts = pd.DataFrame({'a': [1, 3, 0], 'b': [10, 10, 30]}, index=['G1', 'G2', 'G3'])
        out = cpm(counts)
        assert list(out.index) == ['G1', 'G2', 'G3']
        np.testing.assert_allclose(out['a'], [250000, 750000, 0])
        np.testing.assert_allclose(out['b'], [200000, 200000, 600000])

    def test_log_cpm_of_zero_is_finite(self, counts):
        logcpm = cpm(counts, log=True)
        assert np.isfinite(logcpm.loc['GENE002']).all()
        assert (logcpm.loc['GENE002'] < 5).all()


class TestNormFactors:
    def test_identical_samples(self):
        counts = pd.DataFrame(np.tile(np.arange(1, 101)[:, None], (1, 4)),
                              columns=list('abcd'))
        factors = calc_norm_factors(counts)
        np.testing.assert_allclose(factors.values, 1.0)
        assert factors.name == 'norm_factor'

    def test_sequencing_depth_is_not_composition(self):
        base = np.arange(1, 201)
        counts = pd.DataFrame({'a': base, 'b': base * 3, 'c': base * 2})
        np.testing.assert_allclose(calc_norm_factors(counts).values, 1.0, rtol=1e-6)

    def test_geometric_mean_is_one(self, counts):
        factors = calc_norm_factors(counts)
        assert np.exp(np.mean(np.log(factors))) == pytest.approx(1.0)

    def test_composition_shift(self):
        rng = np.random.default_rng(0)
        base = rng.poisson(500, size=(300, 2)).astype(float)
        shifted = base.copy()
        # A block of genes that soaks up most of the library in sample b
        shifted[:30, 1] *= 20
        factors = calc_norm_factors(shifted)
        # Null genes look depleted in b, so its effective library shrinks
        assert factors[1] < factors[0]

    def test_rnanorm_gets_samples_by_genes(self, monkeypatch):
        seen = {}

        class FakeTMM:
            def __init__(self, m_trim, a_trim):
                seen['trim'] = (m_trim, a_trim)

            def fit(self, X):
                seen['shape'] = X.shape
                return self

            def get_norm_factors(self, X):
                return np.array([0.5, 2.0])

        monkeypatch.setattr(preprocessing, 'TMM', FakeTMM)
        # The all-zero gene is dropped before fitting
        counts = pd.DataFrame({'a': [5, 0, 3, 9], 'b': [2, 0, 8, 1]},
                              index=['G1', 'G2', 'G3', 'G4'])
        factors = calc_norm_factors(counts, logratio_trim=0.2, sum_trim=0.1)

        assert seen == {'trim': (0.2, 0.1), 'shape': (2, 3)}
        assert list(factors.index) == ['a', 'b']
        np.testing.assert_allclose(factors.values, [0.5, 2.0])

    def test_zero_library_size(self):
        counts = pd.DataFrame({'a': [1, 2, 3], 'b': [0, 0, 0]})
        with pytest.raises(ValueError, match='zero library size'):
            calc_norm_factors(counts)


class TestGeneFilters:
    def test_filter_by_expr(self, counts, metadata):
        filtered = filter_by_expr(counts, metadata['polarization'])
        assert 'GENE002' not in filtered.index
        assert 'GENE000' in filtered.index
        assert filtered.shape[1] == counts.shape[1]

    def test_filter_by_expr_keeps_group_specific_gene(self, metadata):
        counts = pd.DataFrame(1000, index=['a', 'b'], columns=metadata.index)
        counts.loc['b'] = 0
        # Expressed in one group of four only
        counts.loc['b', metadata.index[metadata['polarization'] == 'M2']] = 500
        filtered = filter_by_expr(counts, metadata['polarization'])
        assert list(filtered.index) == ['a', 'b']

    def test_filter_low_count_genes(self):
        df = pd.DataFrame({'s1': [0, 10, 0], 's2': [0, 10, 5], 's3': [1, 10, 5], 's4': [0, 10, 5]},
                          index=['g1', 'g2', 'g3'])
        assert list(filter_low_count_genes(df, n=2, p=0.5).index) == ['g2', 'g3']
        assert filter_low_count_genes(df).equals(df)

    def test_biotype_filter(self, monkeypatch):
        gene_info = pd.DataFrame({
            'Gene stable ID': ['ENSG01', 'ENSG02', 'ENSG03'],
            'Gene name': ['IL6', 'MALAT1', 'TNF'],
            'Gene type': ['protein_coding', 'lncRNA', 'protein_coding'],
        })

        class FakeDataset:
            def query(self, attributes):
                return gene_info

        class FakeMart:
            datasets = {'hsapiens_gene_ensembl': FakeDataset()}

        class FakeServer:
            def __init__(self, host):
                self.marts = {'ENSEMBL_MART_ENSEMBL': FakeMart()}

        monkeypatch.setattr(preprocessing, 'Server', FakeServer)

        df = pd.DataFrame({'s1': [1, 2, 3, 4]}, index=['ENSG01.3', 'MALAT1', 'TNF', 'XYZ'])
        assert list(filter_genes(df, drop='non-coding').index) == ['ENSG01.3', 'TNF']
        assert list(filter_genes(df, drop='coding').index) == ['MALAT1']
        assert filter_genes(df, drop=None) is df


class TestSampleClustering:
    @pytest.fixture
    def logcpm_with_outlier(self):
        rng = np.random.default_rng(3)
        n_genes = 400
        columns, data, groups = [], [], []
        for state in ['M0', 'M1']:
            base = rng.normal(scale=2, size=n_genes)
            for i in range(4):
                columns.append(f'{state}_{i}')
                groups.append(state)
                data.append(base + rng.normal(scale=0.2, size=n_genes))
        # Replace one M0 sample with an unrelated profile
        data[3] = rng.normal(scale=2, size=n_genes)
        logcpm = pd.DataFrame(np.array(data).T, columns=columns)
        return logcpm, pd.Series(groups, index=columns)

    def test_outlier_is_dropped(self, logcpm_with_outlier):
        logcpm, groups = logcpm_with_outlier
        kept, report = filter_samples_by_clustering(logcpm, groups, n_genes=1000,
                                                    max_distance=0.15)
        assert 'M0_3' not in kept
        assert len(kept) == 7
        assert not report.loc['M0_3', 'kept']
        assert report.loc['M0_3', 'mean_correlation'] < 0.5
        assert list(report.columns) == ['group', 'cluster', 'mean_correlation', 'kept']

    def test_small_groups_are_kept(self, logcpm_with_outlier):
        logcpm, groups = logcpm_with_outlier
        kept, _ = filter_samples_by_clustering(logcpm, groups, max_distance=0.15,
                                               min_group_size=5)
        assert len(kept) == 8

    def test_select_variable_genes(self):
        logcpm = pd.DataFrame({'a': [0, 1, 5], 'b': [0, 2, -5]}, index=['x', 'y', 'z'])
        assert list(select_variable_genes(logcpm, 2).index) == ['z', 'y']


class TestFullTransform:
    def test_cpm_log_std(self):
        X = np.array([[10, 90], [50, 50], [0, 100]])
        np.testing.assert_allclose(full_transform(X, ['cpm']).sum(axis=1), 1e6)
        std = full_transform(X, ['cpm', 'log', 'std'])
        np.testing.assert_allclose(std.mean(axis=0), 0, atol=1e-12)
