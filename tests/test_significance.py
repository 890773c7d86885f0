"""Tests for significance calls and gene set overlaps."""

import numpy as np
import pandas as pd
import pytest

from macrophage_rnaseq.significance import (
    GeneRecord,
    canonical_gene_id,
    classify_genes,
    compare_contrasts,
    count_calls,
    get_sig_genes,
    intersection_sizes,
    overlap_regions,
    overlap_table,
    partition_genes,
    table_to_records,
)


class TestClassifyGenes:
    def test_calls(self, de_table):
        calls = classify_genes(de_table)
        assert calls.to_dict() == {
            'IL6': 'up',
            'CXCL10': 'up',      # log2FC exactly at the cutoff
            'MRC1': 'down',      # log2FC exactly at -cutoff
            'CD163': 'down',
            'TNF': 'ns',         # padj exactly at the cutoff
            'CCL22': 'ns',       # fold change too small
            'ZERO1': 'ns',       # undefined statistics
            'ACTB': 'ns',
        }

    def test_one_call_per_gene(self, de_table):
        calls = classify_genes(de_table)
        assert len(calls) == len(de_table)
        assert set(calls) <= {'up', 'down', 'ns'}

    def test_calls_imply_thresholds(self, random_table):
        table = random_table
        calls = classify_genes(table)
        up = table[calls == 'up']
        down = table[calls == 'down']
        assert ((up['padj'] < 0.05) & (up['log2FoldChange'] >= 2)).all()
        assert ((down['padj'] < 0.05) & (down['log2FoldChange'] <= -2)).all()

    def test_custom_thresholds(self, de_table):
        calls = classify_genes(de_table, padj_thresh=0.1, lfc_thresh=1)
        assert calls['TNF'] == 'up'
        assert calls['CCL22'] == 'up'

    def test_count_calls(self, de_table):
        assert count_calls(de_table) == {'up': 2, 'down': 2, 'ns': 4}

    def test_count_calls_empty_table(self, de_table):
        assert count_calls(de_table.iloc[:0]) == {'up': 0, 'down': 0, 'ns': 0}

    def test_get_sig_genes(self, de_table):
        assert list(get_sig_genes(de_table).index) == ['IL6', 'CXCL10', 'MRC1', 'CD163']
        assert list(get_sig_genes(de_table, direction='down').index) == ['MRC1', 'CD163']
        with pytest.raises(ValueError):
            get_sig_genes(de_table, direction='sideways')

    def test_records(self, de_table):
        records = table_to_records(de_table)
        assert len(records) == len(de_table)
        assert records[0] == GeneRecord('IL6', 5.0, 5.0, 10.0, 1e-8, 1e-6, 8.0)
        assert np.isnan(records[6].padj)


@pytest.fixture
def random_table():
    rng = np.random.default_rng(7)
    p = rng.uniform(size=500) ** 3
    return pd.DataFrame({
        'log2FoldChange': rng.normal(scale=3, size=500),
        'AveExpr': rng.normal(size=500),
        'stat': rng.normal(size=500),
        'pvalue': p,
        'padj': np.minimum(p * 20, 1),
        'lods': rng.normal(size=500),
    }, index=[f'G{i}' for i in range(500)])


class TestCanonicalGeneId:
    @pytest.mark.parametrize('raw, expected', [
        ('ENSG00000111640.15', 'ENSG00000111640'),
        ('ensg00000111640', 'ENSG00000111640'),
        ('ENSMUSG00000057666.2', 'ENSMUSG00000057666'),
        (' il6 ', 'IL6'),
        ('HLA.DRA', 'HLA-DRA'),
        ('X7SK', '7SK'),
        ('XIST', 'XIST'),
        ('NKX2-1', 'NKX2-1'),
    ])
    def test_canonical(self, raw, expected):
        assert canonical_gene_id(raw) == expected

    def test_partition_uses_canonical_ids(self, de_table):
        table = de_table.rename(index={'IL6': 'il6 ', 'MRC1': 'MRC1'})
        partition = partition_genes(table)
        assert partition['up'] == {'IL6', 'CXCL10'}
        assert partition['down'] == {'MRC1', 'CD163'}
        assert len(partition['ns']) == 4


class TestOverlaps:
    @pytest.fixture
    def sets(self):
        rng = np.random.default_rng(11)
        universe = [f'G{i}' for i in range(60)]
        return {
            name: set(rng.choice(universe, size=size, replace=False))
            for name, size in [('A', 25), ('B', 30), ('C', 15)]
        }

    def test_pairwise_at_least_triple(self, sets):
        sizes = intersection_sizes(sets)
        triple = sizes[('A', 'B', 'C')]
        for pair in [('A', 'B'), ('A', 'C'), ('B', 'C')]:
            assert sizes[pair] >= triple

    def test_inclusion_exclusion(self, sets):
        sizes = intersection_sizes(sets)
        union = len(sets['A'] | sets['B'] | sets['C'])
        assert union == (sizes[('A',)] + sizes[('B',)] + sizes[('C',)]
                         - sizes[('A', 'B')] - sizes[('A', 'C')] - sizes[('B', 'C')]
                         + sizes[('A', 'B', 'C')])

    def test_regions_partition_the_union(self, sets):
        regions = overlap_regions(sets)
        assert len(regions) == 7
        seen = set()
        for genes in regions.values():
            assert not (genes & seen)
            seen |= genes
        assert seen == sets['A'] | sets['B'] | sets['C']

    def test_region_membership(self, sets):
        regions = overlap_regions(sets)
        assert regions[('A', 'B', 'C')] == sets['A'] & sets['B'] & sets['C']
        assert regions[('A',)] == sets['A'] - sets['B'] - sets['C']
        assert regions[('A', 'B')] == (sets['A'] & sets['B']) - sets['C']

    def test_empty_sets(self):
        regions = overlap_regions({'A': set(), 'B': {'X'}})
        assert regions == {('A',): set(), ('B',): {'X'}, ('A', 'B'): set()}
        assert intersection_sizes({'A': set(), 'B': set()})[('A', 'B')] == 0

    def test_compare_contrasts(self):
        partitions = {
            'M1_vs_M0': {'up': {'IL6', 'TNF'}, 'down': {'MRC1'}, 'ns': set()},
            'M1_vs_M2': {'up': {'IL6'}, 'down': set(), 'ns': {'TNF'}},
        }
        regions = compare_contrasts(partitions, 'up')
        assert regions[('M1_vs_M0', 'M1_vs_M2')] == {'IL6'}
        assert regions[('M1_vs_M0',)] == {'TNF'}
        with pytest.raises(ValueError):
            compare_contrasts(partitions, 'ns')

    def test_overlap_table(self):
        partitions = {
            'M1_vs_M0': {'up': {'IL6', 'TNF'}, 'down': {'MRC1'}, 'ns': set()},
            'M1_vs_M2': {'up': {'IL6'}, 'down': set(), 'ns': {'TNF'}},
        }
        table = overlap_table(partitions)
        assert list(table.columns) == ['direction', 'region', 'n_sets', 'n_genes', 'genes']
        assert len(table) == 6
        row = table[(table['direction'] == 'up') & (table['n_sets'] == 2)].iloc[0]
        assert row['region'] == 'M1_vs_M0 & M1_vs_M2'
        assert row['genes'] == 'IL6'
