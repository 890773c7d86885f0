"""Tests for result export and storage."""

import numpy as np
import pytest

from macrophage_rnaseq.utils import (
    de_table_path,
    load_results,
    read_de_table,
    store_results,
    write_de_table,
    write_gene_sets,
)


def test_de_table_columns_and_missing_values(de_table, tmp_path):
    path = de_table_path(str(tmp_path / 'de'), 'M1_vs_M0')
    assert path.endswith('M1_vs_M0_de_results.csv')

    write_de_table(de_table, path)
    with open(path) as f:
        header = f.readline().strip()
    assert header == 'gene_id,log2FoldChange,pvalue,padj,AveExpr,stat,lods'

    table = read_de_table(path)
    assert list(table.index) == list(de_table.index)
    assert np.isnan(table.loc['ZERO1', 'padj'])
    assert table.loc['IL6', 'pvalue'] == pytest.approx(1e-8)


def test_de_table_is_reproducible(de_table, tmp_path):
    first, second = tmp_path / 'a.csv', tmp_path / 'b.csv'
    write_de_table(de_table, str(first))
    write_de_table(de_table.copy(), str(second))
    assert first.read_bytes() == second.read_bytes()


def test_store_and_load(tmp_path):
    results = {'method': 'voom', 'partitions': {'M1_vs_M0': {'up': {'IL6'}}}}
    store_results(results, str(tmp_path / 'out'), name='de_results')
    assert load_results(str(tmp_path / 'out'), name='de_results') == results


def test_load_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_results(str(tmp_path), name='nothing')


def test_write_gene_sets(tmp_path):
    path = tmp_path / 'up_genes.txt'
    write_gene_sets({'M1_vs_M0': {'TNF', 'IL6'}, 'M2_vs_M0': set()}, str(path))
    assert path.read_text() == 'M1_VS_M0 (2):\nIL6, TNF\n\nM2_VS_M0 (0):\n\n\n'
