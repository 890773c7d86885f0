"""Smoke tests for the plotting functions (Agg backend)."""

import numpy as np
import pandas as pd
import pytest

from macrophage_rnaseq.limma_voom import build_design_matrix, voom
from macrophage_rnaseq.preprocessing import cpm
from macrophage_rnaseq.visualization import (
    plot_enrichment,
    plot_feature_importance,
    plot_gene_heatmap,
    plot_mean_variance,
    plot_overlap,
    plot_pca,
    plot_sample_dendrogram,
    plot_volcano,
)


class TestVolcano:
    def test_saves_png(self, de_table, tmp_path):
        path = tmp_path / 'volcano.png'
        plot_volcano(de_table, title='M1_vs_M0', path=str(path))
        assert path.exists() and path.stat().st_size > 0

    def test_legend_counts(self, de_table):
        fig = plot_volcano(de_table)
        labels = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
        assert 'up (2)' in labels
        assert 'down (2)' in labels


class TestOverlap:
    @pytest.mark.parametrize('named_sets', [
        {'A': {'x', 'y'}, 'B': {'y', 'z'}},
        {'A': {'x', 'y'}, 'B': {'y', 'z'}, 'C': {'y', 'w'}},
    ])
    def test_venn(self, named_sets, tmp_path):
        path = tmp_path / 'venn.png'
        plot_overlap(named_sets, path=str(path))
        assert path.exists()

    def test_empty_set_falls_back_to_bars(self, tmp_path):
        path = tmp_path / 'bars.png'
        fig = plot_overlap({'A': {'x'}, 'B': set(), 'C': {'x', 'y'}}, path=str(path))
        assert path.exists()
        assert len(fig.axes[0].patches) == 7

    def test_more_than_three_sets(self):
        fig = plot_overlap({n: {'x', n} for n in 'ABCD'})
        assert len(fig.axes[0].patches) == 15

    def test_all_empty(self):
        fig = plot_overlap({'A': set(), 'B': set()})
        texts = [t.get_text() for t in fig.axes[0].texts]
        assert 'No significant genes' in texts


class TestQcPlots:
    def test_pca(self, counts, metadata, tmp_path):
        path = tmp_path / 'pca.png'
        plot_pca(cpm(counts, log=True), metadata['polarization'], path=str(path), n_genes=100)
        assert path.exists()

    def test_heatmap(self, counts, metadata, tmp_path):
        path = tmp_path / 'heatmap.png'
        plot_gene_heatmap(cpm(counts, log=True), metadata['polarization'],
                          gene_list=['GENE000', 'GENE001', 'NOT_A_GENE'], path=str(path))
        assert path.exists()

    def test_heatmap_without_genes(self, counts, metadata):
        fig = plot_gene_heatmap(cpm(counts, log=True), metadata['polarization'], gene_list=[])
        assert 'No genes to show' in [t.get_text() for t in fig.axes[0].texts]

    def test_dendrogram(self, counts, metadata, tmp_path):
        path = tmp_path / 'dendrogram.png'
        plot_sample_dendrogram(cpm(counts, log=True), metadata['polarization'],
                               path=str(path), max_distance=0.15)
        assert path.exists()

    def test_mean_variance(self, counts, metadata, tmp_path):
        path = tmp_path / 'mv.png'
        plot_mean_variance(voom(counts, build_design_matrix(metadata)), path=str(path))
        assert path.exists()


class TestResultPlots:
    def test_feature_importance(self, tmp_path):
        importances = pd.DataFrame({'impurity': np.linspace(1, 0, 30)},
                                   index=[f'G{i}' for i in range(30)])
        path = tmp_path / 'imp.png'
        fig = plot_feature_importance(importances, n=10, path=str(path))
        assert path.exists()
        assert len(fig.axes[0].patches) == 10

    def test_enrichment(self, tmp_path):
        df = pd.DataFrame({
            'Term': ['response to lipopolysaccharide (GO:0032496)', 'inflammatory response'],
            'Adjusted P-value': [1e-8, 1e-3],
        })
        path = tmp_path / 'enr.png'
        plot_enrichment(df, path=str(path))
        assert path.exists()
