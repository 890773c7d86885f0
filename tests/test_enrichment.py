"""Tests for Enrichr and GSVA wrappers (gseapy calls replaced by fakes)."""

import numpy as np
import pandas as pd
import pytest

from macrophage_rnaseq import enrichment
from macrophage_rnaseq.enrichment import (
    compare_gsva_scores,
    run_enrichment,
    run_gsva,
    summarize_enrichment,
)


def fake_enrichr_results(library):
    return pd.DataFrame({
        'Gene_set': [library] * 3,
        'Term': ['inflammatory response (GO:0006954)',
                 'response to lipopolysaccharide (GO:0032496)',
                 'cytokine-mediated signaling pathway (GO:0019221)'],
        'Overlap': ['3/250', '2/300', '2/400'],
        'Adjusted P-value': [1e-3, 1e-6, 0.2],
        'Genes': ['IL6;TNF;CXCL10', 'IL6;TNF', 'IL6;CXCL10'],
    })


class TestRunEnrichment:
    @pytest.fixture
    def enrichr_calls(self, monkeypatch):
        calls = []

        class FakeEnrichr:
            def __init__(self, library):
                self.results = fake_enrichr_results(library)

        def fake_enrichr(gene_list, gene_sets, organism, outdir):
            calls.append({'genes': gene_list, 'library': gene_sets[0], 'organism': organism})
            if gene_sets[0] == 'Broken_Library':
                raise ValueError('Error fetching enrichment results')
            return FakeEnrichr(gene_sets[0])

        monkeypatch.setattr(enrichment.gp, 'enrichr', fake_enrichr)
        return calls

    def test_one_query_per_library(self, enrichr_calls, tmp_path):
        results = run_enrichment(['TNF', 'IL6', 'CXCL10', 'IL6'],
                                 gene_sets=['GO_Biological_Process_2023', 'Broken_Library'],
                                 output_dir=str(tmp_path), prefix='M1_vs_M0_up_')
        assert list(results) == ['GO_Biological_Process_2023']
        assert [c['library'] for c in enrichr_calls] == ['GO_Biological_Process_2023',
                                                        'Broken_Library']
        assert enrichr_calls[0]['genes'] == ['CXCL10', 'IL6', 'TNF']
        assert (tmp_path / 'M1_vs_M0_up_GO_Biological_Process_2023.csv').exists()

    def test_too_few_genes(self, enrichr_calls):
        assert run_enrichment(['IL6', 'TNF']) == {}
        assert enrichr_calls == []

    def test_summary(self):
        results = {
            'GO_Biological_Process_2023': fake_enrichr_results('GO_Biological_Process_2023'),
            'GO_Molecular_Function_2023': pd.DataFrame(),
        }
        summary = summarize_enrichment(results, top_n=2)
        assert list(summary.columns) == ['library', 'Term', 'Adjusted P-value', 'Overlap']
        assert len(summary) == 2
        assert summary['Term'].iloc[0].startswith('response to lipopolysaccharide')

    def test_empty_summary(self):
        summary = summarize_enrichment({})
        assert summary.empty
        assert 'Term' in summary.columns


class TestGsva:
    def test_scores_are_pivoted(self, monkeypatch):
        expression = pd.DataFrame(np.zeros((3, 3)), index=['IL6', 'TNF', 'MRC1'],
                                  columns=['S01', 'S02', 'S03'])
        res2d = pd.DataFrame({
            'Name': ['S03', 'S01', 'S02', 'S03', 'S01', 'S02'],
            'Term': ['INFLAMMATORY'] * 3 + ['REPAIR'] * 3,
            'ES': ['0.5', '0.4', '-0.1', '-0.3', '-0.2', '0.6'],
        })

        class FakeGSVA:
            pass

        seen = {}

        def fake_gsva(**kwargs):
            seen.update(kwargs)
            result = FakeGSVA()
            result.res2d = res2d
            return result

        monkeypatch.setattr(enrichment.gp, 'gsva', fake_gsva)
        scores = run_gsva(expression, {'INFLAMMATORY': ['IL6', 'TNF']}, min_size=1)

        assert seen['min_size'] == 1
        assert seen['kcdf'] == 'Gaussian'
        assert list(scores.columns) == ['S01', 'S02', 'S03']
        assert scores.index.name == 'gene_set'
        assert scores.loc['INFLAMMATORY', 'S03'] == pytest.approx(0.5)
        assert scores.loc['REPAIR', 'S02'] == pytest.approx(0.6)

    def test_differential_activity(self, metadata):
        rng = np.random.default_rng(5)
        scores = pd.DataFrame(rng.normal(scale=0.05, size=(30, len(metadata))),
                              index=[f'SET{i:02d}' for i in range(30)],
                              columns=metadata.index)
        m1 = metadata.index[metadata['polarization'] == 'M1']
        scores.loc['SET00', m1] += 1.0

        tables = compare_gsva_scores(scores, metadata)
        assert set(tables) == {'M1_vs_M0', 'M2_vs_M0', 'M1_vs_M2'}

        table = tables['M1_vs_M0']
        assert table.index.name == 'gene_set'
        assert table.index[0] == 'SET00'
        assert table.loc['SET00', 'log2FoldChange'] == pytest.approx(1.0, abs=0.15)
        assert table.loc['SET00', 'padj'] < 0.05

    def test_reported_count_uses_significance_cutoff(self, metadata, monkeypatch, capsys):
        rng = np.random.default_rng(7)
        scores = pd.DataFrame(rng.normal(scale=0.05, size=(20, len(metadata))),
                              index=[f'SET{i:02d}' for i in range(20)],
                              columns=metadata.index)
        monkeypatch.setattr(enrichment, 'SIG_PADJ', 1.01)
        compare_gsva_scores(scores, metadata, contrasts=['M1-M0'])
        assert 'M1_vs_M0: 20 gene sets with padj < 1.01' in capsys.readouterr().out
