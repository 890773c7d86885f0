"""
Macrophage Polarization RNA-seq Analysis Pipeline

This package provides tools for comparing M0, M1 and M2 macrophage
transcriptomes pooled from several GEO series: differential expression with
limma-voom, significance calls, overlaps between contrasts, classifier-based
gene ranking and pathway enrichment.

Modules:
    - data_loading: Sample sheet, GEO downloads and count matrix assembly
    - preprocessing: Normalization, gene filtering and sample QC
    - limma_voom: voom / limma differential expression
    - deseq2_utils: DESeq2 differential expression
    - significance: Up / down calls and gene set overlaps
    - feature_selection: Feature importance and gene selection
    - models: Classifier implementations
    - enrichment: GO enrichment and GSVA
    - visualization: Plotting and visualization
    - utils: General utilities
    - config: Configuration settings
"""

from .data_loading import (
    SampleLabelError,
    read_sample_sheet,
    geo_supplementary_url,
    download_series_files,
    extract_archive,
    read_count_table,
    build_count_matrix,
    build_sample_metadata,
    validate_sample_metadata,
    save_snapshot,
    load_snapshot,
)

from .preprocessing import (
    cpm,
    calc_norm_factors,
    filter_by_expr,
    filter_low_count_genes,
    filter_genes,
    filter_samples_by_clustering,
    full_transform,
)

from .limma_voom import (
    DesignMatrixError,
    build_design_matrix,
    make_contrast_matrix,
    voom,
    lm_fit,
    contrasts_fit,
    ebayes,
    top_table,
    run_voom_limma,
)

from .deseq2_utils import (
    run_deseq2,
    get_results,
    run_full_dgea,
)

from .significance import (
    GeneRecord,
    table_to_records,
    canonical_gene_id,
    classify_genes,
    get_sig_genes,
    count_calls,
    partition_genes,
    intersection_sizes,
    overlap_regions,
    compare_contrasts,
    overlap_table,
)

from .feature_selection import (
    filter_informative_genes,
    permutation_feature_importance,
    get_symbol_from_id,
)

from .models import (
    run_random_forest,
    run_logistic_regression,
    rank_features_across_seeds,
)

from .enrichment import (
    run_enrichment,
    summarize_enrichment,
    run_gsva,
    compare_gsva_scores,
)

from .visualization import (
    plot_volcano,
    plot_overlap,
    plot_pca,
    plot_gene_heatmap,
    plot_sample_dendrogram,
    plot_mean_variance,
    plot_feature_importance,
    plot_enrichment,
)

from .utils import (
    write_de_table,
    read_de_table,
    store_results,
    load_results,
)

from .config import (
    POLARIZATION_STATES,
    CONTRASTS,
    SIG_PADJ,
    SIG_LFC,
    SEEDS,
    RESULTS_DIR,
    print_config,
)

__version__ = '1.0.0'
