"""
Configuration settings for the macrophage polarization RNA-seq pipeline.

This module centralizes all thresholds and experimental settings
to ensure reproducibility and easy modification.
"""

# =============================================================================
# SAMPLE ANNOTATION
# =============================================================================
# Polarization states (resting, classically and alternatively activated)
POLARIZATION_STATES = ['M0', 'M1', 'M2']

# Metadata columns used for modeling
GROUP_COL = 'polarization'
BATCH_COL = 'series'

# =============================================================================
# CONTRASTS
# =============================================================================
# Each contrast is "group A minus group B"
CONTRASTS = ['M1-M0', 'M2-M0', 'M1-M2']

# =============================================================================
# SIGNIFICANCE THRESHOLDS
# =============================================================================
# A gene is significant iff padj < SIG_PADJ and |log2FC| >= SIG_LFC
SIG_PADJ = 0.05
SIG_LFC = 2.0

# =============================================================================
# GENE FILTERING
# =============================================================================
# filterByExpr-style filter: min count in the smallest group, min total count
FILTER_MIN_COUNT = 10
FILTER_MIN_TOTAL_COUNT = 15

# Biotype filtering ('non-coding' keeps protein-coding genes, None disables)
BIOTYPE_FILTER = None
BIOMART_HOST = 'http://www.ensembl.org'
BIOMART_DATASET = 'hsapiens_gene_ensembl'

# =============================================================================
# SAMPLE FILTERING
# =============================================================================
# Number of most variable genes used for sample clustering
CLUSTER_N_GENES = 1000

# Correlation distance (1 - r) at which the sample dendrogram is cut
CLUSTER_MAX_DISTANCE = 0.15

# =============================================================================
# VOOM / LIMMA
# =============================================================================
# LOWESS span for the voom mean-variance trend
VOOM_SPAN = 0.5

# Expected proportion of differentially expressed genes (B-statistic)
EBAYES_PROPORTION = 0.01

# Limits on the prior standard deviation of non-zero log-fold-changes
STDEV_COEF_LIM = (0.1, 4.0)

# Shrink variances toward an intensity trend instead of a constant
EBAYES_TREND = False

# =============================================================================
# RESULT TABLE
# =============================================================================
RESULT_COLUMNS = ['log2FoldChange', 'AveExpr', 'stat', 'pvalue', 'padj', 'lods']
EXPORT_COLUMNS = ['log2FoldChange', 'pvalue', 'padj', 'AveExpr']

# =============================================================================
# CLASSIFIER TRAINING
# =============================================================================
SEEDS = [2, 4, 8, 16, 32, 64, 127, 255, 511, 1023]

# Number of informative genes kept before training (0 = no filtering)
K_INFORMATIVE = 500

# Number of cross-validation folds for hyperparameter tuning
N_FOLDS = 3

# Number of top genes to extract from each model
N_GENES = 40

# Fraction of data to hold out for testing
TEST_SIZE = 0.30

# Performance metric for optimization
CLF_PERF = 'balanced_accuracy'

# Transformations applied before training
X_LIST = ['cpm', 'log', 'std']

MODELS = ['rf', 'logistic']

# =============================================================================
# ENRICHMENT
# =============================================================================
ORGANISM = 'human'

GO_GENE_SETS = [
    'GO_Biological_Process_2023',
    'GO_Molecular_Function_2023',
    'GO_Cellular_Component_2023',
]

GSVA_GENE_SETS = 'MSigDB_Hallmark_2020'

# Minimum number of genes to attempt enrichment
MIN_ENRICHMENT_GENES = 3

# =============================================================================
# FILE PATHS
# =============================================================================
DATA_DIR = 'data'
RESULTS_DIR = 'results'
FIGURES_DIR = 'figures'

SAMPLE_SHEET = 'data/sample_sheet.csv'
SNAPSHOT_FILENAME = 'filtered_snapshot.pkl'

# Output naming, formatted with the contrast name (e.g. 'M1_vs_M0')
DE_TABLE_TEMPLATE = '{contrast}_de_results.csv'
VOLCANO_TEMPLATE = '{contrast}_volcano.png'
OVERLAP_TEMPLATE = 'overlap_{direction}.png'

GEO_FTP_BASE = 'https://ftp.ncbi.nlm.nih.gov/geo/series'

# =============================================================================
# VISUALIZATION
# =============================================================================
STATE_COLORS = {
    'M0': 'grey',
    'M1': 'firebrick',
    'M2': 'navy',
}

DIRECTION_COLORS = {
    'up': 'firebrick',
    'down': 'navy',
    'ns': 'lightgrey',
}

# Plot DPI for saved figures
PLOT_DPI = 300


def parse_contrast(contrast):
    """
    Split a contrast into its (minuend, subtrahend) group levels.

    Args:
        contrast (str or tuple): 'M1-M0' or ('M1', 'M0')

    Returns:
        tuple: (group_a, group_b) meaning group_a minus group_b
    """
    if isinstance(contrast, str):
        parts = [p.strip() for p in contrast.split('-')]
    else:
        parts = [str(p).strip() for p in contrast]

    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Contrast must name two groups, got: {contrast!r}")
    if parts[0] == parts[1]:
        raise ValueError(f"Contrast compares a group with itself: {contrast!r}")

    return parts[0], parts[1]


def contrast_name(contrast):
    """File-name-safe label for a contrast, e.g. 'M1_vs_M0'."""
    group_a, group_b = parse_contrast(contrast)
    return f"{group_a}_vs_{group_b}"


def print_config():
    """Print current configuration settings."""
    print("=" * 60)
    print("CURRENT CONFIGURATION")
    print("=" * 60)
    print(f"Polarization states: {POLARIZATION_STATES}")
    print(f"Contrasts: {CONTRASTS}")
    print(f"Significance: padj < {SIG_PADJ}, |log2FC| >= {SIG_LFC}")
    print(f"Expression filter: min count {FILTER_MIN_COUNT}, "
          f"min total {FILTER_MIN_TOTAL_COUNT}")
    print(f"Biotype filter: {BIOTYPE_FILTER}")
    print(f"Sample clustering: top {CLUSTER_N_GENES} genes, "
          f"cut at {CLUSTER_MAX_DISTANCE}")
    print(f"voom span: {VOOM_SPAN}, eBayes trend: {EBAYES_TREND}")
    print(f"Seeds: {SEEDS}")
    print(f"Informative genes: {K_INFORMATIVE}")
    print(f"CV folds: {N_FOLDS}")
    print(f"Top genes: {N_GENES}")
    print(f"Test size: {TEST_SIZE}")
    print(f"Metric: {CLF_PERF}")
    print("=" * 60)
