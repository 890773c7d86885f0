"""
Data loading utilities for public macrophage RNA-seq series.

This module handles downloading raw count tables from NCBI GEO,
assembling them into a single genes x samples count matrix, validating
the per-sample polarization and batch labels, and persisting the
filtered snapshot exchanged between pipeline stages.
"""

import os
import pickle
import tarfile
import zipfile
from urllib.request import urlretrieve

import numpy as np
import pandas as pd

from .config import (
    BATCH_COL,
    GEO_FTP_BASE,
    GROUP_COL,
    POLARIZATION_STATES,
)


SAMPLE_SHEET_COLUMNS = ['sample', BATCH_COL, GROUP_COL, 'counts_file']


class SampleLabelError(ValueError):
    """Raised when a sample is missing or has an inconsistent label."""


def geo_supplementary_url(accession, filename):
    """
    Build the GEO FTP URL of a series supplementary file.

    GEO groups series in directories named after the accession with the
    last three digits replaced by 'nnn' (GSE12345 -> GSE12nnn).

    Args:
        accession (str): Series accession (e.g., 'GSE12345')
        filename (str): Supplementary file name

    Returns:
        str: Download URL
    """
    accession = accession.strip().upper()
    if not accession.startswith('GSE') or not accession[3:].isdigit():
        raise ValueError(f"Not a GEO series accession: {accession!r}")

    stub = accession[:-3] + 'nnn' if len(accession) > 6 else 'GSEnnn'
    return f"{GEO_FTP_BASE}/{stub}/{accession}/suppl/{filename}"


def read_sample_sheet(path):
    """
    Read the sample sheet describing which columns of which series to use.

    Required columns: 'sample', 'series', 'polarization', 'counts_file'.
    An optional 'column' field names the sample's column inside the series
    count table when it differs from the sample id. An optional 'member'
    field names the file inside an archived counts_file that holds the
    table, relative to the data directory it is unpacked into.

    Args:
        path (str): CSV file path

    Returns:
        pd.DataFrame: Sample sheet indexed by sample id
    """
    sheet = pd.read_csv(path, dtype=str)
    sheet.columns = [c.strip() for c in sheet.columns]

    missing = [c for c in SAMPLE_SHEET_COLUMNS if c not in sheet.columns]
    if missing:
        raise SampleLabelError(f"Sample sheet {path} lacks columns: {missing}")

    sheet = sheet.apply(lambda col: col.str.strip())

    if 'column' not in sheet.columns:
        sheet['column'] = sheet['sample']
    sheet['column'] = sheet['column'].fillna(sheet['sample'])
    if 'member' not in sheet.columns:
        sheet['member'] = np.nan
    sheet['member'] = sheet['member'].replace('', np.nan)

    duplicated = sheet['sample'][sheet['sample'].duplicated()].tolist()
    if duplicated:
        raise SampleLabelError(f"Duplicated sample ids in sample sheet: {duplicated}")

    return sheet.set_index('sample')


def extract_archive(path, dest):
    """
    Unpack a .tar / .tar.gz / .tgz / .zip archive.

    Args:
        path (str): Archive path
        dest (str): Destination directory

    Returns:
        list: Extracted member names (empty if the file is not an archive)
    """
    os.makedirs(dest, exist_ok=True)

    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path, 'r') as zip_ref:
            zip_ref.extractall(dest)
            return zip_ref.namelist()

    if tarfile.is_tarfile(path):
        with tarfile.open(path, 'r:*') as tar_ref:
            members = [m for m in tar_ref.getmembers() if m.isfile()]
            tar_ref.extractall(dest, members=members, filter='data')
            return [m.name for m in members]

    return []


def download_series_files(sample_sheet, data_dir):
    """
    Download each distinct series count file referenced by the sample sheet.

    Files already present in data_dir are not downloaded again. A download
    is written to a '.part' file and only moved into place once complete,
    so an interrupted transfer is retried on the next run. Archives are
    unpacked into data_dir, where their members are read from.

    Args:
        sample_sheet (pd.DataFrame): Output of read_sample_sheet
        data_dir (str): Download directory

    Returns:
        dict: {(series, counts_file): local path}
    """
    os.makedirs(data_dir, exist_ok=True)
    paths = {}

    pairs = sample_sheet[[BATCH_COL, 'counts_file']].drop_duplicates()
    for series, counts_file in pairs.itertuples(index=False):
        local_path = os.path.join(data_dir, counts_file)
        paths[(series, counts_file)] = local_path

        wanted = []
        if 'member' in sample_sheet.columns:
            rows = sample_sheet[sample_sheet['counts_file'] == counts_file]
            wanted = rows['member'].dropna().unique().tolist()
        unpacked = all(os.path.exists(os.path.join(data_dir, m)) for m in wanted)

        if os.path.exists(local_path):
            print(f"  Count file already exists: {local_path}")
            if unpacked:
                continue
        else:
            url = geo_supplementary_url(series, counts_file)
            print(f"  Downloading {series}/{counts_file}...")
            part_path = local_path + '.part'
            try:
                urlretrieve(url, part_path)
            except Exception:
                if os.path.exists(part_path):
                    os.remove(part_path)
                raise
            os.replace(part_path, local_path)

        members = extract_archive(local_path, data_dir)
        if members:
            print(f"  Extracted {len(members)} file(s) from {counts_file}")

        extracted = {os.path.normpath(m) for m in members}
        missing = [m for m in wanted if os.path.normpath(m) not in extracted]
        if missing:
            raise SampleLabelError(f"Members {missing} not found in {counts_file}")

    return paths


def read_count_table(path):
    """
    Read a delimited count table with gene ids in the first column.

    Tab, comma and whitespace separated files are accepted; gzip
    compression is inferred from the file name.

    Args:
        path (str): Count table path

    Returns:
        pd.DataFrame: Counts (genes x samples) indexed by gene id
    """
    df = pd.read_csv(path, sep=None, engine='python', index_col=0)
    df.index = df.index.astype(str).str.strip()
    df.index.name = 'gene_id'
    df.columns = [str(c).strip() for c in df.columns]

    # featureCounts-style annotation columns
    annotation = [c for c in ['Chr', 'Start', 'End', 'Strand', 'Length']
                  if c in df.columns]
    return df.drop(columns=annotation)


def check_count_matrix(counts):
    """
    Validate a count matrix: unique ids, integer, non-negative, no gaps.

    Args:
        counts (pd.DataFrame): Counts (genes x samples)

    Returns:
        pd.DataFrame: Counts as int64
    """
    if counts.index.duplicated().any():
        dup = counts.index[counts.index.duplicated()].unique().tolist()[:5]
        raise ValueError(f"Duplicated gene ids in count matrix: {dup}")
    if counts.columns.duplicated().any():
        dup = counts.columns[counts.columns.duplicated()].unique().tolist()
        raise ValueError(f"Duplicated sample ids in count matrix: {dup}")

    values = counts.apply(pd.to_numeric, errors='coerce')
    if values.isna().any().any():
        raise ValueError("Count matrix contains missing or non-numeric values")
    if (values < 0).any().any():
        raise ValueError("Count matrix contains negative values")
    if not np.allclose(values.values, np.round(values.values)):
        raise ValueError("Count matrix contains non-integer values")

    return values.round().astype(np.int64)


def build_count_matrix(sample_sheet, data_dir):
    """
    Assemble the genes x samples count matrix from per-series tables.

    Only genes present in every series are kept. Gene ids are compared in
    canonical form so that 'HLA.DRA' and 'HLA-DRA' join.

    Args:
        sample_sheet (pd.DataFrame): Output of read_sample_sheet
        data_dir (str): Directory holding the downloaded count tables

    Returns:
        pd.DataFrame: Count matrix with sample-sheet ids as columns
    """
    from .significance import canonical_gene_id

    # Tables shipped inside an archive are read from the unpacked member
    table_files = sample_sheet['counts_file']
    if 'member' in sample_sheet.columns:
        table_files = sample_sheet['member'].fillna(table_files)

    blocks = []
    for counts_file, rows in sample_sheet.groupby(table_files, sort=False):
        table = read_count_table(os.path.join(data_dir, counts_file))

        missing = [c for c in rows['column'] if c not in table.columns]
        if missing:
            raise SampleLabelError(
                f"Columns {missing} not found in {counts_file}"
            )

        block = table[list(rows['column'])]
        block.columns = list(rows.index)
        block.index = [canonical_gene_id(g) for g in block.index]
        # Collapse ids that only differed in version or formatting
        block = block.groupby(level=0, sort=False).sum()
        blocks.append(block)

        print(f"  {counts_file}: {block.shape[0]} genes x {block.shape[1]} samples")

    counts = pd.concat(blocks, axis=1, join='inner')
    counts = counts[list(sample_sheet.index)]
    counts.index.name = 'gene_id'

    print(f"  Count matrix (genes x samples): {counts.shape}")
    return check_count_matrix(counts)


def build_sample_metadata(sample_sheet):
    """Per-sample metadata (polarization, series) from the sample sheet."""
    metadata = sample_sheet[[GROUP_COL, BATCH_COL]].copy()
    metadata.index.name = 'sample'
    return metadata


def check_sample_labels(metadata, samples, columns=(GROUP_COL, BATCH_COL)):
    """
    Fail if any sample lacks a metadata row or a required label.

    Args:
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        samples (list): Sample ids that must be annotated
        columns (tuple): Label columns that must be populated
    """
    absent = [c for c in columns if c not in metadata.columns]
    if absent:
        raise SampleLabelError(f"Metadata lacks label columns: {absent}")

    unannotated = [s for s in samples if s not in metadata.index]
    if unannotated:
        raise SampleLabelError(f"Samples without metadata: {unannotated}")

    subset = metadata.loc[list(samples), list(columns)]
    blank = subset.isna() | (subset.astype(str).apply(lambda c: c.str.strip()) == '')
    if blank.any().any():
        bad = {col: subset.index[blank[col]].tolist()
               for col in columns if blank[col].any()}
        raise SampleLabelError(f"Samples with missing labels: {bad}")


def validate_sample_metadata(counts, metadata, states=None):
    """
    Validate sample metadata against the count matrix.

    Every count column needs a metadata row with a polarization state from
    the configured set and a batch label.

    Args:
        counts (pd.DataFrame): Count matrix (genes x samples)
        metadata (pd.DataFrame): Sample metadata indexed by sample id
        states (list): Allowed polarization states

    Returns:
        pd.DataFrame: Metadata aligned to the count columns
    """
    if states is None:
        states = POLARIZATION_STATES

    if metadata.index.duplicated().any():
        dup = metadata.index[metadata.index.duplicated()].unique().tolist()
        raise SampleLabelError(f"Duplicated sample ids in metadata: {dup}")

    check_sample_labels(metadata, list(counts.columns))
    aligned = metadata.loc[list(counts.columns)].copy()

    unknown = sorted(set(aligned[GROUP_COL]) - set(states))
    if unknown:
        raise SampleLabelError(
            f"Unknown polarization states {unknown}; expected one of {states}"
        )

    return aligned


def save_snapshot(path, **artifacts):
    """
    Persist pipeline artifacts (counts, metadata, reports) as one pickle.

    Args:
        path (str): Output file path
        **artifacts: Named objects to store
    """
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    with open(path, 'wb') as f:
        pickle.dump(artifacts, f)

    print(f"  Snapshot saved to: {path}")


def load_snapshot(path):
    """Load a snapshot written by save_snapshot."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Snapshot not found: {path}\n"
            f"Run 02_preprocess.py first."
        )

    with open(path, 'rb') as f:
        return pickle.load(f)
