#!/usr/bin/env python3
"""
Script 01: Download and cache GEO count tables.

Downloads:
- The supplementary count table of every series listed in the sample sheet
- Unpacks archives next to the download

Usage:
    python scripts/01_download_data.py [--sample-sheet PATH] [--data-dir DATA_DIR]
"""

import os
import sys
import argparse

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.data_loading import read_sample_sheet, download_series_files
from macrophage_rnaseq.config import DATA_DIR, SAMPLE_SHEET


def main():
    parser = argparse.ArgumentParser(description='Download GEO count tables')
    parser.add_argument(
        '--sample-sheet',
        type=str,
        default=SAMPLE_SHEET,
        help='CSV listing sample, series, polarization and counts_file'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        default=DATA_DIR,
        help='Directory to save downloaded data'
    )
    args = parser.parse_args()

    os.makedirs(args.data_dir, exist_ok=True)

    print("=" * 60)
    print("Macrophage RNA-seq Data Download")
    print("=" * 60)
    print(f"Data directory: {os.path.abspath(args.data_dir)}\n")

    print("[1/2] Reading sample sheet...")
    sheet = read_sample_sheet(args.sample_sheet)
    print(f"  {len(sheet)} samples from {sheet['series'].nunique()} series")
    print(sheet.groupby(['series', 'polarization']).size().unstack(fill_value=0))

    print("\n[2/2] Downloading count tables...")
    paths = download_series_files(sheet, args.data_dir)

    print("\n" + "=" * 60)
    print(f"Download complete! {len(paths)} file(s) in {args.data_dir}")
    print("=" * 60)


if __name__ == '__main__':
    main()
