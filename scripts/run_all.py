#!/usr/bin/env python3
"""
Main orchestration script - runs the complete analysis pipeline.

This script coordinates all pipeline steps:
1. Download data (optional, if not cached)
2. Preprocess data
3. Differential expression
4. Train classifiers
5. GO enrichment
6. GSVA pathway activity

Usage:
    # Run the whole pipeline
    python scripts/run_all.py

    # Skip download step (data already cached)
    python scripts/run_all.py --skip-download

    # Offline run (no Enrichr / GSVA library download)
    python scripts/run_all.py --skip-download --skip-enrichment
"""

import os
import sys
import argparse
import subprocess
from datetime import datetime

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from macrophage_rnaseq.config import DATA_DIR, RESULTS_DIR, SAMPLE_SHEET, print_config


def run_step(script_name, args_list, step_name):
    """Run a pipeline step as a subprocess."""
    print(f"\n{'='*60}")
    print(f"STEP: {step_name}")
    print(f"{'='*60}")

    script_path = os.path.join(os.path.dirname(__file__), script_name)
    cmd = [sys.executable, script_path] + args_list

    print(f"Running: {' '.join(cmd)}\n")

    result = subprocess.run(cmd, capture_output=False)

    if result.returncode != 0:
        print(f"  Error: {step_name} exited with code {result.returncode}")
        return False

    return True


def run_pipeline(sample_sheet, data_dir, results_dir, method='voom', skip_download=False,
                 skip_models=False, skip_enrichment=False):
    """
    Run every stage in order.

    A failed stage stops the run, since each stage reads the previous
    stage's output.

    Returns:
        list: Names of the stages that failed
    """
    steps = []
    if not skip_download:
        steps.append(('01_download_data.py',
                      ['--sample-sheet', sample_sheet, '--data-dir', data_dir],
                      'Download Data'))
    steps.append(('02_preprocess.py',
                  ['--sample-sheet', sample_sheet, '--data-dir', data_dir,
                   '--output-dir', results_dir],
                  'Preprocess'))
    steps.append(('03_differential_expression.py',
                  ['--data-dir', results_dir, '--method', method],
                  f'Differential Expression ({method})'))
    if not skip_models:
        steps.append(('04_train_models.py', ['--data-dir', results_dir], 'Train Models'))
    if not skip_enrichment:
        steps.append(('05_run_enrichment.py',
                      ['--data-dir', results_dir, '--method', method],
                      'GO Enrichment'))
        steps.append(('06_run_gsva.py', ['--data-dir', results_dir], 'GSVA'))

    failed = []
    for script_name, args_list, step_name in steps:
        if not run_step(script_name, args_list, step_name):
            failed.append(step_name)
            break

    return failed


def main():
    parser = argparse.ArgumentParser(
        description='Macrophage Polarization RNA-seq Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the whole pipeline
  python scripts/run_all.py

  # Use DESeq2 instead of voom / limma
  python scripts/run_all.py --method deseq2

  # Show configuration
  python scripts/run_all.py --show-config
        """
    )

    parser.add_argument(
        '--sample-sheet',
        type=str,
        default=SAMPLE_SHEET,
        help='Sample sheet CSV'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        default=DATA_DIR,
        help='Directory for downloaded data'
    )
    parser.add_argument(
        '--results-dir',
        type=str,
        default=RESULTS_DIR,
        help='Directory for pipeline results'
    )
    parser.add_argument(
        '--method',
        type=str,
        default='voom',
        choices=['voom', 'deseq2'],
        help='Differential expression method'
    )
    parser.add_argument(
        '--skip-download',
        action='store_true',
        help='Skip data download step'
    )
    parser.add_argument(
        '--skip-models',
        action='store_true',
        help='Skip classifier training'
    )
    parser.add_argument(
        '--skip-enrichment',
        action='store_true',
        help='Skip enrichment and GSVA steps'
    )
    parser.add_argument(
        '--show-config',
        action='store_true',
        help='Show current configuration and exit'
    )

    args = parser.parse_args()

    # Show configuration
    if args.show_config:
        print_config()
        return

    start_time = datetime.now()

    # Print header
    print("\n" + "=" * 60)
    print("Macrophage Polarization RNA-seq Pipeline")
    print("=" * 60)
    print(f"\nStart time: {start_time}")
    print_config()

    failed = run_pipeline(
        args.sample_sheet,
        args.data_dir,
        args.results_dir,
        method=args.method,
        skip_download=args.skip_download,
        skip_models=args.skip_models,
        skip_enrichment=args.skip_enrichment,
    )

    # Summary
    end_time = datetime.now()
    print("\n" + "=" * 60)
    print("PIPELINE COMPLETE" if not failed else "PIPELINE STOPPED")
    print("=" * 60)
    print(f"End time: {end_time}")
    print(f"Duration: {end_time - start_time}")

    if failed:
        print("\nFailed steps:")
        for step_name in failed:
            print(f"  - {step_name}")
        sys.exit(1)

    print("\nPipeline complete!")


if __name__ == '__main__':
    main()
