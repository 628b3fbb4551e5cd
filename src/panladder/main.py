"""Command line interface for panladder."""

import argparse
import sys
from pathlib import Path

from panladder.utils.config import (
    load_configuration, create_default_configuration, save_configuration,
    validate_pipeline_settings, LOG_LEVELS
)
from panladder.core.exceptions import ConfigurationError, PipelineError


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the panladder CLI."""
    parser = argparse.ArgumentParser(
        prog='panladder',
        description='panladder: hierarchical pangenome construction with CD-HIT, BLAST/DIAMOND and MCL',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  panladder proteins.aa.fasta -o output/ -l loci_list.tab

  # Custom thresholds on nucleotide sequences
  panladder genes.fasta -o output/ --steps 80,90,95,98 --nucleotide

  # Generate config template
  panladder --init-config config.yaml
        """.strip()
    )

    parser.add_argument('input_files', nargs='*', type=Path,
                        help='FASTA file(s) of loci sequences (.fasta, .fa, .fas, .aa.fasta)')

    special_group = parser.add_argument_group('Special modes')
    special_group.add_argument('--init-config', type=Path, metavar='FILE',
                               help='Create default configuration file and exit')

    core_group = parser.add_argument_group('Input/Output options')
    core_group.add_argument('--output', '-o', type=Path,
                            help='Output directory [default: input directory]')
    core_group.add_argument('--loci', '-l', type=Path,
                            help='Tab-separated locus/genome table (required for core extraction)')
    core_group.add_argument('--config', '-c', type=Path,
                            help='Configuration file (YAML or JSON)')
    core_group.add_argument('--retain', '-r', action='store_true',
                            help='Do not delete temporary files')
    core_group.add_argument('--verbose', '-v', action='store_true',
                            help='Print tracebacks on failure')
    core_group.add_argument(
        '--log-level', choices=LOG_LEVELS,
        help='Logging verbosity level (default: logging.level from the configuration, INFO)')

    clustering_group = parser.add_argument_group('Clustering options')
    clustering_group.add_argument('--perc', '-p', type=int, metavar='INT',
                                  help='Single %% identity threshold (default: 98)')
    clustering_group.add_argument('--steps', '-s', type=str, metavar='LIST',
                                  help='Comma-separated %% identity thresholds '
                                       '(default: 50,60,70,80,90,95,98)')
    clustering_group.add_argument('--nucleotide', '-n', action='store_true',
                                  help='Create pangenome on nucleotide sequence')
    clustering_group.add_argument('--flat', '-f', type=float, metavar='FLOAT',
                                  help='MCL inflation value (default: 1.5)')

    cdhit_group = parser.add_argument_group('CD-HIT options')
    cdhit_group.add_argument('--cd-low', type=float, metavar='FLOAT',
                             help='Lowest CD-HIT %% identity (default: 98)')
    cdhit_group.add_argument('--cd-step', type=float, metavar='FLOAT',
                             help='CD-HIT step size (default: 0.5)')
    cdhit_group.add_argument('--cd-core-off', action='store_true',
                             help="Don't extract core families during deflation")
    cdhit_group.add_argument('--cd-mem', type=int, metavar='MB',
                             help='CD-HIT memory in MB (default: 5 x input file size)')

    search_group = parser.add_argument_group('Search options')
    search_group.add_argument('--evalue', '-e', type=float, metavar='FLOAT',
                              help='E-value cutoff (default: 1e-6, 0.001 with --diamond)')
    search_group.add_argument('--diamond', action='store_true',
                              help='Use DIAMOND instead of BLAST (protein only)')
    search_group.add_argument('--chunks', type=int, metavar='INT',
                              help='Split the search into this many chunks (default: threads)')
    search_group.add_argument('--hsp-prop', type=float, metavar='FLOAT',
                              help='Remove HSPs below this reciprocal length proportion')
    search_group.add_argument('--hsp-len', type=float, metavar='FLOAT',
                              help='Remove HSPs below this proportion of query length')

    resource_group = parser.add_argument_group('Resource parameters')
    resource_group.add_argument('--threads', '-t', type=int, metavar='INT',
                                help='Number of threads to use (default: 2)')
    resource_group.add_argument('--storage', choices=['auto', 'memory', 'disk'],
                                help='Where intermediate tables are kept (default: auto)')

    parser.add_argument('--version', action='version', version='panladder 1.0.0')

    return parser


def cli() -> None:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    try:
        if args.init_config:
            _handle_init_config(args.init_config)
            return

        if not args.input_files:
            print("Error: at least one input FASTA file is required", file=sys.stderr)
            print("Use --help to see all available options", file=sys.stderr)
            sys.exit(1)

        if args.config:
            if not args.config.exists():
                print(f"Error: Configuration file does not exist: {args.config}", file=sys.stderr)
                sys.exit(1)
            pipeline_config = load_configuration(args.config)
            print(f"Loaded configuration from {args.config}")
        else:
            pipeline_config = create_default_configuration()

        _apply_cli_overrides(pipeline_config, args)
        validate_pipeline_settings(pipeline_config)

        output_dir = args.output or args.input_files[0].resolve().parent

        from panladder.pipeline import run_datasets

        print("Starting pangenome construction...")
        print(f"  Input files: {', '.join(str(p) for p in args.input_files)}")
        print(f"  Output directory: {output_dir}")

        results = run_datasets(
            input_files=args.input_files,
            output_dir=output_dir,
            config=pipeline_config,
            loci_file=args.loci,
            log_level=args.log_level or str(
                pipeline_config.get("logging", {}).get("level", "INFO")
            ).upper()
        )

        failed = [name for name, result in results.items() if "error" in result]
        for name, result in results.items():
            if "error" in result:
                print(f"  {name}: FAILED - {result['error']}", file=sys.stderr)
            else:
                clusters = ", ".join(f"{t}%: {n}" for t, n in result.get("n_clusters", {}).items())
                print(f"  {name}: {result.get('n_loci', 0)} loci, clusters {clusters}")

        if failed:
            sys.exit(1)
        print("Pipeline completed successfully!")

    except (ConfigurationError, PipelineError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


def _handle_init_config(output_path: Path) -> None:
    """Handle --init-config mode."""
    try:
        config = create_default_configuration()
        save_configuration(config, output_path)
        print(f"Created default configuration: {output_path}")
    except ConfigurationError as e:
        print(f"Error creating configuration: {e}", file=sys.stderr)
        sys.exit(1)


def _apply_cli_overrides(config: dict, args: argparse.Namespace) -> None:
    """Apply CLI parameter overrides to configuration."""

    # Clustering parameters
    if args.steps is not None:
        config.setdefault('clustering', {})['thresholds'] = [
            step.strip() for step in args.steps.split(',') if step.strip()
        ]
    if args.perc is not None:
        config.setdefault('clustering', {})['single_threshold'] = args.perc
        if args.steps is None:
            config['clustering']['thresholds'] = []
    if args.flat is not None:
        config.setdefault('clustering', {})['inflation'] = args.flat
    if args.nucleotide:
        config.setdefault('sequence', {})['type'] = 'nucleotide'

    # Deflation parameters
    if args.cd_low is not None:
        config.setdefault('deflation', {})['low'] = args.cd_low
    if args.cd_step is not None:
        config.setdefault('deflation', {})['step'] = args.cd_step
    if args.cd_core_off:
        config.setdefault('deflation', {})['core_extraction'] = False
    if args.cd_mem is not None:
        config.setdefault('deflation', {})['memory_mb'] = args.cd_mem

    # Search parameters
    if args.evalue is not None:
        config.setdefault('similarity', {})['evalue'] = args.evalue
    if args.diamond:
        config.setdefault('similarity', {})['engine'] = 'diamond'
    if args.chunks is not None:
        config.setdefault('similarity', {})['chunks'] = args.chunks
    if args.hsp_prop is not None:
        config.setdefault('similarity', {})['hsp_prop'] = args.hsp_prop
    if args.hsp_len is not None:
        config.setdefault('similarity', {})['hsp_length'] = args.hsp_len

    # Resource and output parameters
    if args.threads is not None:
        config.setdefault('resources', {})['threads'] = args.threads
    if args.storage is not None:
        config.setdefault('artifacts', {})['storage'] = args.storage
    if args.retain:
        config.setdefault('output', {})['retain'] = True


if __name__ == '__main__':
    cli()
