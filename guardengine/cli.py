"""
Command Line Interface for nullguard
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .analyzer import create_analyzer
from .analysis import DEFAULT_MAX_ITERATIONS
from .errors import ModelLoadError
from .model_loader import load_compilation
from .reporters import get_reporter

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging"""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog='nullguard',
        description='nullguard - Find public methods that use reference arguments before validating them',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s model.yaml                              # Analyze with default settings
  %(prog)s model.yaml -c .editorconfig             # Read options from an editorconfig
  %(prog)s model.yaml -f sarif -o results.sarif    # SARIF output
  %(prog)s model.yaml --option dotnet_code_quality.CA1062.null_check_validation_methods=Guard.NotNull
        """
    )

    parser.add_argument(
        'model',
        help='Program model document (YAML or JSON) exported by the compiler front end'
    )

    # Output options
    output_group = parser.add_argument_group('Output Options')
    output_group.add_argument(
        '-o', '--output',
        help='Output file path (default: stdout)'
    )
    output_group.add_argument(
        '-f', '--format',
        choices=['console', 'csv', 'json', 'sarif'],
        default='console',
        help='Output format (default: console)'
    )
    output_group.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored output'
    )
    output_group.add_argument(
        '--include-suppressed',
        action='store_true',
        help='Also list diagnostics suppressed in source'
    )

    # Configuration options
    config_group = parser.add_argument_group('Configuration Options')
    config_group.add_argument(
        '-c', '--config',
        action='append',
        dest='config_files',
        default=[],
        help='editorconfig, globalconfig or YAML options file (can be repeated, later files win)'
    )
    config_group.add_argument(
        '--option',
        action='append',
        dest='options',
        default=[],
        metavar='KEY=VALUE',
        help='Set one option entry, overriding configuration files'
    )

    # Analysis options
    analysis_group = parser.add_argument_group('Analysis Options')
    analysis_group.add_argument(
        '-j', '--jobs',
        type=int,
        default=4,
        help='Number of parallel jobs (default: 4)'
    )
    analysis_group.add_argument(
        '--max-iterations',
        type=int,
        default=DEFAULT_MAX_ITERATIONS,
        help=f'Fixpoint rounds per operation before loops are treated conservatively '
             f'(default: {DEFAULT_MAX_ITERATIONS})'
    )

    # Other options
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Debug mode (very verbose)'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser.parse_args(args)


def parse_option_overrides(entries: List[str]) -> Dict[str, str]:
    """Turn KEY=VALUE strings into option entries"""
    overrides = {}
    for entry in entries:
        key, sep, value = entry.partition('=')
        if not sep or not key.strip():
            raise ValueError(f"Option must be KEY=VALUE, got '{entry}'")
        overrides[key.strip()] = value.strip()
    return overrides


def run_analysis(args: argparse.Namespace) -> int:
    """Run the analysis and write the report"""
    compilation = load_compilation(args.model)

    analyzer = create_analyzer(
        config_files=args.config_files,
        overrides=parse_option_overrides(args.options),
        max_workers=args.jobs,
        max_iterations=args.max_iterations,
    )
    result = analyzer.analyze(compilation)

    # Generate report
    reporter_kwargs = {'include_suppressed': args.include_suppressed}
    if args.format == 'console':
        reporter_kwargs['use_colors'] = not args.no_color
        reporter_kwargs['verbose'] = args.verbose

    reporter = get_reporter(args.format, **reporter_kwargs)
    reporter.report(result, args.output)

    if result.errors:
        return EXIT_ERROR
    if result.active_diagnostics():
        return EXIT_FINDINGS
    return EXIT_CLEAN


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parsed_args = parse_args(args)

    setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

    model = Path(parsed_args.model)
    if not model.exists():
        print(f"Error: Model file does not exist: {model}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return run_analysis(parsed_args)
    except ModelLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nAnalysis interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        if parsed_args.debug:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
