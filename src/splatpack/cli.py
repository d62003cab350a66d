# ABOUTME: Command-line interface for the splat compressor
# ABOUTME: Loads a materialized splat array (.npz) and runs the compression pipeline

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

import numpy as np

from .errors import AssetIOError
from .formats import QUALITY_PRESETS, ColorFormat, SHFormat, VectorFormat
from .gaussian_splat import SplatArray
from .pipeline import CompressionConfig, Pipeline
from .pipeline.config import DEFAULT_PRESET
from .utils.logging_utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='splatpack',
        description='Compress gaussian splats into chunk-quantized GPU buffers',
        epilog="""
Examples:
  # Default (medium) quality
  splatpack scene.npz ./output

  # Named preset
  splatpack scene.npz ./output --preset very_low

  # Explicit formats
  splatpack scene.npz ./output --pos-format Norm16 --sh-format Cluster16k

The .npz file holds arrays named pos, rot, scale, dc0, opacity and
(optionally) sh with shapes (N,3), (N,4), (N,3), (N,3), (N,) and (N,15,3).
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('input', type=str,
                        help='Input .npz file with splat arrays')
    parser.add_argument('output_dir', type=str,
                        help='Output directory for asset buffers')

    parser.add_argument('--name', type=str, default=None,
                        help='Base name for output files. Default: input file stem')
    parser.add_argument('--preset', type=str, default=None,
                        choices=list(QUALITY_PRESETS),
                        help=f'Quality preset. Default: {DEFAULT_PRESET}')
    parser.add_argument('--pos-format', type=str, default=None,
                        choices=[f.name for f in VectorFormat],
                        help='Position format (overrides preset)')
    parser.add_argument('--scale-format', type=str, default=None,
                        choices=[f.name for f in VectorFormat],
                        help='Scale format (overrides preset)')
    parser.add_argument('--color-format', type=str, default=None,
                        choices=[f.name for f in ColorFormat],
                        help='Color format tag (overrides preset)')
    parser.add_argument('--sh-format', type=str, default=None,
                        choices=[f.name for f in SHFormat],
                        help='Spherical harmonics format (overrides preset)')
    parser.add_argument('--cameras', action='store_true',
                        help='Import cameras.json found next to the input or in a parent folder')
    parser.add_argument('--workers', type=int, default=None,
                        help='Worker threads. Default: one per CPU')
    parser.add_argument('--seed', type=int, default=0,
                        help='Seed for SH clustering. Default: 0')
    parser.add_argument('--cleanup-on-failure', action='store_true',
                        help='Remove buffers written by a failed run')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable verbose logging (DEBUG level)')
    parser.add_argument('--quiet', action='store_true',
                        help='Quiet mode - only show warnings and errors')
    return parser


def load_splats(path: Path) -> SplatArray:
    """Load a splat array saved with ``np.savez`` under SplatArray column names."""
    with np.load(path) as data:
        return SplatArray.from_dict({key: data[key] for key in data.files})


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(verbose=args.verbose, quiet=args.quiet, color=sys.stderr.isatty())

    try:
        input_path = Path(args.input)
        if not input_path.is_file():
            raise FileNotFoundError(f"Input not found: {input_path}")

        config = CompressionConfig.from_preset(
            args.preset or DEFAULT_PRESET,
            output_dir=args.output_dir,
            base_name=args.name or input_path.stem,
            import_cameras=args.cameras,
            source_path=input_path,
            workers=args.workers,
            kmeans_seed=args.seed,
            cleanup_on_failure=args.cleanup_on_failure,
        )
        overrides = {
            'pos_format': args.pos_format,
            'scale_format': args.scale_format,
            'color_format': args.color_format,
            'sh_format': args.sh_format,
        }
        if any(overrides.values()):
            config = dataclasses.replace(
                config, **{k: v for k, v in overrides.items() if v is not None})

        splats = load_splats(input_path)
        asset = Pipeline(config).run(splats)

        logger.info("")
        logger.info("Success! Wrote asset '%s' (%d splats, hash %s)",
                    asset.name, asset.splat_count, asset.data_hash)
        return 0

    except FileNotFoundError as e:
        logger.error("File not found: %s", e)
        return 1
    except AssetIOError as e:
        logger.error("Write failed: %s", e)
        return 1
    except ValueError as e:
        logger.error("Invalid input: %s", e)
        return 1
    except Exception as e:
        logger.error("Compression failed: %s", e)
        if args.verbose:
            logging.getLogger('splatpack').exception("Details")
        return 1


if __name__ == '__main__':
    sys.exit(main())
