"""Command line interface for StitchVec."""
import argparse
import logging
import sys
from pathlib import Path

from stitchvec.pattern_assembler import legend_to_csv
from stitchvec.pipeline import pipeline_pattern, process_image_pipeline
from stitchvec.svg_export import generate_svg, save_preview_png, save_svg
from stitchvec.types import PatternError, RegionPreset

PRESET_CHOICES = {
    'draft': RegionPreset.DRAFT,
    'standard': RegionPreset.STANDARD,
    'high-detail': RegionPreset.HIGH_DETAIL,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='stitchvec',
        description='Convert raster images to cross-stitch patterns and vector regions'
    )

    parser.add_argument(
        'input',
        type=str,
        help='Input image path'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Output SVG path (default: input.svg)'
    )

    parser.add_argument(
        '--colors',
        type=int,
        default=16,
        help='Number of thread colors, 2-64 (default: 16)'
    )

    parser.add_argument(
        '--detail',
        type=float,
        default=0.5,
        help='Detail level in [0, 1] (default: 0.5)'
    )

    parser.add_argument(
        '--target-regions',
        type=int,
        default=12,
        help='Number of vector regions to merge toward (default: 12)'
    )

    parser.add_argument(
        '--min-area',
        type=int,
        default=None,
        help='Minimum region area in stitches (default: derived from image size)'
    )

    parser.add_argument(
        '--preset',
        type=str,
        choices=sorted(PRESET_CHOICES),
        default=None,
        help='Outline preset (default: derived from --detail)'
    )

    parser.add_argument(
        '--no-catalog',
        action='store_true',
        help='Keep quantized colors instead of snapping to catalog threads'
    )

    parser.add_argument(
        '--legend-csv',
        type=str,
        default=None,
        help='Write the stitch legend as CSV to this path'
    )

    parser.add_argument(
        '--preview',
        type=str,
        default=None,
        help='Write a PNG preview of the stitch grid to this path'
    )

    parser.add_argument(
        '--cache-dir',
        type=str,
        default=None,
        help='Directory for cached region results'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


def main(args=None):
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    # Resolve input path
    input_path = Path(parsed_args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    # Determine output path
    if parsed_args.output:
        output_path = Path(parsed_args.output)
    else:
        output_path = input_path.with_suffix('.svg')

    preset = PRESET_CHOICES[parsed_args.preset] if parsed_args.preset else None
    use_catalog_palette = not parsed_args.no_catalog

    try:
        image_data = input_path.read_bytes()

        region_data = process_image_pipeline(
            image_data,
            parsed_args.colors,
            parsed_args.detail,
            target_region_count=parsed_args.target_regions,
            cache_dir=parsed_args.cache_dir,
            min_region_area=parsed_args.min_area,
            preset=preset,
            use_catalog_palette=use_catalog_palette
        )
        svg_string = generate_svg(region_data.regions, region_data.width, region_data.height)
        save_svg(svg_string, output_path)

        print(f"Regions: {len(region_data.regions)} ({len(region_data.palette)} colors)")
        if region_data.fallback_reason is not None:
            print(f"  Fallback: {region_data.fallback_reason.value}")
        print(f"  SVG: {output_path}")

        if parsed_args.legend_csv or parsed_args.preview:
            # Same settings as the region run so every output shares one palette
            pattern = pipeline_pattern(
                image_data,
                parsed_args.colors,
                parsed_args.detail,
                use_catalog_palette=use_catalog_palette
            )

            if parsed_args.legend_csv:
                mode = 'catalog' if use_catalog_palette else 'raw'
                with open(parsed_args.legend_csv, 'w', encoding='utf-8', newline='') as f:
                    f.write(legend_to_csv(pattern, mode))
                print(f"  Legend: {parsed_args.legend_csv} ({len(pattern.legend)} threads)")

            if parsed_args.preview:
                save_preview_png(pattern, parsed_args.preview)
                print(f"  Preview: {parsed_args.preview}")

    except (PatternError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
