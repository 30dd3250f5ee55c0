from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pyimgtensor.utils.jsonable import to_jsonable


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyimgtensor-inspect",
        description="Print metadata, statistics and validation results for an image.",
    )
    parser.add_argument("image", help="Path (or file:// / data: URI) of the image to inspect")
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Also compute per-channel statistics (histograms are included with --json)",
    )
    parser.add_argument(
        "--validate",
        default=None,
        metavar="CONFIG",
        help=(
            "Validate against constraints from a JSON/YAML file (minWidth, maxHeight, channels, ...); "
            "a 'constraints' section is used when present"
        ),
    )
    parser.add_argument(
        "--mode",
        default=None,
        help="Optional Pillow mode to convert to before inspection (e.g. L, RGB, RGBA)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full report as JSON to stdout",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level for library diagnostics (default: WARNING)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level)), format="%(levelname)s %(name)s: %(message)s")

    try:
        from pyimgtensor.config.io import load_config
        from pyimgtensor.config.options import ValidationConstraints
        from pyimgtensor.inputs.decode import ImageSource, decode_source
        from pyimgtensor.stats import get_image_metadata, get_image_statistics
        from pyimgtensor.validation import validate

        hints = {"mode": str(args.mode)} if args.mode else {}
        buf = decode_source(ImageSource(uri=str(args.image), decode_hints=hints))
        report: dict = {"metadata": get_image_metadata(buf)}
        if bool(args.stats):
            report["statistics"] = get_image_statistics(buf)
        if args.validate is not None:
            raw = load_config(Path(str(args.validate)), section="constraints")
            constraints = ValidationConstraints.from_dict(raw)
            report["validation"] = validate(buf, constraints)
    except Exception as exc:  # noqa: BLE001 - CLI boundary
        print(str(exc), file=sys.stderr)
        return 1

    validation = report.get("validation")
    if bool(args.json):
        print(json.dumps(to_jsonable(report), indent=2, sort_keys=True))
    else:
        meta = report["metadata"]
        print(
            f"{meta.width}x{meta.height} channels={meta.channels} "
            f"dtype={meta.dtype} color_space={meta.color_space} bytes={meta.size_bytes}"
        )
        stats = report.get("statistics")
        if stats is not None:
            means = ", ".join(f"{v:.2f}" for v in stats.per_channel_mean)
            stds = ", ".join(f"{v:.2f}" for v in stats.per_channel_std)
            print(f"mean=[{means}] std=[{stds}] min={stats.min:g} max={stats.max:g}")
        if validation is not None:
            print("valid" if validation.valid else "invalid")
    if validation is not None:
        for issue in validation.issues:
            print(f"issue: {issue}", file=sys.stderr)
        return 0 if validation.valid else 2
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
