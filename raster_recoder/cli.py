"""Command-line interface wiring for the raster recoder."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

try:  # pragma: no cover - optional dependency
    import yaml
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    yaml = None

from .config import (
    AVIF_ALPHA_MODES,
    CODEC_NAMES,
    DEFAULT_QUALITY,
    JPEG_COLORSPACES,
    SUBSAMPLING_CHOICES,
    AvifOptions,
    Codec,
    CodecOptions,
    EncoderConfig,
    FilterType,
    FitMode,
    JpegOptions,
    JxlOptions,
    OxiPngOptions,
    PngOptions,
    QuantizationConfig,
    ResizeValue,
    WebPOptions,
)
from .errors import ConfigError
from .io_utils import CodecCapabilities
from .pipeline import BatchSummary, ProcessingJob, collect_files, common_root, output_path, process_batch
from .preprocessing import OperationRequest, PipelineSettings, POSITION_STRIDE, RequestKind

LOGGER = logging.getLogger("raster_recoder")

DEFAULT_SUFFIX = "@updated"

# Flags whose order on the command line is the execution order.
ORDERED_FLAGS = {
    "--resize": RequestKind.RESIZE,
    "--quantization": RequestKind.QUANTIZATION,
    "--premultiply": RequestKind.PREMULTIPLY,
    "--icc": RequestKind.ICC,
}
_ORDERED_DESTS = {kind.value for kind in ORDERED_FLAGS.values()}


def _load_config_data(path: Path) -> Mapping[str, Any]:
    """Load configuration from JSON or YAML file.

    Args:
        path: Path to configuration file (.json, .yaml, or .yml).

    Returns:
        Dictionary mapping configuration keys to values.

    Raises:
        FileNotFoundError: If configuration file doesn't exist.
        RuntimeError: If YAML file requested but pyyaml not installed.
        ValueError: If file content is not a valid mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            if yaml is None:
                raise RuntimeError("YAML configuration files require the optional 'pyyaml' dependency")
            data = yaml.safe_load(path.read_text())  # type: ignore[no-untyped-call]
        else:
            data = json.loads(path.read_text())
    except RuntimeError:
        raise
    except Exception as exc:  # pragma: no cover - exact exception varies by backend
        raise ValueError(f"Unable to parse configuration file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping of option names to values")
    return data


def _normalise_config_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Convert configuration keys to CLI-compatible underscore format."""

    normalised: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise ValueError("Configuration keys must be strings")
        normalised[key.replace("-", "_")] = value
    return normalised


def _build_parser_aliases(parser: argparse.ArgumentParser) -> tuple[dict[str, argparse.Action], dict[str, str]]:
    """Build lookup tables mapping argument names to parser actions.

    Ordered operation flags are left out: their meaning depends on where
    they appear on the command line, which a config file cannot express.
    """
    dest_to_action: dict[str, argparse.Action] = {}
    alias_to_dest: dict[str, str] = {}
    actions = list(parser._get_positional_actions()) + list(parser._get_optional_actions())
    for action in actions:
        if action.dest in {argparse.SUPPRESS, "help", "config", "inputs"} or action.dest in _ORDERED_DESTS:
            continue
        dest_to_action[action.dest] = action
        alias_to_dest[action.dest.replace("-", "_")] = action.dest
        for option_string in action.option_strings:
            alias = option_string.lstrip("-").replace("-", "_")
            alias_to_dest[alias] = action.dest
    return dest_to_action, alias_to_dest


def _coerce_config_value(
    action: argparse.Action, value: Any, *, source: Path, key: str
) -> Any:  # pragma: no cover - thin wrapper around argparse semantics
    """Convert configuration values so they match argparse expectations."""

    if value is None:
        return None

    if isinstance(action, (argparse._StoreTrueAction, argparse._StoreFalseAction)):  # type: ignore[attr-defined]
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
        raise ValueError(
            f"Invalid boolean for '{key}' in {source}: expected true/false value, got {value!r}"
        )

    if action.type is not None:
        try:
            converted = action.type(value)
        except Exception as exc:  # pragma: no cover - delegated to argparse
            raise ValueError(f"Invalid value for '{key}' in {source}: {exc}") from exc
    else:
        converted = value

    if action.choices is not None and converted not in action.choices:
        raise ValueError(
            f"Invalid value for '{key}' in {source}: {converted!r} (choose from {sorted(action.choices)})"
        )

    return converted


def _resize_value(text: str) -> ResizeValue:
    try:
        return ResizeValue.parse(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def occurrence_positions(argv: Sequence[str]) -> Dict[RequestKind, List[int]]:
    """Return the pipeline positions of every ordered flag occurrence.

    A flag's position is its token index times ``POSITION_STRIDE`` so the
    slot after each operation stays free. Tokens after ``--`` are operands.
    """

    positions: Dict[RequestKind, List[int]] = {kind: [] for kind in ORDERED_FLAGS.values()}
    for index, token in enumerate(argv):
        if token == "--":
            break
        flag = token.split("=", 1)[0]
        kind = ORDERED_FLAGS.get(flag)
        if kind is not None:
            positions[kind].append(index * POSITION_STRIDE)
    return positions


def build_requests(args: argparse.Namespace, argv: Sequence[str]) -> List[OperationRequest]:
    """Pair each parsed ordered-flag value with the position it appeared at."""

    positions = occurrence_positions(argv)
    values: Dict[RequestKind, List[Any]] = {
        RequestKind.RESIZE: list(args.resize or []),
        RequestKind.QUANTIZATION: list(args.quantization or []),
        RequestKind.PREMULTIPLY: [None] * len(args.premultiply or []),
        RequestKind.ICC: [None] * len(args.icc or []),
    }
    requests: List[OperationRequest] = []
    for kind, kind_values in values.items():
        kind_positions = positions[kind]
        if len(kind_positions) != len(kind_values):
            raise ValueError(
                f"Could not locate every --{kind.value} occurrence on the command line "
                f"({len(kind_values)} parsed, {len(kind_positions)} found)"
            )
        requests.extend(
            OperationRequest(position, kind, value) for position, value in zip(kind_positions, kind_values)
        )
    return sorted(requests, key=lambda request: request.position)


_OPTION_BUILDERS: Dict[Codec, Callable[[argparse.Namespace], CodecOptions]] = {
    Codec.JPEG: lambda args: JpegOptions(
        progressive=not args.baseline,
        optimize_coding=not args.no_optimize_coding,
        subsampling=args.subsampling,
        smoothing=args.smoothing,
        colorspace=args.colorspace,
        chroma_quality=args.chroma_quality,
    ),
    Codec.PNG: lambda args: PngOptions(compress_level=args.png_level),
    Codec.OXIPNG: lambda args: OxiPngOptions(
        level=args.oxipng_level, strip_metadata=args.strip, interlace=args.interlace
    ),
    Codec.WEBP: lambda args: WebPOptions(
        lossless=args.lossless, method=args.webp_method, alpha_quality=args.alpha_quality, exact=args.exact
    ),
    Codec.AVIF: lambda args: AvifOptions(
        speed=args.avif_speed, subsampling=args.subsampling or "4:2:0", alpha_mode=args.alpha_mode
    ),
    Codec.JPEG_XL: lambda args: JxlOptions(lossless=args.lossless, effort=args.jxl_effort),
}


def build_encoder_config(args: argparse.Namespace) -> EncoderConfig:
    """Construct the validated encoder configuration from parsed arguments."""

    codec = Codec.from_name(args.format)
    options = _OPTION_BUILDERS[codec](args)
    config = EncoderConfig.build(args.quality, codec, options=options)
    LOGGER.debug("Using encoder config: %s", config)
    return config


def build_pipeline_settings(args: argparse.Namespace) -> PipelineSettings:
    dithering = 1.0 if args.dithering is None else args.dithering / 100.0
    # Validates the dithering level even when no quantization was requested.
    QuantizationConfig(dithering=dithering)
    return PipelineSettings(
        filter_type=FilterType.from_name(args.filter),
        fit=FitMode(args.fit),
        dithering=dithering,
    )


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert, resize and quantize images between JPEG, PNG, WebP, AVIF and JPEG-XL.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional configuration file (JSON by default, YAML when 'pyyaml' is installed)",
    )
    parser.add_argument("inputs", nargs="+", help="Input files, directories or glob patterns")

    output = parser.add_argument_group("output")
    output.add_argument(
        "-d",
        "--directory",
        type=Path,
        default=None,
        help="Write results here instead of next to each input",
    )
    output.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Walk input directories recursively and mirror their structure below --directory",
    )
    output.add_argument(
        "-s",
        "--suffix",
        nargs="?",
        const=DEFAULT_SUFFIX,
        default=None,
        help=f"Append a suffix to output file stems ('{DEFAULT_SUFFIX}' when given without a value)",
    )
    output.add_argument(
        "-b",
        "--backup",
        action="store_true",
        help="Rename each input to '<name>.backup' before writing its output",
    )
    output.add_argument(
        "--overwrite",
        action="store_true",
        help="Allow overwriting existing files in the destination",
    )
    output.add_argument("--dry-run", action="store_true", help="Preview the work without writing any files")
    output.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress reporting (useful for minimal or non-interactive environments)",
    )
    output.add_argument(
        "-t",
        "--threads",
        type=int,
        default=os.cpu_count() or 1,
        help="Number of worker processes; 1 processes files in this process",
    )

    codec = parser.add_argument_group("codec")
    codec.add_argument(
        "-f",
        "--format",
        default=Codec.JPEG.value,
        choices=CODEC_NAMES,
        help="Output codec",
    )
    codec.add_argument(
        "-q",
        "--quality",
        type=float,
        default=DEFAULT_QUALITY,
        help="Encoder quality (0-100)",
    )
    codec.add_argument("--baseline", action="store_true", help="JPEG: write baseline instead of progressive scans")
    codec.add_argument(
        "--no-optimize-coding",
        action="store_true",
        help="JPEG: skip Huffman table optimization",
    )
    codec.add_argument("--subsampling", default=None, choices=SUBSAMPLING_CHOICES, help="JPEG/AVIF chroma subsampling")
    codec.add_argument("--smoothing", type=int, default=0, help="JPEG: smoothing factor (0-100)")
    codec.add_argument(
        "--colorspace",
        default="ycbcr",
        choices=JPEG_COLORSPACES,
        help="JPEG: color space stored in the file",
    )
    codec.add_argument(
        "--chroma-quality",
        type=int,
        default=None,
        help="JPEG: separate quality (1-100) for the chroma planes",
    )
    codec.add_argument("--png-level", type=int, default=6, help="PNG: zlib compression level (0-9)")
    codec.add_argument("--oxipng-level", type=int, default=2, help="oxipng: optimization level (0-6)")
    codec.add_argument("--strip", action="store_true", help="oxipng: strip non-critical metadata chunks")
    codec.add_argument("--interlace", action="store_true", help="oxipng: write Adam7-interlaced output")
    codec.add_argument("--lossless", action="store_true", help="WebP/JPEG-XL: encode losslessly")
    codec.add_argument("--webp-method", type=int, default=4, help="WebP: speed/size trade-off (0-6)")
    codec.add_argument("--alpha-quality", type=int, default=100, help="WebP: alpha plane quality (0-100)")
    codec.add_argument("--exact", action="store_true", help="WebP: keep RGB values under transparent pixels")
    codec.add_argument("--avif-speed", type=int, default=6, help="AVIF: encoder speed (0 slowest - 10 fastest)")
    codec.add_argument(
        "--alpha-mode",
        default="unassociated-clean",
        choices=AVIF_ALPHA_MODES,
        help="AVIF: how color under transparent pixels is stored",
    )
    codec.add_argument("--jxl-effort", type=int, default=7, help="JPEG-XL: encoder effort (1-9)")

    ops = parser.add_argument_group(
        "preprocessing",
        "Operations run in the order they appear on the command line and may repeat.",
    )
    ops.add_argument(
        "--resize",
        action="append",
        type=_resize_value,
        default=None,
        metavar="VALUE",
        help="Resize: '@1.5' multiplier, '150%%', '800x600', '800x_' or '_x600'",
    )
    ops.add_argument(
        "--filter",
        default=FilterType.LANCZOS3.value,
        choices=[member.value for member in FilterType],
        help="Resampling filter used by every --resize",
    )
    ops.add_argument(
        "--fit",
        default=FitMode.STRETCH.value,
        choices=[member.value for member in FitMode],
        help="'cover' crops to the target aspect ratio before resizing",
    )
    ops.add_argument(
        "--quantization",
        action="append",
        nargs="?",
        const=75,
        type=int,
        default=None,
        metavar="QUALITY",
        help="Reduce to a shared palette; QUALITY 0-100 (75 when omitted)",
    )
    ops.add_argument(
        "--dithering",
        nargs="?",
        const=75.0,
        type=float,
        default=None,
        metavar="LEVEL",
        help="Dithering level 0-100 for --quantization (75 when omitted, full when not given)",
    )
    ops.add_argument(
        "--premultiply",
        action="append_const",
        const=True,
        default=None,
        help="Premultiply alpha around the operation flag that follows",
    )
    ops.add_argument(
        "--icc",
        action="append_const",
        const=True,
        default=None,
        help="Convert pixels from the embedded ICC profile to sRGB",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )

    argv_list = list(argv) if argv is not None else sys.argv[1:]

    config_pass, _ = parser.parse_known_args(argv_list)
    if config_pass.config is not None:
        try:
            raw_config = _load_config_data(config_pass.config)
            normalised_config = _normalise_config_keys(raw_config)
            dest_to_action, alias_to_dest = _build_parser_aliases(parser)

            converted_defaults: dict[str, Any] = {}
            for key, value in normalised_config.items():
                dest = alias_to_dest.get(key)
                if dest is None:
                    raise ValueError(
                        f"Unknown configuration option '{key}' in {config_pass.config}"
                    )
                action = dest_to_action[dest]
                converted_defaults[dest] = _coerce_config_value(
                    action, value, source=config_pass.config, key=key
                )

            parser.set_defaults(**converted_defaults)
        except (OSError, ValueError, RuntimeError) as exc:
            parser.error(str(exc))

    args = parser.parse_args(argv_list)
    if args.threads < 1:
        parser.error("--threads must be a positive integer")

    try:
        args.encoder_config = build_encoder_config(args)
        args.pipeline_settings = build_pipeline_settings(args)
        for quality in args.quantization or []:
            QuantizationConfig(quality=quality, dithering=args.pipeline_settings.dithering)
        args.requests = build_requests(args, argv_list)
    except (ConfigError, ValueError) as exc:
        parser.error(str(exc))

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s: %(message)s")
    return args


def build_jobs(args: argparse.Namespace, sources: Sequence[Path]) -> tuple[List[ProcessingJob], int]:
    """Compute each source's destination and drop the ones that must be skipped."""

    root = common_root(sources) if args.recursive else None
    config: EncoderConfig = args.encoder_config
    jobs: List[ProcessingJob] = []
    skipped = 0
    for source in sources:
        destination = output_path(
            source,
            config.codec,
            out_dir=args.directory,
            root=root,
            recursive=args.recursive,
            suffix=args.suffix,
        )
        replaces_backed_up_source = args.backup and destination.resolve() == source.resolve()
        if destination.exists() and not args.overwrite and not args.dry_run and not replaces_backed_up_source:
            LOGGER.warning("Skipping %s (exists, use --overwrite to replace)", destination)
            skipped += 1
            continue
        if args.dry_run:
            LOGGER.info("Dry run: would process %s -> %s", source, destination)
        jobs.append(
            ProcessingJob(
                source,
                destination,
                config,
                tuple(args.requests),
                args.pipeline_settings,
                backup=args.backup,
                dry_run=args.dry_run,
            )
        )
    return jobs, skipped


def run_pipeline(args: argparse.Namespace) -> BatchSummary:
    """Run the batch recoder with the provided arguments."""

    run_id = uuid.uuid4().hex
    LOGGER.debug("Codec backends: %s", CodecCapabilities().describe())

    sources = collect_files(args.inputs, args.recursive)
    if not sources:
        LOGGER.warning("No input images found (run %s)", run_id)
        return BatchSummary()

    LOGGER.info(
        "Starting batch run %s: %s file(s) -> %s",
        run_id,
        len(sources),
        args.encoder_config.codec.value,
    )
    if args.directory is not None and not args.dry_run:
        args.directory.mkdir(parents=True, exist_ok=True)

    jobs, skipped = build_jobs(args, sources)
    summary = process_batch(jobs, workers=args.threads, progress=not args.no_progress)
    summary.skipped += skipped

    LOGGER.info(
        "Finished batch run %s; processed %s image(s), %s failed, %s skipped",
        run_id,
        summary.processed,
        len(summary.failed),
        summary.skipped,
    )
    return summary


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    try:
        summary = run_pipeline(args)
    except KeyboardInterrupt:
        LOGGER.error("Batch cancelled")
        return 130
    return 0 if summary.ok else 1


__all__ = [
    "build_encoder_config",
    "build_jobs",
    "build_pipeline_settings",
    "build_requests",
    "main",
    "occurrence_positions",
    "parse_args",
    "run_pipeline",
]
