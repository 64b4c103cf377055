"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from importlib.metadata import version

from .config import BuildConfig, parse_manifest, parse_packages
from .errors import BuildError
from .hcl import load_builds
from .pipeline import build

PROGNAME = "zonebuild"

logger = logging.getLogger(__name__)


class ElapsedFormatter(logging.Formatter):
    """Prefix each message with the seconds elapsed since startup."""

    def format(self, record: logging.LogRecord) -> str:
        return f"[{record.relativeCreated / 1000:12.7f}] {super().format(record)}"


def configure_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ElapsedFormatter("%(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGNAME,
        description="Build an image from a base image, a directory of files and packages.",
    )
    parser.add_argument("-d", "--dir", metavar="DIR", help="Directory containing bits to include in image.")
    parser.add_argument("-i", "--image", metavar="IMAGE_UUID", help="Base image to use.")
    parser.add_argument(
        "-m",
        "--manifest",
        metavar="JSON",
        help='A JSON object with manifest data. Must have at least name and version, e.g. {"name": "blah", "version": "1.0.0"}',
    )
    parser.add_argument(
        "-p",
        "--packages",
        metavar="PKG1,PKG2,...",
        help="Comma separated list of pkgsrc packages to install in image.",
    )
    parser.add_argument("-f", "--file", metavar="FILE", help="HCL file with build definitions.")
    parser.add_argument("-b", "--build", metavar="NAME", help="Build to run from --file.")
    parser.add_argument("--strict-sync", action="store_true", help="Fail the build if copying files fails.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable extra verbosity.")
    parser.add_argument("--version", action="store_true", help="Print tool version and exit.")
    return parser


def _config_from_file(args: argparse.Namespace) -> BuildConfig:
    builds = load_builds(args.file)
    if args.build:
        if args.build not in builds:
            raise ValueError(f"no build named '{args.build}' in {args.file}")
        config = builds[args.build]
    elif len(builds) == 1:
        config = next(iter(builds.values()))
    else:
        raise ValueError(f"{args.file} defines {len(builds)} builds; choose one with --build")

    updates: dict[str, object] = {}
    if args.verbose:
        updates["verbose"] = True
    if args.strict_sync:
        updates["strict_sync"] = True
    return config.model_copy(update=updates)


def _config_from_args(args: argparse.Namespace, parser: argparse.ArgumentParser) -> BuildConfig:
    missing = [name for name in ("dir", "image", "manifest") if not getattr(args, name)]
    if missing:
        parser.error(f"{', '.join(missing)} required")

    return BuildConfig(
        dir=args.dir,
        image=args.image,
        manifest=parse_manifest(args.manifest),
        packages=parse_packages(args.packages),
        verbose=args.verbose,
        strict_sync=args.strict_sync,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(version(PROGNAME))
        return 0

    if args.file and any((args.dir, args.image, args.manifest, args.packages)):
        parser.error("--file cannot be combined with --dir, --image, --manifest or --packages")

    configure_logging(args.verbose)

    try:
        if args.file:
            config = _config_from_file(args)
        else:
            config = _config_from_args(args, parser)
    except ValueError as exc:
        print(f"{PROGNAME}: FATAL: {exc}", file=sys.stderr)
        return 2

    try:
        build(config)
    except BuildError as exc:
        logger.error("Build failed: %s", exc)
        return 1

    logger.info("Build complete")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
