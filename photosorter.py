#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
A command-line tool that copies photos into a YYYY/MM-Mon/MM-DD-YYYY folder tree,
keyed by the date each photo was taken.
"""

import sys
import argparse
import json
import os
from pathlib import Path
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from tqdm import tqdm
import exiftool
from exiftool.exceptions import ExifToolExecuteError

# --- Global Logger ---
logger = logging.getLogger(__name__)

# --- Configuration Management ---

CONFIG_DIR_NAME = "photosorter"
CONFIG_FILE_NAME = "config.json"

EXIF_DATE_TAG = "EXIF:DateTimeOriginal"
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Month folder names must not follow the host locale, so %b is not used.
MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
                       "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# ExifTool can only write FileCreateDate on these platforms.
CREATION_DATE_WRITABLE = sys.platform in ("win32", "darwin")


def get_config_path() -> Path:
    """Returns the platform-specific path to the configuration file."""
    config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
    return Path(config_home) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def get_default_config() -> dict:
    """Returns the default configuration dictionary."""
    return {
        # Zone that EXIF DateTimeOriginal values are assumed to be recorded in.
        "capture_timezone": "America/New_York",
        # Zone used to name the date folders; null means the host's local zone.
        "folder_timezone": None,
        "log_dir": "~/.local/state/photosorter",
    }


def load_or_create_config() -> dict:
    """
    Loads the configuration from the user's config directory.
    If the config file doesn't exist, it creates it with default values.
    Keys missing from an existing file are filled in from the defaults.
    """
    config_path = get_config_path()
    if not config_path.exists():
        logger.info(f"Configuration file not found. Creating a default one at: {config_path}")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            default_config = get_default_config()
            with open(config_path, "w", encoding="utf-8") as f:
                json.dump(default_config, f, indent=2)
            return default_config
        except IOError as e:
            logger.error(f"Could not create configuration file: {e}")
            sys.exit(1)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.error(f"Could not read or parse configuration file at {config_path}: {e}")
        logger.error("Please fix or delete the file to allow recreation.")
        sys.exit(1)

    config = get_default_config()
    config.update(loaded)
    return config


def get_zone(name, allow_local: bool = False):
    """
    Returns a ZoneInfo for a configured zone name.

    A null name means the host's local zone (None) when allow_local is set, and is
    rejected otherwise.
    """
    if name is None:
        if allow_local:
            return None
        logger.error("A time zone name is required in configuration, got null.")
        sys.exit(1)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Unknown time zone in configuration: '{name}' ({e})")
        sys.exit(1)


# --- Data Model ---

class PhotoSorterError(Exception):
    """Base error for photosorter."""


class InvalidSourcePath(PhotoSorterError):
    """The source directory does not exist or is not a directory."""


class MetadataUnreadable(PhotoSorterError):
    """The metadata decoder could not parse a file at all."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Could not read metadata from '{path}': {reason}")
        self.path = path
        self.reason = reason


class CopyOutcome(Enum):
    COPIED = "copied"
    SKIPPED_EXISTING = "skipped-existing"
    FAILED = "failed"


@dataclass(frozen=True)
class ResolvedTimestamp:
    when: datetime  # always timezone-aware
    source: str  # "exif" or "created"


@dataclass(frozen=True)
class FileResult:
    source: Path
    destination: Path | None
    outcome: CopyOutcome
    timestamp: ResolvedTimestamp | None = None
    error: str | None = None


@dataclass
class BatchSummary:
    results: list[FileResult] = field(default_factory=list)

    def count(self, outcome: CopyOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def copied(self) -> int:
        return self.count(CopyOutcome.COPIED)

    @property
    def skipped(self) -> int:
        return self.count(CopyOutcome.SKIPPED_EXISTING)

    @property
    def failed(self) -> int:
        return self.count(CopyOutcome.FAILED)


# --- Date Resolution ---

def _parse_exif_datetime(dt_str):
    """Parses EXIF's 'YYYY:MM:DD HH:MM:SS' format."""
    try:
        return datetime.strptime(dt_str.strip().rstrip("\x00"), EXIF_DATE_FORMAT)
    except (ValueError, TypeError, AttributeError):
        return None


def read_capture_time(et, path: Path, capture_tz) -> datetime | None:
    """
    Reads EXIF DateTimeOriginal for a file and localizes it to the capture zone.

    Args:
        et: A running exiftool.ExifToolHelper.
        path: The file to inspect.
        capture_tz: The tzinfo the camera clock is assumed to be set to.

    Returns:
        An aware datetime, or None when the file carries no usable capture date.

    Raises:
        MetadataUnreadable: exiftool could not parse the file.
    """
    try:
        metadata_list = et.get_tags(str(path), tags=[EXIF_DATE_TAG])
    except ExifToolExecuteError as e:
        raise MetadataUnreadable(path, (getattr(e, "stderr", None) or str(e)).strip()) from e

    if not metadata_list:
        raise MetadataUnreadable(path, "exiftool returned no metadata")
    metadata = metadata_list[0]
    if "ExifTool:Error" in metadata:
        raise MetadataUnreadable(path, str(metadata["ExifTool:Error"]))

    dt_str = metadata.get(EXIF_DATE_TAG)
    if dt_str is None:
        return None

    dt = _parse_exif_datetime(dt_str)
    if dt is None:
        logger.warning(f"Ignoring malformed '{EXIF_DATE_TAG}' value {dt_str!r} in '{path}'.")
        return None
    return dt.replace(tzinfo=capture_tz)


def read_creation_time(path: Path) -> datetime:
    """Returns the filesystem creation time of a file as an aware UTC datetime."""
    st = path.stat()
    created = getattr(st, "st_birthtime", None)
    if created is None:
        # No birth time on this filesystem; use the modification time instead.
        created = st.st_mtime
    return datetime.fromtimestamp(created, tz=timezone.utc)


def resolve_timestamp(et, path: Path, capture_tz) -> ResolvedTimestamp:
    """Returns the capture date from EXIF, falling back to the file's creation time."""
    when = read_capture_time(et, path, capture_tz)
    if when is not None:
        return ResolvedTimestamp(when, "exif")
    logger.debug(f"No '{EXIF_DATE_TAG}' for '{path.name}'. Using file creation time.")
    return ResolvedTimestamp(read_creation_time(path), "created")


# --- Folder Placement ---

def date_folder_parts(when: datetime, folder_tz=None) -> tuple[str, str, str]:
    """
    Returns the (year, month, day) folder names for a timestamp,
    e.g. ('2023', '05-May', '05-14-2023').

    All three names come from a single conversion into the folder zone, so the
    month and day can never disagree with the year.
    """
    local = when.astimezone(folder_tz)
    year = f"{local.year:04d}"
    month = f"{local.month:02d}-{MONTH_ABBREVIATIONS[local.month - 1]}"
    day = f"{local.month:02d}-{local.day:02d}-{local.year:04d}"
    return year, month, day


def create_date_folders(dest_root: Path, when: datetime, folder_tz=None, dry_run: bool = False) -> Path:
    """Creates dest_root/YYYY/MM-Mon/MM-DD-YYYY as needed and returns the day folder."""
    year, month, day = date_folder_parts(when, folder_tz)
    day_dir = dest_root / year / month / day
    if not dry_run:
        day_dir.mkdir(parents=True, exist_ok=True)
    return day_dir


# --- Copying ---

def _set_creation_date(et, path: Path, when: datetime):
    """Sets the filesystem creation date where the platform allows writing it."""
    if not CREATION_DATE_WRITABLE:
        return
    stamp = when.strftime("%Y:%m:%d %H:%M:%S%z")
    # %z gives +HHMM, exiftool wants +HH:MM
    stamp = f"{stamp[:-2]}:{stamp[-2:]}"
    et.execute("-m", "-overwrite_original", f"-FileCreateDate={stamp}", str(path))


def copy_with_timestamp(source_path: Path, when: datetime, dest_dir: Path, et, dry_run: bool, logger) -> CopyOutcome:
    """
    Copies a file into dest_dir under its original name and stamps the copy with `when`.

    An existing file of the same name is left untouched and reported as skipped.
    """
    destination_path = dest_dir / source_path.name

    if destination_path.exists():
        logger.info(f"{source_path.name} already exists.")
        return CopyOutcome.SKIPPED_EXISTING

    if dry_run:
        logger.info(f"DRY RUN: Would copy '{source_path}' to '{destination_path}'")
        return CopyOutcome.COPIED

    logger.info(f"Copying file: {source_path.name}")
    shutil.copy2(source_path, destination_path)
    _set_creation_date(et, destination_path, when)
    ts = when.timestamp()
    os.utime(destination_path, (ts, ts))
    return CopyOutcome.COPIED


# --- Batch ---

def parse_extensions(spec: str | None) -> set[str]:
    """Turns 'jpg,PNG, .heic' into {'jpg', 'png', 'heic'}. None or '' means no filter."""
    if not spec:
        return set()
    return {ext.strip().lstrip(".").lower() for ext in spec.split(",") if ext.strip().lstrip(".")}


def collect_source_files(source_dir: Path, extensions: set[str]) -> list[Path]:
    """
    Lists the regular files directly inside source_dir, in directory order.

    Subdirectories are not descended into. An empty extension set matches every file.
    """
    files_to_process = []
    for p in source_dir.iterdir():
        if not p.is_file():
            continue
        if extensions and p.suffix.lstrip(".").lower() not in extensions:
            continue
        files_to_process.append(p)
    return files_to_process


def process_file(et, source_path: Path, dest_dir: Path, capture_tz, folder_tz, dry_run: bool, logger) -> FileResult:
    """Resolves the date of one file, creates its day folder and copies it there."""
    resolved = resolve_timestamp(et, source_path, capture_tz)
    logger.debug(f"'{source_path.name}': {resolved.when.isoformat()} (from {resolved.source})")
    day_dir = create_date_folders(dest_dir, resolved.when, folder_tz, dry_run)
    outcome = copy_with_timestamp(source_path, resolved.when, day_dir, et, dry_run, logger)
    return FileResult(source_path, day_dir / source_path.name, outcome, resolved)


def organize(source_dir: Path, dest_dir: Path, extensions: set[str], config: dict, et,
             dry_run: bool = False, stop_on_error: bool = False, logger=logger) -> BatchSummary:
    """
    Copies every matching file in source_dir into the date tree under dest_dir.

    Args:
        source_dir: Directory whose immediate files are organized. Must exist; nothing is
            created when it does not.
        dest_dir: Root of the date tree; created if missing.
        extensions: Lower-case extensions without dots; empty means all files.
        config: The application configuration dictionary.
        et: A running exiftool.ExifToolHelper.
        dry_run: Log what would happen without creating or copying anything.
        stop_on_error: Re-raise the first per-file failure instead of continuing.
        logger: The logger instance.

    Returns:
        A BatchSummary holding one FileResult per processed file.

    Raises:
        InvalidSourcePath: source_dir is missing.
    """
    if not source_dir.is_dir():
        raise InvalidSourcePath(f"Invalid source path: {source_dir}")

    capture_tz = get_zone(config["capture_timezone"])
    folder_tz = get_zone(config.get("folder_timezone"), allow_local=True)

    if not dest_dir.exists():
        logger.info(f"Creating destination folder: {dest_dir}")
        if not dry_run:
            dest_dir.mkdir(parents=True, exist_ok=True)

    files_to_process = collect_source_files(source_dir, extensions)
    logger.info(f"Found {len(files_to_process)} files to organize.")

    summary = BatchSummary()
    for source_path in tqdm(files_to_process, desc="Organizing by date"):
        try:
            result = process_file(et, source_path, dest_dir, capture_tz, folder_tz, dry_run, logger)
        except (MetadataUnreadable, OSError) as e:
            if stop_on_error:
                raise
            logger.error(f"Failed to organize '{source_path}': {e}")
            result = FileResult(source_path, None, CopyOutcome.FAILED, error=str(e))
        summary.results.append(result)

    logger.info("\n--- Organize Summary ---")
    logger.info(f"Files copied: {summary.copied}")
    logger.info(f"Files skipped (already present): {summary.skipped}")
    logger.info(f"Files failed: {summary.failed}")
    return summary


# --- Pre-flight Checks ---

def check_dependencies():
    """Checks that the exiftool command-line tool is available."""
    try:
        with exiftool.ExifTool() as et:
            # Check if exiftool is running by getting its version
            version = et.version
            logger.debug(f"Dependency check passed: found exiftool version {version}.")
    except FileNotFoundError:
        logger.critical("CRITICAL ERROR: 'exiftool' command not found.")
        logger.critical(
            "Please install ExifTool from https://exiftool.org/ and ensure it is in your system's PATH."
        )
        sys.exit(1)
    except Exception as e:
        logger.critical(f"CRITICAL ERROR: An unexpected error occurred while checking for exiftool: {e}")
        sys.exit(1)


def check_write_permission(directory: Path):
    """Checks if the script has write permissions in a given directory."""
    if not os.access(directory, os.W_OK):
        logger.critical(f"CRITICAL ERROR: No write permissions in directory: {directory}")
        sys.exit(1)
    logger.debug(f"Permission check passed: Write access is available in {directory}.")


# --- Main Entry Point ---

def setup_logging(verbose, log_dir: Path):
    """Configures the root logger."""
    level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    error_log_path = log_dir / "photosorter-errors.log"

    handlers = [logging.StreamHandler(sys.stdout)]

    # Add a file handler for errors
    file_handler = logging.FileHandler(error_log_path)
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="[%(levelname)s] %(message)s",
        handlers=handlers
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photosorter",
        description=(
            "Copies photos from SOURCE into DEST/YYYY/MM-Mon/MM-DD-YYYY/ folders.\n\n"
            "The date comes from the EXIF DateTimeOriginal tag, or from the file's\n"
            "creation time when the tag is missing. Files already present in their\n"
            "destination folder are skipped."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument("source", nargs="?", help="Directory containing the photos (not searched recursively).")
    parser.add_argument("destination", nargs="?", help="Root of the date folder tree; created if absent.")
    parser.add_argument(
        "extensions",
        nargs="?",
        help="Comma-separated extensions to include, without dots (e.g. 'jpg,png'). Default: all files."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose debug output.")
    parser.add_argument("--dry-run", action="store_true", help="Simulate actions without making any changes to files.")
    parser.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Abort the whole run on the first file that cannot be read or copied."
    )
    return parser


def main(argv=None):
    """Main entry point for the script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Missing arguments and a bad source path are informational halts, not failures.
    if not args.source or not args.destination:
        print("Please provide source and destination folders.")
        parser.print_usage()
        return 0

    source_dir = Path(args.source).expanduser()
    dest_dir = Path(args.destination).expanduser()
    if not source_dir.is_dir():
        print("Invalid source path.")
        return 0

    config = load_or_create_config()
    setup_logging(args.verbose, Path(config["log_dir"]).expanduser())

    logger.info(f"Source Path: {source_dir}")
    logger.info(f"Destination Path: {dest_dir}")

    check_dependencies()
    if dest_dir.exists():
        check_write_permission(dest_dir)

    try:
        with exiftool.ExifToolHelper() as et:
            summary = organize(
                source_dir,
                dest_dir,
                parse_extensions(args.extensions),
                config,
                et,
                dry_run=args.dry_run,
                stop_on_error=args.stop_on_error,
            )
    except (PhotoSorterError, OSError) as e:
        logger.error(f"Aborting: {e}")
        return 1

    logger.info("Files copy completed.")
    return 1 if summary.failed else 0


if __name__ == '__main__':
    sys.exit(main())
