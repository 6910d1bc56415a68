"""
Shared plumbing for the UHD skills.

Every skill module imports from here: logging setup, input discovery, the stdin piping
protocol, confirmation prompts, JSON output and the bounded async worker pool used by all
batch commands.
"""

import asyncio
import contextlib
import json
import os
import sys
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import chain
from pathlib import Path
from typing import Annotated, Any, Literal, TypeVar, cast

import rawpy
from cyclopts import Parameter
from loguru import logger
from PIL import Image
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


T = TypeVar("T")
R = TypeVar("R")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]

# Configuration defaults
DEFAULT_CONSOLE_LOG_LEVEL = cast("LogLevel", os.getenv("UHD_LOG_LEVEL", "WARNING").upper())
DEFAULT_FILE_LOG_LEVEL = cast("LogLevel", os.getenv("UHD_FILE_LOG_LEVEL", "OFF").upper())
DEFAULT_LOG_FOLDER = Path(os.getenv("UHD_LOG_FOLDER", "logs"))
DEFAULT_CONCURRENCY = int(os.getenv("UHD_CONCURRENCY", "4"))
UHD_HOME = Path(os.getenv("UHD_HOME", ".uhd"))

IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".avif", ".webp", ".tiff", ".tif", ".heif", ".heic", ".jxl"},
)
NON_RAW_EXTENSIONS = IMAGE_EXTENSIONS | {".bmp", ".gif", ".jpe", ".jp2", ".psd", ".ico"}
KIB = 1024


@Parameter(name="*")
@dataclass(frozen=True)
class LogOptions:
    """Logging flags shared by every command."""

    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = DEFAULT_CONSOLE_LOG_LEVEL
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = DEFAULT_FILE_LOG_LEVEL
    log_folder: Annotated[
        Path,
        Parameter(
            name="--log-folder",
            help="Folder where log files are stored",
        ),
    ] = DEFAULT_LOG_FOLDER


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on disk and on stdout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def setup_logging(
    file_log_level: LogLevel = "OFF",
    console_log_level: LogLevel = "WARNING",
    log_folder: Path = DEFAULT_LOG_FOLDER,
) -> None:
    """
    Configure Loguru for both console and file logging.

    Console output goes to stderr so that ``--json`` payloads on stdout stay parseable.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    logger.remove()

    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-uhd_skills.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


def init_logging(options: LogOptions | None) -> None:
    """Apply command-line logging flags, falling back to environment defaults."""
    opts = options or LogOptions()
    setup_logging(
        file_log_level=opts.file_log_level,
        console_log_level=opts.console_log_level,
        log_folder=opts.log_folder,
    )


def human_size(size: int) -> str:
    """
    Format a byte count for humans.

    Examples:
        >>> human_size(512)
        '512 B'
        >>> human_size(1536)
        '1.5 KB'

    """
    if size < KIB:
        return f"{size} B"
    if size < KIB * KIB:
        return f"{size / KIB:.1f} KB"
    return f"{size / (KIB * KIB):.1f} MB"


def percent_change(before: int, after: int) -> str:
    """
    Relative reduction from ``before`` to ``after`` as a one-decimal percentage string.

    Examples:
        >>> percent_change(1000, 250)
        '75.0%'

    """
    if before <= 0:
        return "0.0%"
    return f"{(before - after) / before * 100:.1f}%"


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed, lower-cased, non-empty entries."""
    if not value:
        return []
    return [part.strip().lower() for part in value.split(",") if part.strip()]


def collect_images(
    directory: Path,
    *,
    recursive: bool = False,
    extensions: Iterable[str] = IMAGE_EXTENSIONS,
) -> list[Path]:
    """
    List image files in a directory, sorted by path.

    Hidden files and folders (leading '.') are ignored, as are files whose extension is not
    in ``extensions`` (compared case-insensitively).
    """
    ext_set = {ext.lower() for ext in extensions}
    pattern = "**/*" if recursive else "*"
    found = [
        path
        for path in directory.glob(pattern)
        if path.is_file()
        and path.suffix.lower() in ext_set
        and not any(part.startswith(".") for part in path.relative_to(directory).parts)
    ]
    return sorted(found)


def resolve_inputs(
    inputs: Sequence[Path],
    *,
    recursive: bool = False,
    extensions: Iterable[str] = IMAGE_EXTENSIONS,
) -> list[Path]:
    """
    Resolve provided inputs into a list of files.

    - Directories are expanded by extension (honoring ``recursive``)
    - Explicit files are accepted as-is (extension filter not applied)
    - Order is preserved and duplicates removed
    """
    files_from_dirs: list[Path] = []
    files_explicit: list[Path] = []

    for path in inputs:
        path_resolved = path
        with contextlib.suppress(OSError):
            path_resolved = path.resolve()
        if path_resolved.is_dir():
            files_from_dirs.extend(
                collect_images(path_resolved, recursive=recursive, extensions=extensions),
            )
        elif path_resolved.is_file():
            files_explicit.append(path_resolved)
        else:
            logger.warning("input_not_file_or_dir", path=str(path))

    combined: list[Path] = []
    seen: set[str] = set()
    for f in chain(files_explicit, files_from_dirs):
        key = str(f)
        if key not in seen:
            combined.append(f)
            seen.add(key)
    return combined


def parse_piped_paths(text: str) -> list[str]:
    """
    Decode the stdin piping protocol into a list of paths.

    Accepted shapes, in order:
    - ``{"paths": [...]}`` and/or ``{"path": "..."}`` (JSON object)
    - ``["a.jpg", "b.jpg"]`` (JSON array of strings)
    - newline-separated paths

    Anything that is not one of the JSON shapes is read as a newline list. When the text
    looks like JSON but cannot be used as such, a warning is logged so that a malformed
    payload does not silently become a single odd path.

    Examples:
        >>> parse_piped_paths('{"path": "photo.jpg"}')
        ['photo.jpg']
        >>> parse_piped_paths("a.jpg\\nb.jpg\\n")
        ['a.jpg', 'b.jpg']

    """
    stripped = text.strip()
    if not stripped:
        return []

    try:
        data = json.loads(stripped)
    except ValueError:
        data = None
        if stripped[0] in "{[":
            logger.warning("stdin_json_fallback", reason="invalid_json")
    else:
        paths = _paths_from_json(data)
        if paths is not None:
            return paths
        logger.warning("stdin_json_fallback", reason="unexpected_shape", kind=type(data).__name__)

    return [line.strip() for line in stripped.splitlines() if line.strip()]


def _paths_from_json(data: object) -> list[str] | None:
    if isinstance(data, dict):
        paths: list[str] = []
        raw_paths = data.get("paths")
        if isinstance(raw_paths, list):
            paths.extend(str(p) for p in raw_paths if isinstance(p, str) and p.strip())
        raw_path = data.get("path")
        if isinstance(raw_path, str) and raw_path.strip():
            paths.append(raw_path)
        return paths or None
    if isinstance(data, list) and data and all(isinstance(p, str) for p in data):
        return [p for p in data if p.strip()]
    return None


def read_stdin_paths() -> list[Path]:
    """Read piped paths from stdin, returning an empty list when stdin is a terminal."""
    if sys.stdin.isatty():
        logger.warning("stdin_is_terminal", hint="Pipe paths or JSON into --stdin")
        return []
    return [Path(p) for p in parse_piped_paths(sys.stdin.read())]


def gather_inputs(
    inputs: Sequence[Path] | None,
    *,
    stdin: bool,
    recursive: bool = False,
    extensions: Iterable[str] = IMAGE_EXTENSIONS,
) -> list[Path]:
    """Combine positional inputs and ``--stdin`` paths, exiting when nothing usable is left."""
    candidates = list(inputs or [])
    if stdin:
        candidates.extend(read_stdin_paths())
    if not candidates:
        logger.error("no_inputs_provided", hint="Pass one or more paths or use --stdin")
        raise SystemExit(1)

    files = resolve_inputs(candidates, recursive=recursive, extensions=extensions)
    if not files:
        logger.error(
            "no_image_files_found",
            inputs=[str(p) for p in candidates],
            recursive=recursive,
        )
        raise SystemExit(1)
    logger.info("image_files_discovered", count=len(files))
    return files


def single_input(input_path: Path | None, *, stdin: bool) -> Path:
    """Resolve the one input a single-item command works on."""
    if input_path is None and stdin:
        piped = read_stdin_paths()
        input_path = piped[0] if piped else None
    if input_path is None:
        logger.error("input_required")
        raise SystemExit(1)
    if not input_path.is_file():
        logger.error("input_not_found", path=str(input_path))
        raise SystemExit(1)
    return input_path


def confirm(message: str) -> bool:
    """Ask a yes/no question on the terminal; anything but 'y'/'yes' declines."""
    try:
        answer = input(f"\n{message} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def emit_json(payload: Any) -> None:  # noqa: ANN401
    """Print a JSON document to stdout."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    print(json.dumps(payload, indent=2, default=str))  # noqa: T201


def write_json(path: Path, payload: Any) -> None:  # noqa: ANN401
    """Write a pretty JSON file with a trailing newline."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str) + "\n", encoding="utf-8")


def output_path(
    input_path: Path,
    extension: str,
    out_dir: Path | None = None,
    suffix: str = "",
) -> Path:
    """
    Build ``<stem><suffix><extension>`` next to the input or inside ``out_dir``.

    Examples:
        >>> output_path(Path("/img/a.png"), ".avif", suffix="-hdr")
        PosixPath('/img/a-hdr.avif')

    """
    name = f"{input_path.stem}{suffix}{extension}"
    return (out_dir or input_path.parent) / name


def open_image(image_path: Path) -> Image.Image:
    """Open an image from a path with PIL, using rawpy unless format is known non-RAW."""
    suffix = image_path.suffix.lower()
    if suffix not in NON_RAW_EXTENSIONS:
        try:
            with rawpy.imread(str(image_path)) as raw:  # type: ignore[no-untyped-call]
                rgb = raw.postprocess()
            logger.debug("image_opened_with_rawpy", file=image_path.name)
            return Image.fromarray(rgb)
        except Exception as exc:  # noqa: BLE001
            logger.warning("rawpy_failed_falling_back_to_pil", error=str(exc))

    img = Image.open(image_path)
    img.load()
    return img


async def run_pool(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R | Exception]:
    """
    Run ``worker`` over ``items`` with at most ``concurrency`` calls in flight.

    Workers share a next-index counter and each claims one item at a time until the list is
    exhausted. The counter is only touched between awaits, so no lock is needed. A failing
    item is logged and its slot holds the exception; other items keep going.

    Returns:
        Results in input order (exceptions in place of failed items).

    """
    results: list[R | Exception] = [Exception("not processed")] * len(items)
    next_index = 0

    async def _worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            idx = next_index
            next_index += 1
            item = items[idx]
            with logger.contextualize(item=str(item)):
                try:
                    results[idx] = await worker(item)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("batch_item_failed", index=idx, error=str(exc))
                    results[idx] = exc

    size = max(1, min(concurrency, len(items)))
    await asyncio.gather(*(_worker() for _ in range(size)))
    return results


def run_blocking_pool(
    items: Sequence[T],
    func: Callable[[T], R],
    concurrency: int,
) -> list[R | Exception]:
    """Drive a blocking per-item function through :func:`run_pool` from synchronous code."""

    async def _call(item: T) -> R:
        return await asyncio.to_thread(func, item)

    return asyncio.run(run_pool(items, _call, concurrency))


def split_results(results: Sequence[R | Exception]) -> tuple[list[R], int]:
    """Separate successful results from failures, returning (ok, failed_count)."""
    ok = [r for r in results if not isinstance(r, Exception)]
    return ok, len(results) - len(ok)  # type: ignore[return-value]
