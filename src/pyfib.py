#!/usr/bin/env python3
"""
pyfib: bundle source files from a directory tree into a single file.

Files are selected by programming language (derived from the file
extension), ordered by name or by type, and concatenated into one output
file. Each file can be preceded by a provenance comment and blank lines can
be stripped along the way. Build output folders (bin, obj, debug) are never
bundled.

The `create-rsp` command interactively collects the bundle options and
saves them as a response file that can be replayed with
`pyfib bundle @response.rsp`.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from enum import Enum
import logging
import os
from pathlib import Path
import shlex
import tempfile
from typing import Callable, Optional


DEFAULT_RESPONSE_FILE = "response.rsp"

# Build artifact folders, matched against whole directory names, any case.
EXCLUDED_DIRECTORIES = frozenset({"bin", "obj", "debug"})

logger = logging.getLogger(__name__)


class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[36m",  # CYAN
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[41m",  # Red bg
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelno, "")
        message = super().format(record)
        if color:
            message = f"{color}{message}{self.RESET}"
        return message


# -- Classifier --
class Language(Enum):
    """Programming languages recognized by the bundler."""

    CSHARP = "CSharp"
    JAVA = "Java"
    PYTHON = "Python"
    JAVASCRIPT = "JavaScript"
    RUBY = "Ruby"
    PHP = "PHP"
    GO = "Go"
    SWIFT = "Swift"
    RUST = "Rust"
    CPLUSPLUS = "CPlusPlus"
    C = "C"
    DART = "Dart"

    @classmethod
    def from_name(cls, name: str) -> Language | None:
        """Look up a language by its name, ignoring case.

        Args:
            name (str):
                The language name, e.g. "python" or "CPlusPlus".

        Returns:
            Language | None:
                The matching language, or None if the name is unknown.
        """
        wanted = name.strip().lower()
        for language in cls:
            if language.value.lower() == wanted:
                return language
        return None


EXTENSION_LANGUAGES: dict[str, Language] = {
    ".cs": Language.CSHARP,
    ".java": Language.JAVA,
    ".py": Language.PYTHON,
    ".ipynb": Language.PYTHON,
    ".js": Language.JAVASCRIPT,
    ".rb": Language.RUBY,
    ".php": Language.PHP,
    ".go": Language.GO,
    ".swift": Language.SWIFT,
    ".rs": Language.RUST,
    ".cpp": Language.CPLUSPLUS,
    ".c": Language.C,
    ".dart": Language.DART,
}


def classify(extension: str) -> Language | None:
    """Map a file extension (with its leading dot) to a language.

    Args:
        extension (str):
            The extension to classify, in any case (e.g. ".py", ".CS").

    Returns:
        Language | None:
            The language for the extension, or None when it is not known.
    """
    return EXTENSION_LANGUAGES.get(extension.lower())


# -- Bundler --
class SortMode(Enum):
    NAME = "name"
    TYPE = "type"


class BundleError(Enum):
    """Reasons a bundling run can fail."""

    NO_VALID_LANGUAGES = "no valid languages"
    INVALID_SORT_MODE = "invalid sort mode"
    INVALID_OUTPUT_PATH = "invalid output path"
    OUTPUT_EXISTS = "output exists"
    FILE_READ_FAILURE = "file read failure"
    WRITE_FAILURE = "write failure"


@dataclass(frozen=True)
class BundleOptions:
    """Options for a single bundling run.

    Attributes:
        language (str):
            Comma-separated language names, or "all" for every recognized
            source file.
        output (Path | None):
            Destination file. Required when bundling.
        note (bool):
            Whether to precede each file with a provenance comment.
        sort (str | None):
            Sort mode, "name" or "type". None means "name".
        remove_empty_lines (bool):
            Whether to drop empty and whitespace-only lines.
        author (str | None):
            Optional author written on the first line of the bundle.
    """

    language: str
    output: Optional[Path] = None
    note: bool = False
    sort: Optional[str] = None
    remove_empty_lines: bool = False
    author: Optional[str] = None


@dataclass
class LanguageSelection:
    """Result of parsing a language selector."""

    all_languages: bool = False
    languages: tuple[Language, ...] = ()
    rejected: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.all_languages and not self.languages


@dataclass(frozen=True)
class CandidateFile:
    path: Path
    extension: str
    language: Language | None


@dataclass
class BundleResult:
    """Outcome of a bundling run.

    Attributes:
        count (int):
            Number of files written to the bundle.
        error (BundleError | None):
            The failure reason, or None on success.
        message (str):
            Human readable description of the outcome.
        warnings (list[str]):
            Non-fatal problems met during the run.
    """

    count: int = 0
    error: BundleError | None = None
    message: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, count: int, warnings: list[str]) -> BundleResult:
        return cls(count=count, message=f"Bundled {count} file(s).", warnings=warnings)

    @classmethod
    def failure(
        cls, error: BundleError, message: str, warnings: list[str]
    ) -> BundleResult:
        return cls(error=error, message=message, warnings=warnings)


def parse_languages(selector: str) -> LanguageSelection:
    """Parse a comma-separated language selector.

    The literal "all" anywhere in the list selects every recognized
    language and the remaining entries are not evaluated. Otherwise each
    entry is matched against the language names, ignoring case; unknown
    entries are collected in `rejected` and blank entries are skipped.

    Args:
        selector (str):
            The selector, e.g. "python,go" or "all".

    Returns:
        LanguageSelection:
            The parsed selection.
    """
    entries = [entry.strip() for entry in selector.split(",") if entry.strip()]
    if any(entry.lower() == "all" for entry in entries):
        return LanguageSelection(all_languages=True)

    selection = LanguageSelection()
    languages: list[Language] = []
    for entry in entries:
        language = Language.from_name(entry)
        if language is None:
            selection.rejected.append(entry)
        elif language not in languages:
            languages.append(language)
    selection.languages = tuple(languages)
    return selection


def parse_sort_mode(sort: str | None) -> SortMode | None:
    """Parse a sort token, returning None when it is not supported."""
    if sort is None or not sort.strip():
        return SortMode.NAME
    try:
        return SortMode(sort.strip().lower())
    except ValueError:
        return None


def file_extension(path: Path) -> str:
    """Return the lowercased extension of `path`, including the dot.

    A dotfile such as ".gitignore" is its own extension, so it is treated
    as an unknown type rather than as a file without an extension.
    """
    name = path.name
    if not path.suffix and name.startswith(".") and name.strip("."):
        return name.lower()
    return path.suffix.lower()


def is_excluded(relative: Path) -> bool:
    """Check whether a path relative to the root lies in an excluded folder.

    Only the directory segments are compared, each as a whole name, so
    "bin/app.py" is excluded while "binary/app.py" is not.

    Args:
        relative (Path):
            File path relative to the bundle root.

    Returns:
        bool:
            True if any parent directory is a build artifact folder.
    """
    return any(part.lower() in EXCLUDED_DIRECTORIES for part in relative.parts[:-1])


def discover_files(root: Path, exclude: Path | None = None) -> list[CandidateFile]:
    """Recursively collect the files under `root`, skipping build folders.

    Args:
        root (Path):
            Directory to walk.
        exclude (Path | None):
            A file never to report, typically the bundle output itself.

    Returns:
        list[CandidateFile]:
            Classified candidate files, in walk order.
    """
    root = Path(root).resolve()
    excluded_file = Path(exclude).resolve() if exclude is not None else None
    candidates: list[CandidateFile] = []

    logger.debug("Collecting files from root: %s", root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d.lower() not in EXCLUDED_DIRECTORIES]
        for fname in filenames:
            path = Path(dirpath) / fname
            if is_excluded(path.relative_to(root)):
                continue
            if excluded_file is not None and path == excluded_file:
                logger.debug("  Skipping output file %s", path)
                continue
            extension = file_extension(path)
            candidates.append(CandidateFile(path, extension, classify(extension)))
    logger.debug("Discovered %d candidate files.", len(candidates))
    return candidates


def filter_files(
    candidates: list[CandidateFile],
    selection: LanguageSelection,
    warnings: list[str] | None = None,
) -> list[CandidateFile]:
    """Keep the candidates that belong to the selected languages.

    With "all", every file of a recognized language is kept and the rest
    are dropped silently. With an explicit list, files without an
    extension are dropped with a warning, and files of an unknown or
    unselected language are dropped silently.

    Args:
        candidates (list[CandidateFile]):
            Files found by `discover_files`.
        selection (LanguageSelection):
            The parsed language selector.
        warnings (list[str] | None):
            If given, warning messages are appended to it.

    Returns:
        list[CandidateFile]:
            The files to bundle, in input order.
    """
    if selection.all_languages:
        return [c for c in candidates if c.language is not None]

    kept: list[CandidateFile] = []
    for candidate in candidates:
        if not candidate.extension:
            message = f"File '{candidate.path}' has no extension."
            logger.warning("%s", message)
            if warnings is not None:
                warnings.append(message)
            continue
        if candidate.language in selection.languages:
            kept.append(candidate)
        else:
            logger.debug("  Skipping %s (%s)", candidate.path, candidate.language)
    return kept


def sort_files(files: list[CandidateFile], mode: SortMode) -> list[CandidateFile]:
    """Order the files by name or by type.

    Both orders are total: ties on the primary key are broken by the full
    path, compared as plain strings.
    """
    if mode is SortMode.TYPE:
        return sorted(files, key=lambda c: (c.extension, str(c.path)))
    return sorted(files, key=lambda c: (c.path.name, str(c.path)))


def remove_empty_lines(text: str) -> str:
    """Drop empty and whitespace-only lines, joining the rest with newlines."""
    return "\n".join(line for line in text.split("\n") if line.strip())


def _output_mode(output: Path) -> int:
    if output.exists():
        return output.stat().st_mode & 0o777
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _check_output(
    output: Path | None,
    confirm_overwrite: Callable[[Path], bool] | None,
) -> tuple[BundleError, str] | None:
    if output is None:
        return BundleError.INVALID_OUTPUT_PATH, "Output option is required."
    if not output.parent.is_dir():
        return (
            BundleError.INVALID_OUTPUT_PATH,
            f"Output file path '{output}' is invalid: "
            f"directory '{output.parent}' does not exist.",
        )
    if output.exists():
        if output.is_dir():
            return (
                BundleError.INVALID_OUTPUT_PATH,
                f"Output file path '{output}' is a directory.",
            )
        if confirm_overwrite is None or not confirm_overwrite(output):
            return (
                BundleError.OUTPUT_EXISTS,
                f"Output file '{output}' already exists and was not overwritten.",
            )
    return None


def bundle(
    options: BundleOptions,
    root: Path,
    confirm_overwrite: Callable[[Path], bool] | None = None,
) -> BundleResult:
    """Bundle the source files under `root` into `options.output`.

    Every option is validated before anything is written. The bundle is
    written to a temporary file next to the output and moved into place
    only once every file has been read, so a failed run leaves any
    previous output untouched.

    Args:
        options (BundleOptions):
            The options for this run.
        root (Path):
            Directory whose files are bundled.
        confirm_overwrite (Callable[[Path], bool] | None):
            Called with the output path when it already exists. Returning
            False, or passing None, keeps the existing file.

    Returns:
        BundleResult:
            The number of bundled files, or the reason for the failure.
    """
    warnings: list[str] = []

    selection = parse_languages(options.language)
    for entry in selection.rejected:
        message = f"Invalid language option '{entry}'."
        logger.warning("%s", message)
        warnings.append(message)
    if selection.is_empty:
        return BundleResult.failure(
            BundleError.NO_VALID_LANGUAGES,
            "No valid languages were found. "
            "Please specify at least one valid language.",
            warnings,
        )

    mode = parse_sort_mode(options.sort)
    if mode is None:
        return BundleResult.failure(
            BundleError.INVALID_SORT_MODE,
            f"Invalid sort option '{options.sort}'. Please use 'name' or 'type'.",
            warnings,
        )

    output = Path(options.output).absolute() if options.output is not None else None
    problem = _check_output(output, confirm_overwrite)
    if problem is not None:
        error, message = problem
        return BundleResult.failure(error, message, warnings)

    root = Path(root).resolve()
    files = filter_files(discover_files(root, exclude=output), selection, warnings)
    files = sort_files(files, mode)
    logger.info("Collected %d files to bundle.", len(files))
    if not files:
        logger.warning("No files matched the requested languages.")

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output.name}.", suffix=".tmp", dir=output.parent
        )
    except OSError as e:
        return BundleResult.failure(
            BundleError.WRITE_FAILURE,
            f"Could not create a temporary file next to '{output}': {e}",
            warnings,
        )

    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            if options.author:
                f.write(f"// Bundled by {options.author}\n")

            for candidate in files:
                if options.note:
                    relative = candidate.path.relative_to(root)
                    f.write(
                        f"// Source Code: {candidate.path.name}, Path: {relative}\n"
                    )

                try:
                    with candidate.path.open("r", encoding="utf-8", newline="") as src:
                        content = src.read()
                except (OSError, UnicodeDecodeError) as e:
                    return BundleResult.failure(
                        BundleError.FILE_READ_FAILURE,
                        f"Could not read '{candidate.path}': {e}",
                        warnings,
                    )

                if options.remove_empty_lines:
                    content = remove_empty_lines(content)
                    if not content:
                        continue
                f.write(content + "\n")
                logger.debug("  - %s", candidate.path)

        # mkstemp creates the file owner-only.
        os.chmod(tmp, _output_mode(output))
        os.replace(tmp, output)
    except OSError as e:
        return BundleResult.failure(
            BundleError.WRITE_FAILURE,
            f"Could not write '{output}': {e}",
            warnings,
        )
    finally:
        try:
            tmp.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove temporary file %s: %s", tmp, e)

    return BundleResult.success(len(files), warnings)


# -- Command line --
class ResponseFileParser(argparse.ArgumentParser):
    """Argument parser whose `@file` lines are split like a shell would.

    Only the top-level parser reads `@file` arguments; they are expanded
    before the subcommand is dispatched, wherever they appear on the line.
    """

    def convert_arg_line_to_args(self, arg_line):
        line = arg_line.strip()
        if not line or line.startswith("#"):
            return []
        return shlex.split(line)


def build_response_args(
    language: str,
    output: str,
    note: bool = False,
    sort: str | None = None,
    remove_empty_lines: bool = False,
    author: str | None = None,
) -> list[str]:
    """Build the `bundle` arguments stored in a response file.

    Boolean options are emitted as bare flags, and only when set.

    Returns:
        list[str]:
            The argument list, without the command name.
    """
    args = ["--language", language, "--output", output]
    if note:
        args.append("--note")
    args += ["--sort", sort or SortMode.NAME.value]
    if remove_empty_lines:
        args.append("--remove-empty-lines")
    if author:
        args += ["--author", author]
    return args


def _ask(prompt: str, input_fn: Callable[[str], str]) -> str:
    return input_fn(prompt).strip()


def _ask_bool(prompt: str, input_fn: Callable[[str], str]) -> bool:
    while True:
        answer = _ask(prompt, input_fn).lower()
        if answer in ("y", "yes", "true"):
            return True
        if answer in ("n", "no", "false"):
            return False
        logger.warning("Please answer 'yes' or 'no'.")


def _ask_sort(prompt: str, input_fn: Callable[[str], str]) -> str:
    while True:
        answer = _ask(prompt, input_fn).lower()
        if not answer:
            return SortMode.NAME.value
        if parse_sort_mode(answer) is not None:
            return answer
        logger.warning("Please answer 'name' or 'type'.")


def create_response_file(
    destination: Path = Path(DEFAULT_RESPONSE_FILE),
    input_fn: Callable[[str], str] | None = None,
) -> Path:
    """Interactively collect bundle options and save them as a response file.

    Args:
        destination (Path):
            Where to write the response file.
        input_fn (Callable[[str], str]):
            Function used to prompt the user. Defaults to `input`.

    Returns:
        Path:
            The path of the written response file.

    Raises:
        RuntimeError:
            If the response file cannot be written.
    """
    if input_fn is None:
        input_fn = input

    language = _ask("Enter languages (comma-separated, or 'all'): ", input_fn)
    output = _ask("Enter output file name: ", input_fn)
    note = _ask_bool("Include source note? (yes/no): ", input_fn)
    sort = _ask_sort("Sort by (name/type) [name]: ", input_fn)
    remove_empty = _ask_bool("Remove empty lines? (yes/no): ", input_fn)
    author = _ask("Enter author name (optional): ", input_fn)

    args = build_response_args(
        language=language,
        output=output,
        note=note,
        sort=sort,
        remove_empty_lines=remove_empty,
        author=author or None,
    )
    try:
        destination.write_text(shlex.join(args) + "\n", encoding="utf-8")
    except OSError as e:
        raise RuntimeError(f"Failed to save response file {destination}: {e}")
    return destination


def confirm_overwrite_prompt(path: Path) -> bool:
    """Ask on the terminal whether an existing output may be overwritten."""
    try:
        answer = input(f"Output file {path} already exists. Overwrite? (y/N): ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv (list[str] | None):
            List of command-line arguments. If None, uses sys.argv.

    Returns:
        argparse.Namespace:
            Parsed arguments.
    """
    parser = ResponseFileParser(
        description="Bundle source files into a single file.",
        fromfile_prefix_chars="@",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    bundle_cmd = sub.add_parser(
        "bundle",
        help="Bundle source files into a single file",
    )
    bundle_cmd.add_argument(
        "-l",
        "--language",
        type=str,
        required=True,
        help="Comma-separated programming languages, or 'all' for every recognized file",
    )
    bundle_cmd.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Output bundle file name (can be a full path)",
    )
    bundle_cmd.add_argument(
        "-n",
        "--note",
        action="store_true",
        help="Precede each file with a comment naming its source",
    )
    bundle_cmd.add_argument(
        "-s",
        "--sort",
        type=str,
        default=None,
        help="Sort files by 'name' or 'type' (default: name)",
    )
    bundle_cmd.add_argument(
        "-r",
        "--remove-empty-lines",
        action="store_true",
        help="Remove empty lines from the bundled code",
    )
    bundle_cmd.add_argument(
        "-a",
        "--author",
        type=str,
        default=None,
        help="Name of the bundle's author",
    )
    bundle_cmd.add_argument(
        "--root",
        type=str,
        default=".",
        help="Root directory to bundle (default: current dir)",
    )

    rsp_cmd = sub.add_parser(
        "create-rsp",
        help="Interactively create a response file for the bundle command",
    )
    rsp_cmd.add_argument(
        "--file",
        type=str,
        default=DEFAULT_RESPONSE_FILE,
        help=f"Response file to write (default: {DEFAULT_RESPONSE_FILE})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the pyfib command-line tool.

    Args:
        argv (list[str] | None):
            Command-line arguments. If None, uses sys.argv.

    Returns:
        int:
            Exit code (0 for success).
    """
    args = parse_args(argv)

    # Set up logging.
    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.cmd == "create-rsp":
            return _run_create_rsp(args)
        return _run_bundle(args)
    finally:
        logger.removeHandler(handler)


def _run_create_rsp(args: argparse.Namespace) -> int:
    try:
        path = create_response_file(Path(args.file))
    except (RuntimeError, EOFError) as e:
        logger.error("Could not create response file: %s", e)
        return 1
    logger.info("Response file created: %s", path)
    logger.info("Run it with: pyfib bundle @%s", path)
    return 0


def _run_bundle(args: argparse.Namespace) -> int:
    root = Path(args.root).resolve()
    if not root.is_dir():
        logger.error("Root directory '%s' does not exist.", root)
        return 1

    options = BundleOptions(
        language=args.language,
        output=Path(args.output) if args.output else None,
        note=args.note,
        sort=args.sort,
        remove_empty_lines=args.remove_empty_lines,
        author=args.author,
    )
    logger.info("Bundling %s files from %s", options.language, root)

    result = bundle(options, root, confirm_overwrite=confirm_overwrite_prompt)
    if not result.ok:
        logger.error("%s", result.message)
        return 1

    logger.info("%s Output: %s", result.message, options.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
