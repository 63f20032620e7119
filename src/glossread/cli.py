from __future__ import annotations

import argparse
import asyncio
import contextlib
import html
import sys
from importlib import metadata
from pathlib import Path
from typing import Iterator

import tomllib
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .annotations import AnnotationService, InsufficientText, Unavailable
from .config import ReaderConfig, load_config
from .core import MalformedArchive, build_document
from .generation import GenerationClient
from .logging_utils import set_debug_logging
from .segment import iter_markers, section_text
from .session import ReadingSession
from .storage import BookShelf, JsonFileStore, load_book_record


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("glossread")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ max-width: 42em; margin: 2em auto; line-height: 1.6; font-family: Georgia, serif; }}
img {{ max-width: 100%; }}
.word {{ cursor: pointer; }}
.word.highlighted {{ background: #fff3a0; }}
.word.defined {{ border-bottom: 1px dotted #3a7bd5; }}
.summary-marker {{ border-top: 1px solid #ccc; margin: 1.5em 0; cursor: pointer; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"glossread {__version__}",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="glossread",
        description="Read EPUBs as one scrollable page with cached word lookups and section summaries.",
    )
    _add_version_flag(ap)
    ap.add_argument("--config", help="Path to a TOML config file (default: <state dir>/config.toml).")
    ap.add_argument("--state-dir", help="Directory for the lookup cache and the last opened book.")
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (pipeline stages, generation requests).",
    )
    subparsers = ap.add_subparsers(dest="command")

    render = subparsers.add_parser("render", help="Assemble an EPUB into a single HTML page.")
    render.add_argument("input_path", help="Path to the .epub file")
    render.add_argument("-o", "--output", help="Output .html path (default: next to the EPUB)")
    render.add_argument(
        "--wrap-words",
        action="store_true",
        help="Wrap every word in a clickable span up front instead of leaving it to the viewer.",
    )
    render.add_argument("--interval", type=int, help="Characters per summary section (default: 5000).")

    sections = subparsers.add_parser("sections", help="List the summary sections of an EPUB.")
    sections.add_argument("input_path", help="Path to the .epub file")
    sections.add_argument("--interval", type=int, help="Characters per summary section (default: 5000).")

    define = subparsers.add_parser("define", help="Look up a word or phrase.")
    define.add_argument("words", nargs="+", help="Word or phrase to define.")
    define.add_argument("--offline", action="store_true", help="Only answer from the cache.")

    summarize = subparsers.add_parser("summarize", help="Summarize one section of an EPUB.")
    summarize.add_argument("input_path", help="Path to the .epub file")
    summarize.add_argument("-s", "--section", type=int, default=1, help="1-based section number.")
    summarize.add_argument("--interval", type=int, help="Characters per summary section (default: 5000).")
    summarize.add_argument("--offline", action="store_true", help="Only answer from the cache.")

    unmark = subparsers.add_parser("unmark", help="Forget the cached definition of a word.")
    unmark.add_argument("words", nargs="+", help="Word or phrase to forget.")

    reopen = subparsers.add_parser("reopen", help="Render the last opened book again.")
    reopen.add_argument("-o", "--output", help="Output .html path")
    reopen.add_argument("--wrap-words", action="store_true", help="Wrap every word up front.")
    return ap


def _config_from_args(args: argparse.Namespace) -> ReaderConfig:
    try:
        return load_config(
            Path(args.config).expanduser() if args.config else None,
            state_dir=args.state_dir,
            summary_interval=getattr(args, "interval", None),
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


@contextlib.contextmanager
def _open_service(config: ReaderConfig, *, offline: bool = False) -> Iterator[AnnotationService]:
    """Annotation service for one command; its HTTP session is closed on exit."""
    client = GenerationClient(
        base_url=config.api_url,
        api_key=config.api_key,
        model=config.model,
        timeout=config.request_timeout,
    )
    try:
        store = JsonFileStore(config.cache_path)
        yield AnnotationService(store, client, config=config, is_online=lambda: not offline)
    finally:
        client.close()


def _read_epub(path_text: str) -> tuple[Path, bytes]:
    inp_path = Path(path_text).expanduser()
    if not inp_path.exists():
        raise SystemExit(f"Input path not found: {inp_path}")
    if inp_path.suffix.lower() != ".epub":
        raise SystemExit(f"Input must be an .epub file: {inp_path}")
    return inp_path, inp_path.read_bytes()


def _write_page(session: ReadingSession, title: str, output: Path, wrap_words: bool) -> int:
    if session.document is None or session.tokenizer is None:
        raise RuntimeError("No book is open.")
    words = session.tokenizer.wrap_all() if wrap_words else 0
    page = _PAGE_TEMPLATE.format(title=html.escape(title), body=session.document.body_html())
    output.write_text(page, encoding="utf-8")
    return words


def _render(config: ReaderConfig, data: bytes, name: str, output: Path, wrap_words: bool) -> int:
    console = Console()
    with _open_service(config) as service:
        session = ReadingSession(
            service,
            service.store,
            config=config,
            shelf=BookShelf(config.resolved_state_dir()),
        )
        try:
            document = session.load(data, name)
        except MalformedArchive as exc:
            raise SystemExit(str(exc)) from exc
        words = _write_page(session, Path(name).stem, output, wrap_words)
    console.print(
        f"Wrote [bold]{output}[/bold] ({len(document.markers)} summary markers"
        + (f", {words} words" if wrap_words else "")
        + ")"
    )
    for skipped in document.skipped:
        console.print(f"[yellow]skipped missing document[/yellow] {skipped}")
    return 0


def _run_render(args: argparse.Namespace, config: ReaderConfig) -> int:
    inp_path, data = _read_epub(args.input_path)
    output = Path(args.output).expanduser() if args.output else inp_path.with_suffix(".html")
    return _render(config, data, inp_path.name, output, args.wrap_words)


def _run_reopen(args: argparse.Namespace, config: ReaderConfig) -> int:
    data = BookShelf(config.resolved_state_dir()).load()
    if data is None:
        raise SystemExit("No book has been opened yet.")
    record = load_book_record(JsonFileStore(config.cache_path))
    name = record.name if record else "book.epub"
    output = Path(args.output).expanduser() if args.output else Path.cwd() / f"{Path(name).stem}.html"
    return _render(config, data, name, output, args.wrap_words)


def _load_document(path_text: str, config: ReaderConfig):
    _, data = _read_epub(path_text)
    try:
        return build_document(data, summary_interval=config.summary_interval)
    except MalformedArchive as exc:
        raise SystemExit(str(exc)) from exc


def _run_sections(args: argparse.Namespace, config: ReaderConfig) -> int:
    document = _load_document(args.input_path, config)
    table = Table(title=f"{len(document.markers)} summary sections")
    table.add_column("#", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("Opening")
    for index, marker in enumerate(iter_markers(document.body), start=1):
        text = section_text(document.body, marker, config.max_summary_text)
        opening = text[:60] + ("…" if len(text) > 60 else "")
        table.add_row(str(index), str(len(text)), opening)
    Console().print(table)
    return 0


def _run_define(args: argparse.Namespace, config: ReaderConfig) -> int:
    console = Console()
    phrase = " ".join(args.words)
    with _open_service(config, offline=args.offline) as service:
        try:
            result = asyncio.run(service.lookup_word(phrase))
        except Unavailable as exc:
            raise SystemExit(str(exc)) from exc
    style = "red" if result.failed else "bold"
    console.print(f"[{style}]{escape(result.word)}[/{style}]" + (" [dim](cached)[/dim]" if result.cached else ""))
    console.print(result.definition, markup=False)
    if result.example:
        console.print(result.example, style="italic", markup=False)
    return 1 if result.failed else 0


def _run_summarize(args: argparse.Namespace, config: ReaderConfig) -> int:
    document = _load_document(args.input_path, config)
    markers = list(iter_markers(document.body))
    if not markers:
        raise SystemExit("This book has no summary sections.")
    if args.section < 1 or args.section > len(markers):
        raise SystemExit(f"--section must be between 1 and {len(markers)}.")
    text = section_text(document.body, markers[args.section - 1], config.max_summary_text)
    with _open_service(config, offline=args.offline) as service:
        try:
            result = asyncio.run(service.summarize_section(text))
        except (InsufficientText, Unavailable) as exc:
            raise SystemExit(str(exc)) from exc
    Console().print(result.summary, markup=False)
    return 1 if result.failed else 0


def _run_unmark(args: argparse.Namespace, config: ReaderConfig) -> int:
    phrase = " ".join(args.words)
    with _open_service(config, offline=True) as service:
        existed = service.is_defined(phrase)
        service.remove_word(phrase)
    Console().print(f"Removed '{phrase}'" if existed else f"'{phrase}' was not cached", markup=False)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    set_debug_logging(bool(args.debug))
    if not args.command:
        parser.print_help()
        return 0
    config = _config_from_args(args)
    handlers = {
        "render": _run_render,
        "reopen": _run_reopen,
        "sections": _run_sections,
        "define": _run_define,
        "summarize": _run_summarize,
        "unmark": _run_unmark,
    }
    return handlers[args.command](args, config)


if __name__ == "__main__":
    raise SystemExit(main())
