import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas

from api import PAGE_SIZE, BookQuery, describe_result, fetch_volumes
from config import configure_logging, get_settings
from inventory import InventoryStore
from models import LibraryItem, PersistenceError, ValidationError
from normalize import ExternalResult, normalize_google_books
from scholar import search_papers
from state import LibraryState

PREVIEW_FIELDS = ("title", "author", "type", "category", "publishing_year", "pages", "publisher", "isbn", "url")


def print_result_fields(result: ExternalResult) -> None:
    """Pretty-print the raw provider record behind a result."""
    print(json.dumps(result.raw, indent=2, ensure_ascii=False, sort_keys=True))


def print_item_preview(item: LibraryItem) -> None:
    data = item.to_dict()
    for key in PREVIEW_FIELDS:
        print(f"   {key}: {data.get(key) or ''}")


def choose_result(results: List[ExternalResult]) -> Optional[ExternalResult]:
    """Allow the user to browse results and select one."""
    if not results:
        print("Nothing matched your search.")
        return None

    offset = 0
    while offset < len(results):
        page = results[offset : offset + PAGE_SIZE]
        for idx, result in enumerate(page, start=offset + 1):
            print(describe_result(result, idx))
        print()
        prompt = (
            "Enter the number of a result to add it, 'd <number>' for full details, "
            "'n' to view more, 's' to skip this query: "
        )
        response = input(prompt).strip()
        normalized = response.lower()

        if normalized.startswith("d"):
            remainder = response[1:].strip()
            if not remainder.isdigit():
                print("Use the format 'd <number>' to view all fields for a result.")
                continue
            detail_index = int(remainder)
            if 1 <= detail_index <= len(results):
                print("\nFull API response:\n")
                print_result_fields(results[detail_index - 1])
                print()
            else:
                print("That selection is out of range. Please try again.")
            continue

        if normalized in {"s", "skip"}:
            return None
        if normalized in {"n", "next"}:
            offset += PAGE_SIZE
            continue
        try:
            selection = int(response)
        except ValueError:
            print("Please enter a valid option.")
            continue
        if 1 <= selection <= len(results):
            return results[selection - 1]
        print("That selection is out of range. Please try again.")

    print("No more results to show.")
    return None


def _ask(prompt: str) -> Optional[str]:
    """Return the stripped answer, or ``None`` when the user typed 'quit'."""
    answer = input(prompt).strip()
    return None if answer.lower() == "quit" else answer


def _search_books() -> Optional[List[ExternalResult]]:
    settings = get_settings()
    general = _ask("\nKeywords (leave blank to skip): ")
    if general is None:
        return None
    title = _ask("Title keywords (leave blank to skip): ")
    if title is None:
        return None
    author = _ask("Author keywords (leave blank to skip): ")
    if author is None:
        return None
    isbn = _ask("ISBN (leave blank to skip): ")
    if isbn is None:
        return None

    query = BookQuery(general=general or None, title=title or None, author=author or None, isbn=isbn or None)
    if not query.to_q():
        print("No query parameters provided. Please try again.")
        return []
    volumes = fetch_volumes(query, api_key=settings.google_books_api_key, timeout=settings.request_timeout)
    return normalize_google_books(volumes)


def _search_papers() -> Optional[List[ExternalResult]]:
    settings = get_settings()
    text = _ask("\nPaper keywords: ")
    if text is None:
        return None
    if not text:
        print("No query provided. Please try again.")
        return []
    return search_papers(text, provider=settings.paper_provider, timeout=settings.request_timeout)


def interactive_session(library: LibraryState) -> None:
    """Search Google Books or Google Scholar and add picks to the local library."""
    print("\nFind books and papers for your digital library.")
    print("Type 'quit' at any prompt to exit.")

    while True:
        kind = _ask("\nSearch (b)ooks or (p)apers? ")
        if kind is None:
            break
        results = _search_papers() if kind.lower().startswith("p") else _search_books()
        if results is None:
            break

        chosen = choose_result(results)
        if not chosen:
            continue

        print("\nSelected item details:")
        print_item_preview(chosen.item)

        confirm = input("Add this to your library? (y/n): ").strip().lower()
        if confirm not in {"y", "yes"}:
            print("Skipped adding this item.")
            continue

        try:
            item = library.add_item(chosen.item.to_dict())
        except (ValidationError, PersistenceError) as exc:
            print(f"Could not add this item: {exc}")
            continue
        print(f"Added '{item.title}' to {library.local.db_path}")

        continue_response = input("Search for something else? (y/n): ").strip().lower()
        if continue_response not in {"y", "yes"}:
            break

    print(f"\nSession complete. Your library holds {len(library.items)} items.")


def export_library(library: LibraryState, path: Path, fmt: str = "json") -> Path:
    records: List[Dict[str, Any]] = library.export_items()
    if fmt == "csv":
        frame = pandas.DataFrame(records, columns=list(LibraryItem.field_names()))
        frame.to_csv(path, index=False)
    else:
        path.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def import_library(library: LibraryState, path: Path) -> int:
    payload = json.loads(path.read_text(encoding="utf-8"))
    return len(library.import_items(payload))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Digital library command line tools")
    parser.add_argument("--db", type=Path, default=None, help="SQLite library file")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("search", help="interactive book and paper search (default)")

    export = commands.add_parser("export", help="write the library to a file")
    export.add_argument("output", type=Path)
    export.add_argument("--format", choices=("json", "csv"), default=None)

    importer = commands.add_parser("import", help="replace the library with a JSON export")
    importer.add_argument("source", type=Path)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    store = InventoryStore(args.db or get_settings().db_path)
    library = LibraryState(store)
    try:
        library.load()
        if args.command == "export":
            fmt = args.format or ("csv" if args.output.suffix.lower() == ".csv" else "json")
            export_library(library, args.output, fmt)
            print(f"Exported {len(library.items)} items to {args.output}")
        elif args.command == "import":
            count = import_library(library, args.source)
            print(f"Imported {count} items from {args.source}")
        else:
            interactive_session(library)
    except (ValidationError, PersistenceError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
