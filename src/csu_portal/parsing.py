"""Shared parsing utilities for portal HTML responses."""

import re
import warnings
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .exceptions import EmptyField

# javascript:JsMod('/jsxsd/...', 800, 600) and friends
_PSEUDO_URL_PATTERN = re.compile(r"""['"]([^'"]*[/?][^'"]*)['"]""")


def load_html(html: str) -> BeautifulSoup:
    """Parse HTML with the lxml parser."""
    return BeautifulSoup(html, "lxml")


def clean_text(node: Tag) -> str:
    """Element text with whitespace and non-breaking spaces removed."""
    return node.get_text(strip=True).replace("\u00a0", "").strip()


def row_cells(row: Tag, tags: tuple[str, ...] = ("td",)) -> list[str]:
    """Cleaned text of each cell in a table row."""
    return [clean_text(cell) for cell in row.find_all(list(tags))]


def table_rows(
    soup: BeautifulSoup | Tag,
    selector: str,
    skip: int = 1,
    tags: tuple[str, ...] = ("td",),
) -> list[list[str]] | None:
    """Parse a table into rows of cell text.

    Args:
        soup: BeautifulSoup object or Tag containing the table
        selector: CSS selector for the table
        skip: Number of leading header rows to drop
        tags: Cell tag names to collect

    Returns:
        List of rows, or None if the table is missing. Rows with fewer than
        two cells (colspan notices such as "no data") are dropped.
    """
    table = soup.select_one(selector)
    if table is None:
        return None

    rows = []
    for tr in table.find_all("tr")[skip:]:
        cells = row_cells(tr, tags)
        if len(cells) < 2:
            continue
        rows.append(cells)
    return rows


def fit_row(cells: list[str], width: int, context: str) -> list[str]:
    """Pad a short row with empty strings, warning with EmptyField."""
    if len(cells) >= width:
        return cells
    warnings.warn(
        f"{context}: row has {len(cells)} of {width} cells, missing values left empty",
        EmptyField,
        stacklevel=2,
    )
    return cells + [""] * (width - len(cells))


def extract_field(soup: BeautifulSoup | Tag, selector: str) -> str:
    """Extract text from a single element.

    Args:
        soup: BeautifulSoup object or Tag
        selector: CSS selector

    Returns:
        Extracted text or empty string
    """
    element = soup.select_one(selector)
    if element:
        return clean_text(element)
    return ""


def resolve_link(link: str, base: str) -> str:
    """Resolve an href, including ``javascript:`` pseudo-URLs, to an absolute URL.

    Args:
        link: href or onclick value
        base: URL of the page the link came from

    Returns:
        Absolute URL, or empty string if no target could be found.
    """
    link = link.strip()
    if not link:
        return ""
    if link.lower().startswith("javascript:") or "(" in link:
        match = _PSEUDO_URL_PATTERN.search(link)
        if not match:
            return ""
        link = match.group(1)
    return urljoin(base, link)
