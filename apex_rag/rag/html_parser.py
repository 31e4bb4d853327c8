"""HTML parser that turns a wiki page into semantically labelled chunks.

Handles:
- Page title detection
- Infobox key/value summary
- Removal of navigation, edit links, galleries and tables of contents
- Section-aware walk over paragraphs, lists and tables
"""
import hashlib
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
import structlog

from apex_rag import config

logger = structlog.get_logger()

DEFAULT_SECTION = "Introduction"
INFOBOX_SECTION = "Infobox Summary"

# Sub-elements that never carry informational content
STRIP_SELECTORS = [
    ".toc",
    "#toc",
    ".mw-editsection",
    ".navbox",
    ".gallery",
    "script",
    "style",
]

SECTION_HEADINGS = {"h2", "h3"}
LIST_TAGS = {"ul", "ol"}

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ChunkMetadata:
    """Provenance of a chunk."""

    source: str
    page_title: str
    section_title: str = DEFAULT_SECTION

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "pageTitle": self.page_title,
            "sectionTitle": self.section_title,
        }


@dataclass(frozen=True)
class Chunk:
    """One retrievable unit of page text plus its provenance."""

    content: str
    metadata: ChunkMetadata

    @property
    def chunk_id(self) -> str:
        """Stable identifier derived from source, section and content.

        Re-ingesting unchanged content yields the same id, so upserts
        overwrite instead of duplicating.
        """
        digest = hashlib.sha256(
            "|".join(
                [self.metadata.source, self.metadata.section_title, self.content]
            ).encode("utf-8")
        ).hexdigest()
        return f"chunk-{digest[:32]}"

    def to_metadata(self) -> Dict[str, str]:
        """Metadata stored alongside the vector, including the text itself."""
        return {"text": self.content, **self.metadata.to_dict()}


@dataclass
class _WalkState:
    page_title: str
    source: str
    section_title: str = DEFAULT_SECTION
    chunks: List[Chunk] = field(default_factory=list)

    def emit(self, content: str) -> None:
        content = content.strip()
        if content:
            self.chunks.append(
                Chunk(
                    content=content,
                    metadata=ChunkMetadata(
                        source=self.source,
                        page_title=self.page_title,
                        section_title=self.section_title,
                    ),
                )
            )


def clean_text(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return _WHITESPACE.sub(" ", text).strip()


def filter_short_chunks(
    chunks: Iterable[Chunk], min_length: Optional[int] = None
) -> List[Chunk]:
    """Drop chunks whose content is shorter than the minimum length.

    Args:
        chunks: Chunks to filter
        min_length: Minimum content length (default from config)

    Returns:
        Chunks at or above the threshold, order preserved
    """
    min_length = config.MIN_CHUNK_LENGTH if min_length is None else min_length
    return [chunk for chunk in chunks if len(chunk.content) >= min_length]


def _split_item(node: Tag, own_text: List[str], nested: List[Tag]) -> None:
    """Separate an item's own text from the lists nested anywhere inside it."""
    for child in node.children:
        if isinstance(child, Tag) and child.name in LIST_TAGS:
            nested.append(child)
        elif isinstance(child, NavigableString) and not isinstance(child, Comment):
            own_text.append(str(child))
        elif isinstance(child, Tag):
            if child.find(list(LIST_TAGS)) is not None:
                _split_item(child, own_text, nested)
            else:
                own_text.append(child.get_text())


def render_list(list_tag: Tag, depth: int = 0) -> List[str]:
    """Flatten a ul/ol into indented bullet lines.

    Nested lists are rendered directly below their parent item, one
    indentation level deeper, even when wrapped in another element.

    Args:
        list_tag: The ul or ol element
        depth: Current nesting depth

    Returns:
        Rendered lines in document order
    """
    lines = []
    indent = "  " * depth

    for item in list_tag.find_all("li", recursive=False):
        own_text = []
        nested = []
        _split_item(item, own_text, nested)

        text = clean_text("".join(own_text))
        if text:
            lines.append(f"{indent}- {text}")

        for sublist in nested:
            lines.extend(render_list(sublist, depth + 1))

    return lines


def _own_rows(table: Tag) -> List[Tag]:
    """Rows of this table, excluding rows of nested tables."""
    return [row for row in table.find_all("tr") if row.find_parent("table") is table]


def _cell_text(cell: Tag) -> str:
    for br in cell.find_all("br"):
        br.replace_with(" ")
    return clean_text(cell.get_text())


def render_table(table: Tag) -> str:
    """Render a table as pipe-delimited text.

    A table with exactly one header cell and one data cell collapses to a
    single ``"Label: Value"`` line.

    Args:
        table: The table element

    Returns:
        Rendered text, empty if the table has no usable cells
    """
    rows = []
    header_cells = 0
    data_cells = 0
    for row in _own_rows(table):
        cells = [cell for cell in row.find_all(["th", "td"]) if cell.find_parent("tr") is row]
        if not cells:
            continue
        header_cells += sum(1 for cell in cells if cell.name == "th")
        data_cells += sum(1 for cell in cells if cell.name == "td")
        rows.append([(cell.name, _cell_text(cell)) for cell in cells])

    if not rows:
        return ""

    if header_cells == 1 and data_cells == 1:
        label = next(text for row in rows for name, text in row if name == "th")
        value = next(text for row in rows for name, text in row if name == "td")
        return f"{label}: {value}"

    header = [text for _, text in rows[0]]
    body = [[text for _, text in row] for row in rows[1:]]
    body = [row for row in body if any(row)]

    lines = [
        "| " + " | ".join(header) + " |",
        "| " + " | ".join("---" for _ in header) + " |",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in body)
    return "\n".join(lines)


class WikiPageParser:
    """Parser for MediaWiki article HTML."""

    def __init__(self, min_chunk_length: Optional[int] = None):
        """Initialize the parser.

        Args:
            min_chunk_length: Minimum section chunk length (default from config)
        """
        self.min_chunk_length = (
            config.MIN_CHUNK_LENGTH if min_chunk_length is None else min_chunk_length
        )

    def parse(self, html: str, page_name: str, source: Optional[str] = None) -> List[Chunk]:
        """Extract ordered chunks from a page.

        Args:
            html: Raw page markup
            page_name: Wiki slug of the page
            source: Public URL of the page (defaults to the slug)

        Returns:
            Infobox summary chunk (if any) followed by section chunks in
            document order
        """
        soup = BeautifulSoup(html, "html.parser")
        source = source or page_name
        page_title = self._extract_title(soup, page_name)

        content = self._content_root(soup)
        if content is None:
            logger.warning("page_content_missing", page=page_name)
            return []

        chunks = []

        infobox = content.find(class_="infobox") or soup.find(class_="infobox")
        if infobox is not None:
            rows = self._infobox_rows(infobox)
            if rows:
                summary = "\n".join(f"{label}: {value}" for label, value in rows)
                chunks.append(
                    Chunk(
                        content=summary,
                        metadata=ChunkMetadata(
                            source=source,
                            page_title=page_title,
                            section_title=INFOBOX_SECTION,
                        ),
                    )
                )
            infobox.decompose()

        for selector in STRIP_SELECTORS:
            for element in content.select(selector):
                element.decompose()

        state = _WalkState(page_title=page_title, source=source)
        self._walk(content, state)
        chunks.extend(filter_short_chunks(state.chunks, self.min_chunk_length))

        logger.debug(
            "page_parsed",
            page=page_name,
            title=page_title,
            chunk_count=len(chunks),
        )
        return chunks

    def _extract_title(self, soup: BeautifulSoup, page_name: str) -> str:
        heading = soup.find(id="firstHeading")
        if heading is not None:
            title = clean_text(heading.get_text(" "))
            if title:
                return title

        if soup.title is not None and soup.title.string:
            title = clean_text(soup.title.string.split(" - ")[0])
            if title:
                return title

        return page_name.replace("_", " ")

    def _content_root(self, soup: BeautifulSoup) -> Optional[Tag]:
        root = soup.find(id="mw-content-text")
        if root is not None:
            return root.find(class_="mw-parser-output") or root
        return soup.body or soup

    def _infobox_rows(self, infobox: Tag) -> List[Tuple[str, str]]:
        """Collect (label, value) pairs from table or portable infoboxes."""
        rows = []

        for row in infobox.find_all("tr"):
            label = row.find("th")
            value = row.find("td")
            if label is None or value is None:
                continue
            label_text = _cell_text(label)
            value_text = _cell_text(value)
            if label_text and value_text:
                rows.append((label_text, value_text))

        for item in infobox.select(".pi-data"):
            label = item.select_one(".pi-data-label")
            value = item.select_one(".pi-data-value")
            if label is None or value is None:
                continue
            label_text = clean_text(label.get_text(" "))
            value_text = clean_text(value.get_text(" "))
            if label_text and value_text:
                rows.append((label_text, value_text))

        return rows

    def _walk(self, node: Tag, state: _WalkState) -> None:
        for child in node.children:
            if not isinstance(child, Tag):
                continue

            if child.name in SECTION_HEADINGS:
                headline = child.find(class_="mw-headline") or child
                title = clean_text(headline.get_text())
                if title:
                    state.section_title = title
            elif child.name == "p":
                state.emit(clean_text(child.get_text()))
            elif child.name in LIST_TAGS:
                state.emit("\n".join(render_list(child)))
            elif child.name == "table":
                state.emit(render_table(child))
            else:
                self._walk(child, state)
