"""Core pipeline for md2book."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

LOG = logging.getLogger("md2book")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_DIR = 7
EXIT_RENDER = 9

LINK_MODE_SUBSTRING = "substring"
LINK_MODE_BOUNDARY = "boundary"
LINK_MODES = (LINK_MODE_SUBSTRING, LINK_MODE_BOUNDARY)

DEFAULT_MARKDOWN_EXTENSIONS = ("abbr", "attr_list", "def_list", "fenced_code", "tables", "md_in_html")
DEFAULT_HTML_NAME = "book.html"
DEFAULT_METADATA_NAME = "book-metadata.json"

FOOTNOTE_REF_RE = re.compile(r"\[\^(\d+)\]")
FOOTNOTE_DEF_RE = re.compile(r"\[(\d+)\]:([^\[]*?)\[/(\d+)\]")
PLACEHOLDER_TOKEN_RE = re.compile(r"fn(\d+)(?!\d)")

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
FOOTNOTE_REF_CLASS = "footnote-ref"
PARAGRAPH_CLASS = "paragraph-with-anchor"
PARAGRAPH_ANCHOR_CLASS = "paragraph-anchor"
PARAGRAPH_ANCHOR_SYMBOL = "\U0001F517"


@dataclass
class RenderConfig:
    markdown_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_MARKDOWN_EXTENSIONS))
    link_mode: str = LINK_MODE_SUBSTRING
    html_name: str = DEFAULT_HTML_NAME
    metadata_name: str = DEFAULT_METADATA_NAME
    verbose: bool = False
    debug: bool = False


@dataclass(frozen=True)
class FootnoteDefinition:
    id: str
    content: str


@dataclass(frozen=True)
class FootnoteReference:
    placeholder: str
    id: str
    number: str


@dataclass
class ContentTreeNode:
    level: int
    text: str
    id: str


@dataclass
class ExtractionResult:
    source: str
    footnotes: Dict[str, FootnoteDefinition]
    references: List[FootnoteReference]


@dataclass
class NavNode:
    title: str
    level: int
    anchor: Optional[str]
    children: List["NavNode"]


@dataclass
class PipelineOutput:
    html: str
    content_tree: List[ContentTreeNode]
    footnotes: Dict[str, FootnoteDefinition]

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "contentTree": [asdict(node) for node in self.content_tree],
            "footnotes": {key: asdict(value) for key, value in self.footnotes.items()},
        }

    @classmethod
    def from_artifact(cls, html: str, metadata: Dict[str, Any]) -> "PipelineOutput":
        tree = [
            ContentTreeNode(level=int(item["level"]), text=str(item["text"]), id=str(item["id"]))
            for item in metadata.get("contentTree") or []
        ]
        footnotes = {
            str(key): FootnoteDefinition(id=str(value["id"]), content=str(value["content"]))
            for key, value in (metadata.get("footnotes") or {}).items()
        }
        return cls(html=html, content_tree=tree, footnotes=footnotes)


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_md2book_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_md2book_logger(level)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a JSON config file and return the recognised, validated keys.

    Unknown keys are rejected so that typos do not silently fall back to
    defaults.
    """
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read config file {path}: {exc}") from exc
    if not isinstance(data_raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    allowed = {"markdown_extensions", "link_mode", "html_name", "metadata_name"}
    unknown = sorted(set(data_raw) - allowed)
    if unknown:
        raise ValueError(f"Config file {path} has unknown key(s): {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    if "markdown_extensions" in data_raw:
        exts = data_raw["markdown_extensions"]
        if not isinstance(exts, list) or not all(isinstance(e, str) and e.strip() for e in exts):
            raise ValueError(f"Config file {path}: markdown_extensions must be a list of names")
        values["markdown_extensions"] = [e.strip() for e in exts]
    if "link_mode" in data_raw:
        mode = data_raw["link_mode"]
        if mode not in LINK_MODES:
            raise ValueError(f"Config file {path}: link_mode must be one of {', '.join(LINK_MODES)}")
        values["link_mode"] = mode
    for key in ("html_name", "metadata_name"):
        if key in data_raw:
            value = data_raw[key]
            if not isinstance(value, str) or not value.strip() or "/" in value or "\\" in value:
                raise ValueError(f"Config file {path}: {key} must be a plain file name")
            values[key] = value.strip()
    return values


def render_markdown(text: str, extensions: Optional[Iterable[str]] = None) -> str:
    try:
        import markdown  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"markdown not available: {exc}") from exc

    exts = list(extensions) if extensions is not None else list(DEFAULT_MARKDOWN_EXTENSIONS)
    return markdown.markdown(text, extensions=exts)


def materialize_html(html: str):
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc

    return BeautifulSoup(html, "html.parser")


def serialize_fragment(soup) -> str:
    return soup.decode()


def _text_nodes(root) -> List[Any]:
    from bs4.element import NavigableString, PreformattedString  # type: ignore

    return [
        node
        for node in root.descendants
        if isinstance(node, NavigableString) and not isinstance(node, PreformattedString)
    ]


def extract_footnotes(source: str, config: Optional[RenderConfig] = None) -> ExtractionResult:
    config = config or RenderConfig()
    footnotes: Dict[str, FootnoteDefinition] = {}

    for match in FOOTNOTE_DEF_RE.finditer(source):
        footnote_id = f"fn{match.group(1)}"
        if footnote_id in footnotes:
            LOG.debug("Footnote %s defined more than once; keeping the last definition", footnote_id)
        content = render_markdown(match.group(2).strip(), config.markdown_extensions)
        footnotes[footnote_id] = FootnoteDefinition(id=footnote_id, content=content)

    references: List[FootnoteReference] = []

    def repl(match: re.Match) -> str:
        number = match.group(1)
        footnote_id = f"fn{number}"
        references.append(FootnoteReference(placeholder=footnote_id, id=footnote_id, number=number))
        return footnote_id

    stripped = FOOTNOTE_REF_RE.sub(repl, source)
    stripped = FOOTNOTE_DEF_RE.sub("", stripped)
    return ExtractionResult(source=stripped, footnotes=footnotes, references=references)


def dangling_references(
    references: Iterable[FootnoteReference], footnotes: Dict[str, FootnoteDefinition]
) -> List[str]:
    seen: List[str] = []
    for ref in references:
        if ref.id not in footnotes and ref.id not in seen:
            seen.append(ref.id)
    return seen


def slugify_heading(text: str) -> str:
    slug = (text or "").lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def index_headings(soup) -> List[ContentTreeNode]:
    tree: List[ContentTreeNode] = []
    id_counts: Dict[str, int] = {}
    issued = set()

    for heading in soup.find_all(HEADING_TAGS):
        level = int(heading.name[1])
        text = heading.get_text().strip()

        existing = heading.get("id")
        candidate = existing if isinstance(existing, str) and existing else slugify_heading(text)

        count = id_counts.get(candidate, 0) + 1
        heading_id = candidate if count == 1 else f"{candidate}-{count}"
        # "Intro 2" may already hold the slug a second "Intro" would get
        while heading_id in issued:
            count += 1
            heading_id = f"{candidate}-{count}"
        id_counts[candidate] = count

        issued.add(heading_id)
        heading["id"] = heading_id
        tree.append(ContentTreeNode(level=level, text=text, id=heading_id))

    return tree


def _footnote_ref_tag(soup, footnote_id: str, number: str):
    span = soup.new_tag("span")
    span["class"] = [FOOTNOTE_REF_CLASS]
    span["data-footnote-id"] = footnote_id
    span["role"] = "button"
    span["tabindex"] = "0"
    span["aria-label"] = f"Footnote {number}"
    span.string = number
    return span


def _link_substring(soup, references: List[FootnoteReference]) -> int:
    from bs4 import NavigableString  # type: ignore

    linked = 0
    # fn1 is a prefix of fn10: longer labels first, then most recent first
    ordered = sorted(enumerate(references), key=lambda item: (len(item[1].number), item[0]), reverse=True)
    for _, ref in ordered:
        matches = [node for node in _text_nodes(soup) if ref.placeholder in str(node)]
        for node in matches:
            if node.parent is None:
                continue
            before, after = str(node).split(ref.placeholder, 1)
            before_node = NavigableString(before)
            node.replace_with(before_node)
            span = _footnote_ref_tag(soup, ref.id, ref.number)
            before_node.insert_after(span)
            if after:
                span.insert_after(NavigableString(after))
            linked += 1
    return linked


def _link_boundary(soup, references: List[FootnoteReference]) -> int:
    from bs4 import NavigableString  # type: ignore

    numbers = {ref.number for ref in references}
    if not numbers:
        return 0

    linked = 0
    for node in _text_nodes(soup):
        text = str(node)
        pieces: List[Any] = []
        pos = 0
        for match in PLACEHOLDER_TOKEN_RE.finditer(text):
            number = match.group(1)
            if number not in numbers:
                continue
            pieces.append(text[pos : match.start()])
            pieces.append(_footnote_ref_tag(soup, f"fn{number}", number))
            pos = match.end()
        if not pieces:
            continue
        pieces.append(text[pos:])

        anchor = NavigableString(pieces[0])
        node.replace_with(anchor)
        for piece in pieces[1:]:
            if isinstance(piece, str):
                if not piece:
                    continue
                piece = NavigableString(piece)
            else:
                linked += 1
            anchor.insert_after(piece)
            anchor = piece
    return linked


def link_footnotes(soup, references: List[FootnoteReference], mode: str = LINK_MODE_SUBSTRING) -> int:
    """Replace footnote placeholders in text nodes with reference elements.

    In ``substring`` mode references are handled one at a time, longest label
    first and otherwise most recent first, and only the first occurrence inside each text node is linked per
    reference. ``boundary`` mode matches whole placeholder tokens and links
    every occurrence in a single pass.

    Returns the number of reference elements inserted.
    """
    if mode == LINK_MODE_SUBSTRING:
        return _link_substring(soup, references)
    if mode == LINK_MODE_BOUNDARY:
        return _link_boundary(soup, references)
    raise ValueError(f"Unknown link mode: {mode}")


def inject_paragraph_anchors(soup) -> int:
    index = 0
    for paragraph in soup.find_all("p"):
        if not paragraph.get_text().strip():
            continue
        index += 1
        paragraph_id = f"p{index}"
        paragraph["id"] = paragraph_id

        classes = paragraph.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        if PARAGRAPH_CLASS not in classes:
            classes = list(classes) + [PARAGRAPH_CLASS]
        paragraph["class"] = classes

        anchor = soup.new_tag("a", href=f"#{paragraph_id}")
        anchor["class"] = [PARAGRAPH_ANCHOR_CLASS]
        anchor["aria-label"] = "Share this paragraph"
        anchor["title"] = "Copy link to this paragraph"
        anchor.string = PARAGRAPH_ANCHOR_SYMBOL
        paragraph.insert(0, anchor)
    return index


def build_navigation_outline(content_tree: Iterable[ContentTreeNode]) -> NavNode:
    root = NavNode(title="root", level=0, anchor=None, children=[])
    stack: List[NavNode] = [root]

    for entry in content_tree or []:
        node = NavNode(title=entry.text, level=int(entry.level), anchor=entry.id, children=[])
        while len(stack) > 1 and node.level <= stack[-1].level:
            stack.pop()
        stack[-1].children.append(node)
        stack.append(node)

    return root


def serialize_navigation(node: NavNode) -> List[Dict[str, Any]]:
    return [
        {
            "title": child.title,
            "anchor": child.anchor,
            "level": child.level,
            "children": serialize_navigation(child),
        }
        for child in node.children
    ]


def render_document(source: str, config: Optional[RenderConfig] = None) -> PipelineOutput:
    config = config or RenderConfig()
    if config.link_mode not in LINK_MODES:
        raise ValueError(f"Unknown link mode: {config.link_mode}")

    extraction = extract_footnotes(source, config)
    LOG.debug(
        "Extracted %d footnote definition(s) and %d reference(s)",
        len(extraction.footnotes),
        len(extraction.references),
    )
    for footnote_id in dangling_references(extraction.references, extraction.footnotes):
        LOG.debug("Footnote reference %s has no definition", footnote_id)

    html = render_markdown(extraction.source, config.markdown_extensions)
    soup = materialize_html(html)

    tree = index_headings(soup)
    linked = link_footnotes(soup, extraction.references, config.link_mode)
    anchored = inject_paragraph_anchors(soup)
    LOG.debug("Linked %d footnote reference(s), anchored %d paragraph(s)", linked, anchored)

    return PipelineOutput(html=serialize_fragment(soup), content_tree=tree, footnotes=extraction.footnotes)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def write_artifact(
    output: PipelineOutput, out_dir: Path, config: Optional[RenderConfig] = None
) -> Tuple[Path, Path]:
    config = config or RenderConfig()
    html_path = out_dir / config.html_name
    metadata_path = out_dir / config.metadata_name
    safe_write_text(html_path, output.html)
    safe_write_text(metadata_path, json.dumps(output.to_metadata(), ensure_ascii=False, indent=2) + "\n")
    return html_path, metadata_path


def load_artifact(artifact_dir: Path, config: Optional[RenderConfig] = None) -> Optional[PipelineOutput]:
    config = config or RenderConfig()
    html_path = artifact_dir / config.html_name
    metadata_path = artifact_dir / config.metadata_name
    if not html_path.is_file() or not metadata_path.is_file():
        return None

    html = html_path.read_text(encoding="utf-8")
    try:
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid metadata file {metadata_path}: {exc}") from exc
    return PipelineOutput.from_artifact(html, metadata)


def build_book(
    source_path: Path, out_dir: Path, config: Optional[RenderConfig] = None
) -> Tuple[PipelineOutput, Path, Path]:
    config = config or RenderConfig()
    if not source_path.is_file():
        raise RuntimeError(f"Source file not found: {source_path}")

    source = source_path.read_text(encoding="utf-8")
    if config.verbose:
        LOG.info("Rendering %s", source_path)

    output = render_document(source, config)
    html_path, metadata_path = write_artifact(output, out_dir, config)

    LOG.info("Book converted to HTML: %s", html_path)
    LOG.info("Navigation tree: %d headings", len(output.content_tree))
    LOG.info("Footnotes: %d footnotes", len(output.footnotes))
    return output, html_path, metadata_path
