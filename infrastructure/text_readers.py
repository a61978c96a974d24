# infrastructure/text_readers.py
"""Readers for text-based formats: plain text, markdown, HTML, XML, JSON, YAML, LaTeX, CSV/TSV.

Every reader has the same signature:
    reader(path, options, password=None, progress=None) -> DocumentContent

Table cell text is kept out of `DocumentContent.text` whenever the format
marks tables explicitly; consumers that need everything use `full_text()`.
"""
import base64
import csv
import io
import json
import re
import uuid
import xml.etree.ElementTree as ET
from html.parser import HTMLParser
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from core.domain import (
    DocumentContent,
    DocumentImage,
    DocumentLink,
    DocumentMetadata,
    DocumentStructure,
    DocumentTable,
    ExtractionOptions,
    Heading,
)

PAGE_BREAK = "\f"


# ============= Shared helpers =============

def read_text_file(path: Path) -> str:
    """Decode a text file, tolerating a BOM and invalid bytes."""
    return Path(path).read_bytes().decode("utf-8-sig", errors="replace")


def full_text(content: DocumentContent) -> str:
    """Body text plus table cells, the way a reader of the page would see it."""
    parts = [content.text]
    for table in content.tables:
        parts.extend(" ".join(cell for cell in row) for row in table.rows)
    return "\n".join(p for p in parts if p)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def build_content(
    lines: List[str],
    headings: List[Heading],
    options: ExtractionOptions,
    *,
    tables: Optional[List[DocumentTable]] = None,
    links: Optional[List[DocumentLink]] = None,
    images: Optional[List[DocumentImage]] = None,
    fonts=frozenset(),
    formatted_text: Optional[str] = None,
    pages: int = 0,
) -> DocumentContent:
    """Assemble a DocumentContent from reader output, honoring extraction options."""
    text = "\n".join(lines).strip("\n") if options.extract_text else ""
    heading_texts = {h.text for h in headings}
    paragraphs = sum(1 for line in lines if line.strip() and line != PAGE_BREAK and line.strip() not in heading_texts)
    return DocumentContent(
        text=text,
        formatted_text=formatted_text if options.preserve_formatting else None,
        images=list(images or []) if options.extract_images else [],
        tables=list(tables or []) if options.extract_tables else [],
        links=list(links or []) if options.extract_hyperlinks else [],
        structure=DocumentStructure(
            headings=headings,
            paragraphs=paragraphs,
            sections=sum(1 for h in headings if h.level == 1),
            pages=pages,
        ),
        fonts=frozenset(fonts),
    )


def _split_pages(text: str) -> int:
    return text.count(PAGE_BREAK) + 1 if text.strip() else 0


# ============= Plain text =============

def read_txt(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    text = read_text_file(path).replace("\r\n", "\n")
    lines = text.split("\n")
    content = build_content(lines, [], options, pages=_split_pages(text))
    # paragraphs in plain text are blank-line separated blocks
    content.structure.paragraphs = len([b for b in re.split(r"\n\s*\n|\f", text) if b.strip()])
    return content


# ============= Markdown =============

_MD_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)[^)]*\)")
_MD_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)[^)]*\)")
_MD_LINK_DEF = re.compile(r'^\s*\[([^\]]+)\]:\s*(\S+)(?:\s+"(.*)")?\s*$')
_MD_TABLE_SEPARATOR = re.compile(r"^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$")
_MD_EMPHASIS = re.compile(r"(\*\*|__|\*|_|`|~~)(?=\S)(.+?)(?<=\S)\1")


def _strip_markdown(line: str) -> str:
    line = _MD_IMAGE.sub(lambda m: m.group(1), line)
    line = _MD_LINK.sub(lambda m: m.group(1), line)
    previous = None
    while previous != line:
        previous = line
        line = _MD_EMPHASIS.sub(lambda m: m.group(2), line)
    return re.sub(r"^\s*(?:[-*+]|\d+\.)\s+", "", line).lstrip("> ").rstrip()


def _md_table_row(line: str) -> List[str]:
    return [cell.strip() for cell in line.strip().strip("|").split("|")]


def read_markdown(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    raw = read_text_file(path).replace("\r\n", "\n")
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []
    current_table: Optional[List[List[str]]] = None
    in_code = False

    for line in raw.split("\n"):
        if line.strip().startswith("```"):
            in_code = not in_code
            continue
        if in_code:
            lines.append(line)
            continue

        if line.lstrip().startswith("|"):
            if _MD_TABLE_SEPARATOR.match(line.strip()):
                continue
            if current_table is None:
                current_table = []
                tables.append(DocumentTable(id=new_id("table"), rows=current_table))
            current_table.append([_strip_markdown(c) for c in _md_table_row(line)])
            continue
        current_table = None

        definition = _MD_LINK_DEF.match(line)
        if definition:
            links.append(DocumentLink(text=definition.group(3) or definition.group(1), url=definition.group(2)))
            continue
        links.extend(DocumentLink(text=m.group(1), url=m.group(2)) for m in _MD_LINK.finditer(_MD_IMAGE.sub("", line)))

        if line.strip() == PAGE_BREAK:
            lines.append(PAGE_BREAK)
            continue
        heading = _MD_HEADING.match(line)
        if heading:
            text = _strip_markdown(heading.group(2))
            headings.append(Heading(text=text, level=len(heading.group(1))))
            lines.append(text)
            continue
        stripped = _strip_markdown(line)
        if stripped.strip():
            lines.append(stripped)
        elif lines and lines[-1] != "":
            lines.append("")

    text_pages = "\n".join(lines)
    return build_content(
        lines, headings, options,
        tables=tables, links=links, formatted_text=raw, pages=_split_pages(text_pages),
    )


def markdown_title(path: Path) -> Optional[str]:
    """Front-matter title, else the first level-1 heading."""
    raw = read_text_file(path)
    front = re.match(r"^---\n(.*?)\n---\n", raw, re.S)
    if front:
        try:
            data = yaml.safe_load(front.group(1)) or {}
        except yaml.YAMLError:
            data = {}
        if isinstance(data, dict) and data.get("title"):
            return str(data["title"])
    for line in raw.splitlines():
        heading = _MD_HEADING.match(line)
        if heading and len(heading.group(1)) == 1:
            return _strip_markdown(heading.group(2))
    return None


# ============= HTML =============

class HTMLContentParser(HTMLParser):
    """Collects text blocks, headings, tables, links, images and head metadata."""

    _BLOCK_TAGS = {
        "p", "div", "li", "br", "section", "article", "blockquote", "pre", "header",
        "footer", "ul", "ol", "dl", "dt", "dd", "figure", "figcaption", "hr", "body",
    }
    _SKIP_TAGS = {"script", "style", "noscript", "template"}
    _HEADINGS = {f"h{i}": i for i in range(1, 7)}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.lines: List[str] = []
        self.headings: List[Heading] = []
        self.links: List[DocumentLink] = []
        self.images: List[Tuple[str, str]] = []
        self.tables: List[DocumentTable] = []
        self.title: Optional[str] = None
        self.meta: Dict[str, str] = {}
        self.fonts = set()
        self._buffer: List[str] = []
        self._heading_level: Optional[int] = None
        self._skip_depth = 0
        self._in_title = False
        self._title_parts: List[str] = []
        self._link_href: Optional[str] = None
        self._link_text: List[str] = []
        self._table_stack: List[List[List[str]]] = []
        self._cell: Optional[List[str]] = None

    # --- block handling ---
    def _flush(self) -> None:
        text = re.sub(r"\s+", " ", "".join(self._buffer)).strip()
        self._buffer = []
        if not text:
            return
        if self._heading_level:
            self.headings.append(Heading(text=text, level=self._heading_level))
        self.lines.append(text)

    def handle_starttag(self, tag, attrs):
        attributes = {k: (v or "") for k, v in attrs}
        if tag in self._SKIP_TAGS:
            self._skip_depth += 1
            return
        if "page-break-after" in attributes.get("style", "") or "page-break-before" in attributes.get("style", ""):
            self._flush()
            self.lines.append(PAGE_BREAK)
        if tag == "title":
            self._in_title = True
        elif tag == "meta":
            name = (attributes.get("name") or attributes.get("property") or "").lower()
            if name and "content" in attributes:
                self.meta[name] = attributes["content"]
        elif tag in self._HEADINGS:
            self._flush()
            self._heading_level = self._HEADINGS[tag]
        elif tag in self._BLOCK_TAGS:
            self._flush()
        elif tag == "a":
            self._link_href = attributes.get("href")
            self._link_text = []
        elif tag == "img":
            self.images.append((attributes.get("src", ""), attributes.get("alt", "")))
        elif tag == "table":
            self._flush()
            rows: List[List[str]] = []
            self._table_stack.append(rows)
            self.tables.append(DocumentTable(id=new_id("table"), rows=rows))
        elif tag == "tr" and self._table_stack:
            self._table_stack[-1].append([])
        elif tag in ("td", "th") and self._table_stack:
            self._cell = []
        elif tag == "font" and attributes.get("face"):
            self.fonts.add(attributes["face"])

        style = attributes.get("style", "")
        font = re.search(r"font-family\s*:\s*([^;]+)", style)
        if font:
            self.fonts.add(font.group(1).split(",")[0].strip().strip("'\""))

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)
        if tag not in ("img", "meta", "br", "hr"):
            self.handle_endtag(tag)

    def handle_endtag(self, tag):
        if tag in self._SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag == "title":
            self._in_title = False
            self.title = re.sub(r"\s+", " ", "".join(self._title_parts)).strip() or None
        elif tag in self._HEADINGS:
            self._flush()
            self._heading_level = None
        elif tag in self._BLOCK_TAGS:
            self._flush()
        elif tag == "a":
            if self._link_href and not self._link_href.startswith("#"):
                text = re.sub(r"\s+", " ", "".join(self._link_text)).strip()
                self.links.append(DocumentLink(text=text or self._link_href, url=self._link_href))
            self._link_href = None
        elif tag in ("td", "th") and self._cell is not None and self._table_stack:
            rows = self._table_stack[-1]
            if not rows:
                rows.append([])
            rows[-1].append(re.sub(r"\s+", " ", "".join(self._cell)).strip())
            self._cell = None
        elif tag == "table" and self._table_stack:
            self._table_stack.pop()

    def handle_data(self, data):
        if self._skip_depth:
            return
        if self._in_title:
            self._title_parts.append(data)
            return
        if self._link_href is not None:
            self._link_text.append(data)
        if self._cell is not None:
            self._cell.append(data)
            return
        if self._table_stack:
            return
        self._buffer.append(data)

    def close(self):
        super().close()
        self._flush()


def _decode_data_uri(src: str) -> Optional[Tuple[bytes, str]]:
    match = re.match(r"data:([\w/+.-]+);base64,(.*)", src, re.S)
    if not match:
        return None
    try:
        return base64.b64decode(match.group(2)), match.group(1)
    except ValueError:
        return None


def parse_html(markup: str, options: ExtractionOptions) -> Tuple[DocumentContent, HTMLContentParser]:
    parser = HTMLContentParser()
    parser.feed(markup)
    parser.close()

    images = []
    for index, (src, alt) in enumerate(parser.images):
        decoded = _decode_data_uri(src)
        if decoded:
            data, mime = decoded
            images.append(DocumentImage(id=f"img_{index + 1}", data=data, mime_type=mime, description=alt or None))

    text_pages = "\n".join(parser.lines)
    content = build_content(
        parser.lines, parser.headings, options,
        tables=[t for t in parser.tables if t.rows],
        links=parser.links,
        images=images,
        fonts=parser.fonts,
        formatted_text=markup,
        pages=_split_pages(text_pages) if PAGE_BREAK in text_pages else 0,
    )
    return content, parser


def read_html(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    content, _ = parse_html(read_text_file(path), options)
    return content


def read_html_metadata(path: Path) -> DocumentMetadata:
    _, parser = parse_html(read_text_file(path), ExtractionOptions(extract_images=False))
    keywords = parser.meta.get("keywords", "")
    return DocumentMetadata(
        title=parser.title,
        author=parser.meta.get("author"),
        subject=parser.meta.get("description"),
        keywords=split_keywords(keywords),
        creator=parser.meta.get("generator"),
        properties={k: v for k, v in parser.meta.items() if k not in ("author", "description", "keywords", "generator")},
    )


def split_keywords(value: Optional[str]) -> frozenset:
    if not value:
        return frozenset()
    return frozenset(k.strip() for k in re.split(r"[,;]", value) if k.strip())


# ============= XML =============

_XML_HEADING_TAGS = {"heading", "title", "h1", "h2", "h3", "h4", "h5", "h6"}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def read_xml(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    root = ET.parse(str(path)).getroot()
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []

    def walk(element, depth: int) -> None:
        tag = _local(element.tag).lower()
        if tag == "metadata":
            return
        if tag == "page-break":
            lines.append(PAGE_BREAK)
            return
        if tag == "table":
            rows = [
                ["".join(cell.itertext()).strip() for cell in row]
                for row in element if _local(row.tag).lower() in ("row", "tr")
            ]
            tables.append(DocumentTable(id=new_id("table"), rows=rows))
            return
        if tag == "link" and element.get("href"):
            links.append(DocumentLink(text="".join(element.itertext()).strip() or element.get("href"), url=element.get("href")))
            return
        text = (element.text or "").strip()
        if text:
            if tag in _XML_HEADING_TAGS:
                level = int(element.get("level") or (tag[1] if tag[1:].isdigit() else 1))
                headings.append(Heading(text=text, level=level))
            lines.append(text)
        for child in element:
            walk(child, depth + 1)
            tail = (child.tail or "").strip()
            if tail:
                lines.append(tail)

    walk(root, 0)
    return build_content(lines, headings, options, tables=tables, links=links, pages=_split_pages("\n".join(lines)) if PAGE_BREAK in lines else 0)


def read_xml_metadata(path: Path) -> DocumentMetadata:
    root = ET.parse(str(path)).getroot()
    found: Dict[str, str] = {}
    for element in root.iter():
        if _local(element.tag).lower() == "metadata":
            for child in element:
                if child.text and child.text.strip():
                    found[_local(child.tag).lower()] = child.text.strip()
            break
    return DocumentMetadata(
        title=found.pop("title", None),
        author=found.pop("author", None),
        subject=found.pop("subject", None),
        keywords=split_keywords(found.pop("keywords", None)),
        creator=found.pop("creator", None),
        producer=found.pop("producer", None),
        properties={"root_element": _local(root.tag), **found},
    )


# ============= JSON / YAML =============

def content_from_data(data: Any, options: ExtractionOptions) -> DocumentContent:
    """Structured documents written by the json/yaml writers round-trip; anything else is flattened."""
    if isinstance(data, dict) and isinstance(data.get("blocks"), list):
        lines: List[str] = []
        headings: List[Heading] = []
        for block in data["blocks"]:
            if not isinstance(block, dict):
                continue
            kind = block.get("type")
            if kind == "page_break":
                lines.append(PAGE_BREAK)
                continue
            text = str(block.get("text", "")).strip()
            if not text:
                continue
            if kind == "heading":
                headings.append(Heading(text=text, level=int(block.get("level", 1))))
            lines.append(text)
        tables = [
            DocumentTable(id=new_id("table"), rows=[[str(c) for c in row] for row in t.get("rows", [])], caption=t.get("caption"))
            for t in data.get("tables", []) if isinstance(t, dict)
        ]
        links = [
            DocumentLink(text=str(l.get("text", l.get("url", ""))), url=str(l.get("url", "")))
            for l in data.get("links", []) if isinstance(l, dict) and l.get("url")
        ]
        return build_content(lines, headings, options, tables=tables, links=links,
                             pages=_split_pages("\n".join(lines)) if PAGE_BREAK in lines else 0)

    lines = []

    def flatten(value: Any, prefix: str) -> None:
        if isinstance(value, dict):
            for key, item in value.items():
                flatten(item, f"{prefix}.{key}" if prefix else str(key))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                flatten(item, f"{prefix}[{index}]")
        else:
            lines.append(f"{prefix}: {value}" if prefix else str(value))

    flatten(data, "")
    return build_content(lines, [], options)


def metadata_from_data(data: Any) -> DocumentMetadata:
    if not isinstance(data, dict):
        return DocumentMetadata()
    meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else data
    keywords = meta.get("keywords")
    if isinstance(keywords, list):
        keywords = ",".join(str(k) for k in keywords)
    return DocumentMetadata(
        title=str(meta["title"]) if meta.get("title") else None,
        author=str(meta["author"]) if meta.get("author") else None,
        subject=str(meta["subject"]) if meta.get("subject") else None,
        keywords=split_keywords(keywords if isinstance(keywords, str) else None),
        creator=str(meta["creator"]) if meta.get("creator") else None,
        producer=str(meta["producer"]) if meta.get("producer") else None,
    )


def load_json(path: Path) -> Any:
    return json.loads(read_text_file(path))


def load_yaml(path: Path) -> Any:
    return yaml.safe_load(read_text_file(path))


def read_json(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    return content_from_data(load_json(path), options)


def read_yaml(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    return content_from_data(load_yaml(path), options)


# ============= LaTeX =============

_LATEX_SECTIONS = {"chapter": 1, "section": 1, "subsection": 2, "subsubsection": 3, "paragraph": 4, "subparagraph": 5}
_LATEX_SECTION = re.compile(r"^\\(chapter|section|subsection|subsubsection|paragraph|subparagraph)\*?\{(.*)\}\s*$")
_LATEX_HREF = re.compile(r"\\href\{([^}]*)\}\{([^}]*)\}")
_LATEX_URL = re.compile(r"\\url\{([^}]*)\}")
_LATEX_COMMAND = re.compile(r"\\[a-zA-Z]+\*?(\[[^\]]*\])?")
_LATEX_SPECIALS = {r"\&": "&", r"\%": "%", r"\$": "$", r"\#": "#", r"\_": "_", r"\{": "{", r"\}": "}",
                   r"\textbackslash{}": "\\", r"\textasciitilde{}": "~", r"\textasciicircum{}": "^"}


def _latex_argument(source: str, command: str) -> Optional[str]:
    match = re.search(r"\\" + command + r"\{(.*?)\}", source, re.S)
    return _latex_to_text(match.group(1)) if match else None


def _latex_to_text(fragment: str) -> str:
    fragment = _LATEX_HREF.sub(lambda m: m.group(2), fragment)
    fragment = _LATEX_URL.sub(lambda m: m.group(1), fragment)
    placeholders = {}
    for index, (escaped, plain) in enumerate(_LATEX_SPECIALS.items()):
        key = f"\x00{index}\x00"
        placeholders[key] = plain
        fragment = fragment.replace(escaped, key)
    fragment = _LATEX_COMMAND.sub("", fragment)
    fragment = fragment.replace("{", "").replace("}", "").replace("~", " ")
    for key, plain in placeholders.items():
        fragment = fragment.replace(key, plain)
    return re.sub(r"[ \t]+", " ", fragment).strip()


def read_latex(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    raw = read_text_file(path)
    body_match = re.search(r"\\begin\{document\}(.*?)\\end\{document\}", raw, re.S)
    body = body_match.group(1) if body_match else raw
    body = re.sub(r"(?<!\\)%.*", "", body)

    links = [DocumentLink(text=_latex_to_text(m.group(2)), url=m.group(1)) for m in _LATEX_HREF.finditer(body)]
    links += [DocumentLink(text=m.group(1), url=m.group(1)) for m in _LATEX_URL.finditer(body)]

    tables: List[DocumentTable] = []

    def _table(match) -> str:
        rows = []
        for raw_row in re.split(r"\\\\", match.group(1)):
            raw_row = raw_row.replace(r"\hline", "").strip()
            if raw_row:
                rows.append([_latex_to_text(cell) for cell in re.split(r"(?<!\\)&", raw_row)])
        tables.append(DocumentTable(id=new_id("table"), rows=rows))
        return "\n"

    body = re.sub(r"\\begin\{tabular\}(?:\{[^}]*\})?(.*?)\\end\{tabular\}", _table, body, flags=re.S)
    body = re.sub(r"\\(newpage|clearpage|pagebreak)\b", "\n" + PAGE_BREAK + "\n", body)
    body = re.sub(r"\\(maketitle|tableofcontents)\b", "", body)
    body = re.sub(r"\\(begin|end)\{[^}]*\}", "\n", body)

    lines: List[str] = []
    headings: List[Heading] = []
    for line in body.split("\n"):
        stripped = line.strip()
        if stripped == PAGE_BREAK:
            lines.append(PAGE_BREAK)
            continue
        section = _LATEX_SECTION.match(stripped)
        if section:
            text = _latex_to_text(section.group(2))
            headings.append(Heading(text=text, level=_LATEX_SECTIONS[section.group(1)]))
            lines.append(text)
            continue
        text = _latex_to_text(stripped)
        if text:
            lines.append(text)

    return build_content(lines, headings, options, tables=tables, links=links, formatted_text=raw,
                         pages=_split_pages("\n".join(lines)) if PAGE_BREAK in lines else 0)


def read_latex_metadata(path: Path) -> DocumentMetadata:
    raw = read_text_file(path)
    keywords = re.search(r"pdfkeywords=\{([^}]*)\}", raw)
    return DocumentMetadata(
        title=_latex_argument(raw, "title"),
        author=_latex_argument(raw, "author"),
        subject=_latex_argument(raw, "subject"),
        keywords=split_keywords(keywords.group(1) if keywords else None),
    )


# ============= CSV / TSV =============

def read_delimited(path: Path, options: ExtractionOptions, delimiter: Optional[str] = None, progress=None) -> DocumentContent:
    raw = read_text_file(path)
    if delimiter is None:
        try:
            delimiter = csv.Sniffer().sniff(raw[:4096], delimiters=",;|\t").delimiter
        except csv.Error:
            delimiter = ","
    rows = [row for row in csv.reader(io.StringIO(raw), delimiter=delimiter) if any(cell.strip() for cell in row)]
    content = build_content([], [], options, tables=[DocumentTable(id=new_id("table"), rows=rows)] if rows else [])
    content.structure.paragraphs = len(rows)
    return content


def read_csv(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    return read_delimited(path, options, None, progress)


def read_tsv(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    return read_delimited(path, options, "\t", progress)
