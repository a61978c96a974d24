# infrastructure/readers.py
"""Readers for binary and container formats (PDF, Office Open XML, OpenDocument, RTF, email, EPUB, ZIP).

Same signature as the text readers:
    reader(path, options, password=None, progress=None) -> DocumentContent
"""
import email
import html
import io
import logging
import mailbox
import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import docx
import fitz  # PyMuPDF
from PIL import Image

from config import settings
from core.domain import (
    DocumentContent,
    DocumentConversionError,
    DocumentImage,
    DocumentLink,
    DocumentMetadata,
    DocumentTable,
    ErrorCode,
    ExtractionOptions,
    Heading,
)
from infrastructure.text_readers import PAGE_BREAK, build_content, new_id, parse_html, split_keywords

logger = logging.getLogger(settings.LOGGER_NAME)

NS = {
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "p": "http://schemas.openxmlformats.org/presentationml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
    "cp": "http://schemas.openxmlformats.org/package/2006/metadata/core-properties",
    "ep": "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties",
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
    "office": "urn:oasis:names:tc:opendocument:xmlns:office:1.0",
    "text": "urn:oasis:names:tc:opendocument:xmlns:text:1.0",
    "table": "urn:oasis:names:tc:opendocument:xmlns:table:1.0",
    "draw": "urn:oasis:names:tc:opendocument:xmlns:drawing:1.0",
    "style": "urn:oasis:names:tc:opendocument:xmlns:style:1.0",
    "meta": "urn:oasis:names:tc:opendocument:xmlns:meta:1.0",
    "xlink": "http://www.w3.org/1999/xlink",
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
}

_HYPERLINK_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/hyperlink"


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 (OOXML, ODF, OPF) or PDF 'D:YYYYMMDDHHmmSS' dates."""
    if not value:
        return None
    value = value.strip()
    pdf = re.match(r"D:(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?", value)
    if pdf:
        parts = [int(p) if p else d for p, d in zip(pdf.groups(), (1, 1, 1, 0, 0, 0))]
        try:
            return datetime(*parts)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _image_size(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except Exception:
        return 0, 0


# ============= PDF =============

def _open_pdf(path: Path, password: Optional[str]):
    doc = fitz.open(str(path))
    if doc.needs_pass and not (password and doc.authenticate(password)):
        doc.close()
        raise DocumentConversionError("PDF is password protected", ErrorCode.EXTRACTION_FAILED)
    return doc


def _pdf_page_markup(page) -> str:
    """Bold/italic spans of one page as light HTML."""
    parts = []
    for block in page.get_text("dict").get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            spans = []
            for span in line.get("spans", []):
                text = html.escape(span.get("text", ""))
                if span.get("flags", 0) & 16:
                    text = f"<b>{text}</b>"
                if span.get("flags", 0) & 2:
                    text = f"<i>{text}</i>"
                spans.append(text)
            if spans:
                parts.append("<p>" + "".join(spans) + "</p>")
    return "\n".join(parts)


def read_pdf(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    doc = _open_pdf(path, password)
    try:
        pages: List[str] = []
        markup: List[str] = []
        links: List[DocumentLink] = []
        images: List[DocumentImage] = []
        fonts = set()
        for index, page in enumerate(doc):
            if progress:
                progress.step(index, doc.page_count)
            pages.append(page.get_text("text").strip("\n"))
            for font in page.get_fonts():
                # subset fonts are prefixed "ABCDEF+"
                fonts.add(font[3].split("+", 1)[-1])
            if options.preserve_formatting:
                markup.append(_pdf_page_markup(page))
            if options.extract_hyperlinks:
                for link in page.get_links():
                    uri = link.get("uri")
                    if uri:
                        anchor = page.get_textbox(link["from"]).strip() if link.get("from") else ""
                        links.append(DocumentLink(text=anchor or uri, url=uri))
            if options.extract_images:
                for info in page.get_images(full=True):
                    extracted = doc.extract_image(info[0])
                    if extracted:
                        images.append(DocumentImage(
                            id=f"p{index + 1}_x{info[0]}",
                            data=extracted["image"],
                            mime_type=f"image/{extracted.get('ext', 'png')}",
                            width=extracted.get("width", 0),
                            height=extracted.get("height", 0),
                        ))

        headings = [
            Heading(text=entry[1].strip(), level=entry[0], page_number=entry[2])
            for entry in doc.get_toc(simple=True) if entry[1].strip()
        ]
        lines: List[str] = []
        for index, page_text in enumerate(pages):
            if index:
                lines.append(PAGE_BREAK)
            lines.extend(page_text.split("\n"))
        return build_content(
            lines, headings, options,
            links=links, images=images, fonts={f for f in fonts if f},
            formatted_text="\n".join(markup) if markup else None,
            pages=doc.page_count,
        )
    finally:
        doc.close()


def read_pdf_metadata(path: Path) -> DocumentMetadata:
    with fitz.open(str(path)) as doc:
        meta = doc.metadata or {}
        return DocumentMetadata(
            title=meta.get("title") or None,
            author=meta.get("author") or None,
            subject=meta.get("subject") or None,
            keywords=split_keywords(meta.get("keywords")),
            creator=meta.get("creator") or None,
            producer=meta.get("producer") or None,
            creation_date=_parse_date(meta.get("creationDate")),
            modification_date=_parse_date(meta.get("modDate")),
            page_count=doc.page_count,
            is_encrypted=bool(doc.is_encrypted or meta.get("encryption")),
            is_password_protected=bool(doc.needs_pass),
            properties={"format": meta.get("format") or ""},
        )


# ============= DOCX =============

def _docx_heading_level(style_name: str) -> Optional[int]:
    if style_name == "Title":
        return 1
    match = re.match(r"Heading (\d)", style_name or "")
    return int(match.group(1)) if match else None


def _docx_run_markup(paragraph) -> str:
    parts = []
    for run in paragraph.runs:
        text = html.escape(run.text)
        if run.bold:
            text = f"<b>{text}</b>"
        if run.italic:
            text = f"<i>{text}</i>"
        if run.underline:
            text = f"<u>{text}</u>"
        parts.append(text)
    return "".join(parts)


def read_docx(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    document = docx.Document(str(path))
    lines: List[str] = []
    headings: List[Heading] = []
    links: List[DocumentLink] = []
    markup: List[str] = []
    fonts = set()

    normal_font = document.styles["Normal"].font.name if "Normal" in [s.name for s in document.styles] else None
    if normal_font:
        fonts.add(normal_font)

    paragraphs = document.paragraphs
    for index, paragraph in enumerate(paragraphs):
        if progress:
            progress.step(index, len(paragraphs))
        if paragraph._p.xpath('.//w:br[@w:type="page"]'):
            lines.append(PAGE_BREAK)
        for run in paragraph.runs:
            if run.font.name:
                fonts.add(run.font.name)
        if options.extract_hyperlinks:
            for link in paragraph.hyperlinks:
                if link.address:
                    links.append(DocumentLink(text=link.text or link.address, url=link.address))

        text = paragraph.text.strip()
        if not text:
            continue
        level = _docx_heading_level(paragraph.style.name if paragraph.style is not None else "")
        if level:
            headings.append(Heading(text=text, level=level))
            markup.append(f"<h{min(level, 6)}>{html.escape(text)}</h{min(level, 6)}>")
        else:
            markup.append(f"<p>{_docx_run_markup(paragraph)}</p>")
        lines.append(text)

    tables = [
        DocumentTable(id=f"table_{i + 1}", rows=[[cell.text.strip() for cell in row.cells] for row in table.rows])
        for i, table in enumerate(document.tables)
    ]

    images: List[DocumentImage] = []
    if options.extract_images:
        for rel in document.part.rels.values():
            if "image" in rel.reltype and not rel.is_external:
                blob = rel.target_part.blob
                width, height = _image_size(blob)
                images.append(DocumentImage(
                    id=rel.rId, data=blob, mime_type=rel.target_part.content_type, width=width, height=height
                ))

    return build_content(
        lines, headings, options,
        tables=tables, links=links, images=images, fonts=fonts,
        formatted_text="\n".join(markup),
        pages=lines.count(PAGE_BREAK) + 1 if lines else 0,
    )


def read_docx_metadata(path: Path) -> DocumentMetadata:
    props = docx.Document(str(path)).core_properties
    extra = {
        "last_modified_by": props.last_modified_by or "",
        "category": props.category or "",
        "comments": props.comments or "",
        "revision": str(props.revision or ""),
    }
    return DocumentMetadata(
        title=props.title or None,
        author=props.author or None,
        subject=props.subject or None,
        keywords=split_keywords(props.keywords),
        creator=props.author or None,
        creation_date=props.created,
        modification_date=props.modified,
        properties={k: v for k, v in extra.items() if v},
    )


# ============= RTF =============

_RTF_TOKEN = re.compile(
    r"\\([a-zA-Z]{1,32})(-?\d{1,10})? ?|\\'([0-9a-fA-F]{2})|\\([^a-zA-Z])|([{}])|[\r\n]+|([^\\{}\r\n]+)"
)
_RTF_DESTINATIONS = {
    "fonttbl", "colortbl", "stylesheet", "info", "pict", "header", "footer", "headerl", "headerr",
    "footerl", "footerr", "object", "xmlnstbl", "listtable", "listoverridetable", "generator",
    "themedata", "datastore", "latentstyles", "rsidtbl", "filetbl", "revtbl", "fldinst",
}


def _rtf_paragraphs(source: str) -> List[Tuple[str, Optional[int]]]:
    """Split RTF into (paragraph text, outline level) pairs; ignorable destinations are dropped."""
    paragraphs: List[Tuple[str, Optional[int]]] = []
    stack: List[bool] = []
    skip = False
    skip_chars = 0
    buffer: List[str] = []
    outline: Optional[int] = None

    def flush():
        text = "".join(buffer).encode("utf-16-le", "surrogatepass").decode("utf-16-le", errors="replace")
        paragraphs.append((text.strip(), outline))
        buffer.clear()

    for match in _RTF_TOKEN.finditer(source):
        word, arg, hexcode, symbol, brace, text = match.groups()
        if brace == "{":
            stack.append(skip)
        elif brace == "}":
            skip = stack.pop() if stack else False
        elif symbol is not None:
            if symbol == "*":
                skip = True
            elif not skip and symbol in "\\{}":
                buffer.append(symbol)
            elif not skip and symbol == "~":
                buffer.append(" ")
        elif word is not None:
            if word in _RTF_DESTINATIONS:
                skip = True
            elif skip:
                continue
            elif word == "pard":
                outline = None
            elif word == "outlinelevel":
                outline = int(arg or 0)
            elif word in ("par", "line", "row"):
                flush()
            elif word == "page":
                flush()
                paragraphs.append((PAGE_BREAK, None))
            elif word in ("tab", "cell"):
                buffer.append("\t")
            elif word == "u" and arg is not None:
                buffer.append(chr(int(arg) % 0x10000))
                skip_chars = 1
        elif hexcode is not None:
            if not skip:
                buffer.append(bytes.fromhex(hexcode).decode("cp1252", errors="replace"))
        elif text is not None and not skip:
            if skip_chars:
                text = text[skip_chars:]
                skip_chars = 0
            buffer.append(text)
    flush()
    return paragraphs


def read_rtf(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    source = Path(path).read_bytes().decode("latin-1")
    if not source.lstrip().startswith("{\\rtf"):
        raise DocumentConversionError("Not an RTF document", ErrorCode.INVALID_FORMAT)
    lines: List[str] = []
    headings: List[Heading] = []
    for text, outline in _rtf_paragraphs(source):
        if not text:
            continue
        if text != PAGE_BREAK and outline is not None:
            headings.append(Heading(text=text, level=outline + 1))
        lines.append(text)
    fonts = set(re.findall(r"\\f\d+\\f\w+(?:\\\w+)* ([^;{}\\]+);", source))
    return build_content(lines, headings, options, fonts={f.strip() for f in fonts},
                         pages=lines.count(PAGE_BREAK) + 1 if lines else 0)


def read_rtf_metadata(path: Path) -> DocumentMetadata:
    source = Path(path).read_bytes().decode("latin-1")

    def field(name: str) -> Optional[str]:
        match = re.search(r"\{\\" + name + r" ([^{}]*)\}", source)
        if not match:
            return None
        return "".join(t for t, _ in _rtf_paragraphs(match.group(1))) or None

    return DocumentMetadata(
        title=field("title"),
        author=field("author"),
        subject=field("subject"),
        keywords=split_keywords(field("keywords")),
        creator=field("operator"),
    )


# ============= OpenDocument (ODT / ODP) =============

def _odf_text(element) -> str:
    return re.sub(r"\s+", " ", "".join(element.itertext())).strip()


def _odf_walk(element, lines, headings, tables, links) -> None:
    for child in element:
        tag = child.tag
        if tag == f"{{{NS['text']}}}h":
            text = _odf_text(child)
            if text:
                level = int(child.get(f"{{{NS['text']}}}outline-level", "1"))
                headings.append(Heading(text=text, level=level))
                lines.append(text)
        elif tag == f"{{{NS['text']}}}p":
            text = _odf_text(child)
            if text:
                lines.append(text)
        elif tag == f"{{{NS['table']}}}table":
            rows = [
                [_odf_text(cell) for cell in row.iter(f"{{{NS['table']}}}table-cell")]
                for row in child.iter(f"{{{NS['table']}}}table-row")
            ]
            tables.append(DocumentTable(id=new_id("table"), rows=rows))
            continue
        else:
            _odf_walk(child, lines, headings, tables, links)
            continue
        for anchor in child.iter(f"{{{NS['text']}}}a"):
            href = anchor.get(f"{{{NS['xlink']}}}href")
            if href:
                links.append(DocumentLink(text=_odf_text(anchor) or href, url=href))


def read_odt(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    with zipfile.ZipFile(path) as archive:
        root = ET.fromstring(archive.read("content.xml"))
        images = _zip_images(archive, "Pictures/") if options.extract_images else []
    body = root.find("office:body/office:text", NS)
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []
    if body is not None:
        _odf_walk(body, lines, headings, tables, links)
    fonts = set()
    font_decls = root.find("office:font-face-decls", NS)
    if font_decls is not None:
        fonts = {decl.get(f"{{{NS['style']}}}name", "") for decl in font_decls}
    return build_content(lines, headings, options, tables=tables, links=links, images=images,
                         fonts={f for f in fonts if f})


def read_odp(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    with zipfile.ZipFile(path) as archive:
        root = ET.fromstring(archive.read("content.xml"))
        images = _zip_images(archive, "Pictures/") if options.extract_images else []
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []
    slides = root.findall(".//draw:page", NS)
    for index, slide in enumerate(slides):
        if progress:
            progress.step(index, len(slides))
        if index:
            lines.append(PAGE_BREAK)
        slide_lines: List[str] = []
        _odf_walk(slide, slide_lines, headings, tables, links)
        if slide_lines:
            # first text frame of a slide is its title
            headings.append(Heading(text=slide_lines[0], level=1, page_number=index + 1))
        lines.extend(slide_lines)
    return build_content(lines, headings, options, tables=tables, links=links, images=images, pages=len(slides))


def read_odf_metadata(path: Path) -> DocumentMetadata:
    with zipfile.ZipFile(path) as archive:
        if "meta.xml" not in archive.namelist():
            return DocumentMetadata()
        root = ET.fromstring(archive.read("meta.xml"))
    meta = root.find("office:meta", NS)
    if meta is None:
        return DocumentMetadata()

    def value(tag: str) -> Optional[str]:
        element = meta.find(tag, NS)
        return element.text.strip() if element is not None and element.text else None

    stats = meta.find("meta:document-statistic", NS)
    page_count = stats.get(f"{{{NS['meta']}}}page-count") if stats is not None else None
    keywords = frozenset(k.text.strip() for k in meta.findall("meta:keyword", NS) if k.text)
    return DocumentMetadata(
        title=value("dc:title"),
        author=value("meta:initial-creator") or value("dc:creator"),
        subject=value("dc:subject"),
        keywords=keywords,
        creator=value("meta:generator"),
        creation_date=_parse_date(value("meta:creation-date")),
        modification_date=_parse_date(value("dc:date")),
        page_count=int(page_count) if page_count else None,
    )


def _zip_images(archive: zipfile.ZipFile, prefix: str) -> List[DocumentImage]:
    images = []
    for name in archive.namelist():
        if name.startswith(prefix) and re.search(r"\.(png|jpe?g|gif|bmp|tiff?|webp)$", name, re.I):
            data = archive.read(name)
            width, height = _image_size(data)
            ext = name.rsplit(".", 1)[-1].lower().replace("jpg", "jpeg")
            images.append(DocumentImage(id=name, data=data, mime_type=f"image/{ext}", width=width, height=height))
    return images


# ============= PPTX =============

def _relationships(archive: zipfile.ZipFile, part: str) -> Dict[str, Tuple[str, str, str]]:
    """rId -> (type, target, mode) for an OOXML part."""
    folder, name = posixpath.split(part)
    rels_name = posixpath.join(folder, "_rels", f"{name}.rels")
    if rels_name not in archive.namelist():
        return {}
    rels = {}
    for rel in ET.fromstring(archive.read(rels_name)).findall("rel:Relationship", NS):
        target = rel.get("Target", "")
        mode = rel.get("TargetMode", "Internal")
        if mode != "External":
            target = posixpath.normpath(posixpath.join(folder, target))
        rels[rel.get("Id")] = (rel.get("Type", ""), target, mode)
    return rels


def _pptx_slide_parts(archive: zipfile.ZipFile) -> List[str]:
    """Slides in presentation order; falls back to numeric part names."""
    names = archive.namelist()
    if "ppt/presentation.xml" in names:
        rels = _relationships(archive, "ppt/presentation.xml")
        root = ET.fromstring(archive.read("ppt/presentation.xml"))
        ordered = []
        for slide_id in root.findall("p:sldIdLst/p:sldId", NS):
            rel = rels.get(slide_id.get(f"{{{NS['r']}}}id"))
            if rel and rel[1] in names:
                ordered.append(rel[1])
        if ordered:
            return ordered
    slides = [n for n in names if re.match(r"ppt/slides/slide\d+\.xml$", n)]
    return sorted(slides, key=lambda n: int(re.search(r"(\d+)\.xml$", n).group(1)))


def read_pptx(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []
    images: List[DocumentImage] = []
    fonts = set()

    with zipfile.ZipFile(path) as archive:
        slides = _pptx_slide_parts(archive)
        for index, part in enumerate(slides):
            if progress:
                progress.step(index, len(slides))
            if index:
                lines.append(PAGE_BREAK)
            root = ET.fromstring(archive.read(part))
            rels = _relationships(archive, part)

            for table in root.iter(f"{{{NS['a']}}}tbl"):
                rows = [
                    ["".join(t.text or "" for t in cell.iter(f"{{{NS['a']}}}t")).strip()
                     for cell in row.findall("a:tc", NS)]
                    for row in table.findall("a:tr", NS)
                ]
                tables.append(DocumentTable(id=new_id("table"), rows=rows))
            table_paragraphs = {id(p) for table in root.iter(f"{{{NS['a']}}}tbl") for p in table.iter(f"{{{NS['a']}}}p")}

            slide_lines = []
            for paragraph in root.iter(f"{{{NS['a']}}}p"):
                if id(paragraph) in table_paragraphs:
                    continue
                text = "".join(t.text or "" for t in paragraph.iter(f"{{{NS['a']}}}t")).strip()
                if text:
                    slide_lines.append(text)
            for latin in root.iter(f"{{{NS['a']}}}latin"):
                typeface = latin.get("typeface", "")
                if typeface and not typeface.startswith("+"):
                    fonts.add(typeface)
            if slide_lines:
                headings.append(Heading(text=slide_lines[0], level=1, page_number=index + 1))
            lines.extend(slide_lines)

            for rel_type, target, mode in rels.values():
                if options.extract_hyperlinks and rel_type == _HYPERLINK_REL and mode == "External":
                    links.append(DocumentLink(text=target, url=target))
                elif options.extract_images and rel_type.endswith("/image") and target in archive.namelist():
                    data = archive.read(target)
                    width, height = _image_size(data)
                    ext = target.rsplit(".", 1)[-1].lower().replace("jpg", "jpeg")
                    images.append(DocumentImage(id=target, data=data, mime_type=f"image/{ext}", width=width, height=height))

    return build_content(lines, headings, options, tables=tables, links=links, images=images,
                         fonts=fonts, pages=len(slides))


def read_ooxml_metadata(path: Path) -> DocumentMetadata:
    """docProps/core.xml and docProps/app.xml of any Office Open XML package."""
    with zipfile.ZipFile(path) as archive:
        names = archive.namelist()
        core = ET.fromstring(archive.read("docProps/core.xml")) if "docProps/core.xml" in names else None
        app = ET.fromstring(archive.read("docProps/app.xml")) if "docProps/app.xml" in names else None

    def value(root, tag: str) -> Optional[str]:
        if root is None:
            return None
        element = root.find(tag, NS)
        return element.text.strip() if element is not None and element.text else None

    slides = value(app, "ep:Slides") or value(app, "ep:Pages")
    return DocumentMetadata(
        title=value(core, "dc:title"),
        author=value(core, "dc:creator"),
        subject=value(core, "dc:subject"),
        keywords=split_keywords(value(core, "cp:keywords")),
        creator=value(app, "ep:Application"),
        creation_date=_parse_date(value(core, "dcterms:created")),
        modification_date=_parse_date(value(core, "dcterms:modified")),
        page_count=int(slides) if slides and slides.isdigit() else None,
        properties={"last_modified_by": value(core, "cp:lastModifiedBy") or ""},
    )


# ============= Email =============

def parse_email(data: bytes) -> EmailMessage:
    return email.message_from_bytes(data, policy=policy.default)


def _message_lines(message: EmailMessage, options: ExtractionOptions, headings, links, images) -> List[str]:
    subject = str(message.get("subject", "") or "").strip()
    lines: List[str] = []
    if subject:
        headings.append(Heading(text=subject, level=1))
        lines.append(subject)
    for header in ("From", "To", "Cc", "Date"):
        if message.get(header):
            lines.append(f"{header}: {message.get(header)}")
    lines.append("")

    body = message.get_body(preferencelist=("plain", "html"))
    if body is not None:
        payload = body.get_content()
        if body.get_content_type() == "text/html":
            parsed, _ = parse_html(payload, options)
            lines.extend(parsed.text.split("\n"))
            links.extend(parsed.links)
        else:
            lines.extend(payload.replace("\r\n", "\n").strip("\n").split("\n"))
            links.extend(DocumentLink(text=url, url=url) for url in re.findall(r"https?://[^\s<>\"]+", payload))

    for attachment in message.iter_attachments():
        filename = attachment.get_filename() or "attachment"
        if options.extract_images and attachment.get_content_maintype() == "image":
            data = attachment.get_payload(decode=True) or b""
            width, height = _image_size(data)
            images.append(DocumentImage(id=filename, data=data, mime_type=attachment.get_content_type(),
                                        width=width, height=height, description=filename))
    return lines


def read_eml(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    message = parse_email(Path(path).read_bytes())
    headings, links, images = [], [], []
    lines = _message_lines(message, options, headings, links, images)
    return build_content(lines, headings, options, links=links, images=images, pages=1)


def read_mbox_messages(path: Path) -> List[EmailMessage]:
    box = mailbox.mbox(str(path), create=False)
    try:
        return [parse_email(message.as_bytes()) for message in box]
    finally:
        box.close()


def read_mbox(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    messages = read_mbox_messages(path)
    lines: List[str] = []
    headings, links, images = [], [], []
    for index, message in enumerate(messages):
        if progress:
            progress.step(index, len(messages))
        if index:
            lines.append(PAGE_BREAK)
        lines.extend(_message_lines(message, options, headings, links, images))
    return build_content(lines, headings, options, links=links, images=images, pages=len(messages))


def _message_metadata(message: EmailMessage, page_count: int) -> DocumentMetadata:
    date = None
    if message.get("date"):
        try:
            date = parsedate_to_datetime(str(message["date"]))
        except (TypeError, ValueError):
            date = None
    properties = {h.lower(): str(message[h]) for h in ("To", "Cc", "Message-ID") if message.get(h)}
    return DocumentMetadata(
        title=str(message.get("subject")) if message.get("subject") else None,
        author=str(message.get("from")) if message.get("from") else None,
        keywords=split_keywords(str(message.get("keywords") or "")),
        creator=str(message.get("x-mailer")) if message.get("x-mailer") else None,
        creation_date=date,
        page_count=page_count,
        properties=properties,
    )


def read_eml_metadata(path: Path) -> DocumentMetadata:
    return _message_metadata(parse_email(Path(path).read_bytes()), 1)


def read_mbox_metadata(path: Path) -> DocumentMetadata:
    messages = read_mbox_messages(path)
    if not messages:
        return DocumentMetadata(page_count=0)
    first = _message_metadata(messages[0], len(messages))
    return DocumentMetadata(
        title=first.title,
        author=first.author,
        creation_date=first.creation_date,
        page_count=len(messages),
        properties={"message_count": str(len(messages))},
    )


# ============= EPUB =============

def _epub_package(archive: zipfile.ZipFile) -> Tuple[str, ET.Element]:
    container = ET.fromstring(archive.read("META-INF/container.xml"))
    rootfile = container.find(".//container:rootfile", NS)
    if rootfile is None:
        raise DocumentConversionError("EPUB has no rootfile", ErrorCode.INVALID_FORMAT)
    opf_path = rootfile.get("full-path")
    return opf_path, ET.fromstring(archive.read(opf_path))


def read_epub(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    lines: List[str] = []
    headings: List[Heading] = []
    tables: List[DocumentTable] = []
    links: List[DocumentLink] = []
    images: List[DocumentImage] = []
    fonts = set()

    with zipfile.ZipFile(path) as archive:
        opf_path, package = _epub_package(archive)
        base = posixpath.dirname(opf_path)
        manifest = {
            item.get("id"): (posixpath.normpath(posixpath.join(base, item.get("href", ""))), item.get("media-type", ""))
            for item in package.findall("opf:manifest/opf:item", NS)
        }
        spine = [manifest[ref.get("idref")][0] for ref in package.findall("opf:spine/opf:itemref", NS)
                 if ref.get("idref") in manifest]

        for index, chapter in enumerate(spine):
            if progress:
                progress.step(index, len(spine))
            if chapter not in archive.namelist():
                logger.warning(f"[EPUB] Spine item missing from archive: {chapter}")
                continue
            parsed, _ = parse_html(archive.read(chapter).decode("utf-8", errors="replace"), options)
            if lines and parsed.text:
                lines.append(PAGE_BREAK)
            lines.extend(parsed.text.split("\n") if parsed.text else [])
            headings.extend(parsed.structure.headings)
            tables.extend(parsed.tables)
            links.extend(l for l in parsed.links if re.match(r"https?://", l.url))
            fonts.update(parsed.fonts)

        if options.extract_images:
            for href, media_type in manifest.values():
                if media_type.startswith("image/") and href in archive.namelist():
                    data = archive.read(href)
                    width, height = _image_size(data)
                    images.append(DocumentImage(id=href, data=data, mime_type=media_type, width=width, height=height))

    return build_content(lines, headings, options, tables=tables, links=links, images=images, fonts=fonts,
                         pages=len(spine))


def read_epub_metadata(path: Path) -> DocumentMetadata:
    with zipfile.ZipFile(path) as archive:
        _, package = _epub_package(archive)
    metadata = package.find("opf:metadata", NS)
    if metadata is None:
        return DocumentMetadata()

    def value(tag: str) -> Optional[str]:
        element = metadata.find(tag, NS)
        return element.text.strip() if element is not None and element.text else None

    subjects = frozenset(s.text.strip() for s in metadata.findall("dc:subject", NS) if s.text)
    return DocumentMetadata(
        title=value("dc:title"),
        author=value("dc:creator"),
        subject=value("dc:description"),
        keywords=subjects,
        producer=value("dc:publisher"),
        creation_date=_parse_date(value("dc:date")),
        properties={k: v for k, v in {"language": value("dc:language"), "identifier": value("dc:identifier")}.items() if v},
    )


# ============= ZIP =============

def read_zip_listing(path: Path, options: ExtractionOptions, password=None, progress=None) -> DocumentContent:
    with zipfile.ZipFile(path) as archive:
        names = [info.filename for info in archive.infolist() if not info.is_dir()]
    return build_content(names, [], options)


def read_zip_metadata(path: Path) -> DocumentMetadata:
    with zipfile.ZipFile(path) as archive:
        infos = archive.infolist()
        encrypted = any(info.flag_bits & 0x1 for info in infos)
        comment = archive.comment.decode("utf-8", errors="replace") if archive.comment else ""
    files = [info for info in infos if not info.is_dir()]
    return DocumentMetadata(
        subject=comment or None,
        is_encrypted=encrypted,
        is_password_protected=encrypted,
        properties={
            "entry_count": str(len(files)),
            "uncompressed_size": str(sum(info.file_size for info in files)),
            "compressed_size": str(sum(info.compress_size for info in files)),
        },
    )
