# infrastructure/writers.py
"""Writers rendering a DocumentContent into a target format.

Every writer has the same signature:
    writer(content, metadata, output_path, options, progress) -> None

`progress` is a monitor span: writers call progress.step(done, total) per block,
which also raises ConversionCancelled when the invocation was cancelled.
"""
import base64
import csv
import html
import io
import json
import logging
import re
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import docx
import fitz  # PyMuPDF
import yaml
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches
from PIL import Image

from config import settings
from core.domain import CompressionLevel, ConversionOptions, DocumentContent, DocumentLink, DocumentMetadata
from infrastructure.text_readers import PAGE_BREAK

logger = logging.getLogger(settings.LOGGER_NAME)

GENERATOR = "docconvert"


# ============= Block model =============

@dataclass
class Block:
    kind: str  # "heading" | "paragraph" | "page_break"
    text: str = ""
    level: int = 0


def content_blocks(content: DocumentContent, keep_page_breaks: bool = True) -> List[Block]:
    """Split content text into headings, paragraphs and page breaks (one block per non-empty line)."""
    pending = list(content.structure.headings)
    blocks: List[Block] = []
    for raw_line in content.text.split("\n"):
        for index, part in enumerate(raw_line.split(PAGE_BREAK)):
            if index and keep_page_breaks and blocks and blocks[-1].kind != "page_break":
                blocks.append(Block("page_break"))
            text = part.strip()
            if not text:
                continue
            match = next((i for i, h in enumerate(pending) if h.text.strip() == text), None)
            if match is not None:
                heading = pending.pop(match)
                blocks.append(Block("heading", text, max(1, heading.level)))
            else:
                blocks.append(Block("paragraph", text))
    while blocks and blocks[-1].kind == "page_break":
        blocks.pop()
    return blocks


def link_segments(text: str, pending: List[DocumentLink]) -> List[Tuple[str, Optional[DocumentLink]]]:
    """Split text around the first occurrence of each pending link's text. Used links leave `pending`."""
    segments: List[Tuple[str, Optional[DocumentLink]]] = [(text, None)]
    for link in list(pending):
        if not link.text:
            continue
        for index, (segment, attached) in enumerate(segments):
            if attached is None and link.text in segment:
                before, _, after = segment.partition(link.text)
                replacement = [(before, None), (link.text, link), (after, None)]
                segments[index:index + 1] = [s for s in replacement if s[0]]
                pending.remove(link)
                break
    return segments


def _title(content: DocumentContent, metadata: DocumentMetadata) -> Optional[str]:
    if metadata.title:
        return metadata.title
    return content.structure.headings[0].text if content.structure.headings else None


def _as_png(data: bytes) -> Optional[bytes]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            buffer = io.BytesIO()
            frame = image.convert("RGBA") if image.mode not in ("RGB", "RGBA", "L") else image
            frame.save(buffer, format="PNG")
            return buffer.getvalue()
    except Exception as e:
        logger.warning(f"[WRITE] Skipping unreadable image: {e}")
        return None


def _metadata_fields(metadata: DocumentMetadata) -> Dict[str, Any]:
    fields = {
        "title": metadata.title,
        "author": metadata.author,
        "subject": metadata.subject,
        "keywords": sorted(metadata.keywords) or None,
        "creator": metadata.creator,
        "producer": metadata.producer,
    }
    return {k: v for k, v in fields.items() if v}


# ============= Plain text =============

def write_txt(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    separator = "\n\n" + PAGE_BREAK + "\n" if options.preserve_page_numbers else "\n\n"
    parts = [p.strip("\n") for p in content.text.split(PAGE_BREAK)]
    text = separator.join(p for p in parts if p)
    progress.step(1, 2)
    for table in content.tables:
        rows = "\n".join("\t".join(row) for row in table.rows)
        text = f"{text}\n\n{rows}" if text else rows
    Path(output_path).write_text(text + "\n", encoding="utf-8")


# ============= Markdown =============

def write_markdown(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    pending = list(content.links) if options.preserve_hyperlinks else []
    out: List[str] = []
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks))
        if block.kind == "heading":
            out.append(f"{'#' * min(block.level, 6)} {block.text}")
        elif block.kind == "page_break":
            out.append(PAGE_BREAK)
        else:
            out.append("".join(f"[{t}]({l.url})" if l else t for t, l in link_segments(block.text, pending)))
        out.append("")

    for table in content.tables:
        if not table.rows:
            continue
        width = table.column_count
        rows = [row + [""] * (width - len(row)) for row in table.rows]
        out.append("| " + " | ".join(c.replace("|", "\\|") for c in rows[0]) + " |")
        out.append("|" + "---|" * width)
        out.extend("| " + " | ".join(c.replace("|", "\\|") for c in row) + " |" for row in rows[1:])
        out.append("")

    for index, link in enumerate(pending, start=1):
        out.append(f'[{index}]: {link.url} "{link.text.replace(chr(34), "")}"')
    Path(output_path).write_text("\n".join(out).rstrip("\n") + "\n", encoding="utf-8")


# ============= HTML =============

def write_html(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    esc = html.escape
    pending = list(content.links) if options.preserve_hyperlinks else []
    head = ['<meta charset="utf-8">', f'<meta name="generator" content="{GENERATOR}">']
    title = _title(content, metadata)
    if title:
        head.append(f"<title>{esc(title)}</title>")
    if options.preserve_metadata:
        if metadata.author:
            head.append(f'<meta name="author" content="{esc(metadata.author)}">')
        if metadata.subject:
            head.append(f'<meta name="description" content="{esc(metadata.subject)}">')
        if metadata.keywords:
            head.append(f'<meta name="keywords" content="{esc(", ".join(sorted(metadata.keywords)))}">')
    if options.preserve_fonts and content.fonts:
        head.append(f"<style>body {{ font-family: '{esc(sorted(content.fonts)[0])}', sans-serif; }}</style>")

    body: List[str] = []
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks))
        if block.kind == "heading":
            level = min(block.level, 6)
            body.append(f"<h{level}>{esc(block.text)}</h{level}>")
        elif block.kind == "page_break":
            body.append('<div style="page-break-after: always"></div>')
        else:
            inner = "".join(
                f'<a href="{esc(l.url)}">{esc(t)}</a>' if l else esc(t) for t, l in link_segments(block.text, pending)
            )
            body.append(f"<p>{inner}</p>")

    for table in content.tables:
        rows = "".join("<tr>" + "".join(f"<td>{esc(c)}</td>" for c in row) + "</tr>" for row in table.rows)
        caption = f"<caption>{esc(table.caption)}</caption>" if table.caption else ""
        body.append(f"<table>{caption}{rows}</table>")
    for link in pending:
        body.append(f'<p><a href="{esc(link.url)}">{esc(link.text or link.url)}</a></p>')
    if options.preserve_images:
        for image in content.images:
            encoded = base64.b64encode(image.data).decode("ascii")
            body.append(f'<img src="data:{image.mime_type};base64,{encoded}" alt="{esc(image.description or image.id)}">')

    document = "\n".join(["<!DOCTYPE html>", "<html>", "<head>", *head, "</head>", "<body>", *body, "</body>", "</html>"])
    Path(output_path).write_text(document + "\n", encoding="utf-8")


# ============= PDF =============

_PDF_SAVE_OPTIONS = {
    CompressionLevel.NONE: {"garbage": 0, "deflate": False},
    CompressionLevel.LOW: {"garbage": 1, "deflate": True},
    CompressionLevel.MEDIUM: {"garbage": 3, "deflate": True},
    CompressionLevel.HIGH: {"garbage": 4, "deflate": True, "clean": True},
}
_BODY_FONT = "helv"
_HEADING_FONT = "hebo"


def _pdf_date(value: Optional[datetime]) -> str:
    return value.strftime("D:%Y%m%d%H%M%S") if value else ""


def _wrap(text: str, fontname: str, fontsize: float, width: float) -> List[str]:
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if fitz.get_text_length(candidate, fontname=fontname, fontsize=fontsize) <= width:
            current = candidate
            continue
        if current:
            lines.append(current)
        while len(word) > 1 and fitz.get_text_length(word, fontname=fontname, fontsize=fontsize) > width:
            ratio = width / fitz.get_text_length(word, fontname=fontname, fontsize=fontsize)
            cut = max(1, int(len(word) * ratio))
            lines.append(word[:cut])
            word = word[cut:]
        current = word
    if current:
        lines.append(current)
    return lines


class _PdfLayout:
    """Top-to-bottom text flow over A4 pages."""

    MARGIN = 72

    def __init__(self, doc):
        self.doc = doc
        self.width, self.height = fitz.paper_size("a4")
        self.page = None
        self.y = 0.0
        self.new_page()

    @property
    def page_number(self) -> int:
        return self.doc.page_count

    @property
    def text_width(self) -> float:
        return self.width - 2 * self.MARGIN

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=self.width, height=self.height)
        self.y = self.MARGIN

    def line(self, text: str, fontname: str, fontsize: float):
        leading = fontsize * 1.4
        if self.y + leading > self.height - self.MARGIN:
            self.new_page()
        self.page.insert_text((self.MARGIN, self.y + fontsize), text, fontname=fontname, fontsize=fontsize)
        rect = fitz.Rect(self.MARGIN, self.y, self.MARGIN + fitz.get_text_length(text, fontname=fontname, fontsize=fontsize),
                         self.y + leading)
        self.y += leading
        return rect

    def paragraph(self, text: str, fontname: str, fontsize: float, spacing: float) -> None:
        for line in _wrap(text, fontname, fontsize, self.text_width):
            self.line(line, fontname, fontsize)
        self.y += spacing

    def image(self, data: bytes) -> None:
        png = _as_png(data)
        if png is None:
            return
        with Image.open(io.BytesIO(png)) as image:
            width, height = image.size
        scale = min(1.0, self.text_width / max(width, 1), (self.height - 2 * self.MARGIN) / max(height, 1))
        width, height = width * scale, height * scale
        if self.y + height > self.height - self.MARGIN:
            self.new_page()
        self.page.insert_image(fitz.Rect(self.MARGIN, self.y, self.MARGIN + width, self.y + height), stream=png)
        self.y += height + 12


def _normalized_toc(entries: List[List[Any]]) -> List[List[Any]]:
    """PDF outlines must start at level 1 and never skip a level downwards."""
    toc = []
    previous = 0
    for level, title, page in entries:
        level = max(1, min(level, previous + 1))
        toc.append([level, title, page])
        previous = level
    return toc


def write_pdf(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    body_size = settings.PDF_FONT_SIZE
    heading_size = settings.PDF_HEADING_FONT_SIZE
    doc = fitz.open()
    try:
        layout = _PdfLayout(doc)
        toc: List[List[Any]] = []
        blocks = content_blocks(content, options.preserve_page_numbers)
        total = len(blocks) + len(content.tables) + 1
        for index, block in enumerate(blocks):
            progress.step(index, total)
            if block.kind == "page_break":
                layout.new_page()
            elif block.kind == "heading":
                size = max(body_size + 1, heading_size - 2 * (block.level - 1))
                layout.y += 6
                toc.append([block.level, block.text, layout.page_number])
                layout.paragraph(block.text, _HEADING_FONT, size, 6)
            else:
                layout.paragraph(block.text, _BODY_FONT, body_size, 4)

        for index, table in enumerate(content.tables):
            progress.step(len(blocks) + index, total)
            layout.y += 6
            for row in table.rows:
                layout.paragraph("   ".join(row), _BODY_FONT, body_size, 0)
            layout.y += 6

        if options.preserve_images:
            for image in content.images:
                progress.check()
                layout.image(image.data)

        if options.preserve_hyperlinks:
            for link in content.links:
                placed = False
                if link.text:
                    for page in doc:
                        hits = page.search_for(link.text)
                        if hits:
                            page.insert_link({"kind": fitz.LINK_URI, "from": hits[0], "uri": link.url})
                            placed = True
                            break
                if not placed:
                    rect = layout.line(link.url, _BODY_FONT, body_size)
                    layout.page.insert_link({"kind": fitz.LINK_URI, "from": rect, "uri": link.url})

        if toc:
            doc.set_toc(_normalized_toc(toc))
        if options.preserve_metadata:
            doc.set_metadata({
                "title": metadata.title or "",
                "author": metadata.author or "",
                "subject": metadata.subject or "",
                "keywords": ", ".join(sorted(metadata.keywords)),
                "creator": metadata.creator or "",
                "producer": GENERATOR,
                "creationDate": _pdf_date(metadata.creation_date),
                "modDate": _pdf_date(metadata.modification_date),
            })
        progress.step(total, total)
        doc.save(str(output_path), **_PDF_SAVE_OPTIONS[options.compression_level])
    finally:
        doc.close()


# ============= DOCX =============

def _add_hyperlink(paragraph, url: str, text: str) -> None:
    r_id = paragraph.part.relate_to(url, RT.HYPERLINK, is_external=True)
    hyperlink = OxmlElement("w:hyperlink")
    hyperlink.set(qn("r:id"), r_id)
    run = OxmlElement("w:r")
    properties = OxmlElement("w:rPr")
    color = OxmlElement("w:color")
    color.set(qn("w:val"), "0563C1")
    underline = OxmlElement("w:u")
    underline.set(qn("w:val"), "single")
    properties.append(color)
    properties.append(underline)
    run.append(properties)
    text_element = OxmlElement("w:t")
    text_element.set(qn("xml:space"), "preserve")
    text_element.text = text
    run.append(text_element)
    hyperlink.append(run)
    paragraph._p.append(hyperlink)


def write_docx(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    document = docx.Document()
    if options.preserve_fonts and content.fonts:
        document.styles["Normal"].font.name = sorted(content.fonts)[0]

    pending = list(content.links) if options.preserve_hyperlinks else []
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            document.add_heading(block.text, level=max(1, min(block.level, 9)))
        elif block.kind == "page_break":
            document.add_page_break()
        else:
            paragraph = document.add_paragraph()
            for text, link in link_segments(block.text, pending):
                if link:
                    _add_hyperlink(paragraph, link.url, text)
                else:
                    paragraph.add_run(text)

    for table in content.tables:
        if not table.rows:
            continue
        grid = document.add_table(rows=len(table.rows), cols=table.column_count)
        grid.style = "Table Grid"
        for r, row in enumerate(table.rows):
            for c, value in enumerate(row):
                grid.cell(r, c).text = value

    for link in pending:
        _add_hyperlink(document.add_paragraph(), link.url, link.text or link.url)

    if options.preserve_images:
        for image in content.images:
            progress.check()
            png = _as_png(image.data)
            if png:
                width = Inches(min(6.0, (image.width or 576) / 96))
                document.add_picture(io.BytesIO(png), width=width)

    if options.preserve_metadata:
        props = document.core_properties
        props.title = metadata.title or ""
        props.author = metadata.author or ""
        props.subject = metadata.subject or ""
        props.keywords = ", ".join(sorted(metadata.keywords))
        if metadata.creation_date:
            props.created = metadata.creation_date
        if metadata.modification_date:
            props.modified = metadata.modification_date
    document.save(str(output_path))


# ============= RTF =============

def _rtf_escape(text: str) -> str:
    out = []
    for ch in text:
        if ch in "\\{}":
            out.append("\\" + ch)
        elif ch == "\t":
            out.append("\\tab ")
        elif ord(ch) > 127:
            encoded = ch.encode("utf-16-le", "surrogatepass")
            for i in range(0, len(encoded), 2):
                unit = int.from_bytes(encoded[i:i + 2], "little", signed=True)
                out.append(f"\\u{unit}?")
        else:
            out.append(ch)
    return "".join(out)


def write_rtf(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    font = sorted(content.fonts)[0] if options.preserve_fonts and content.fonts else "Helvetica"
    out = ["{\\rtf1\\ansi\\ansicpg1252\\deff0", f"{{\\fonttbl{{\\f0\\fswiss {_rtf_escape(font)};}}}}"]
    if options.preserve_metadata:
        info = [f"{{\\{key} {_rtf_escape(value)}}}" for key, value in (
            ("title", metadata.title), ("author", metadata.author), ("subject", metadata.subject),
            ("keywords", ", ".join(sorted(metadata.keywords))),
        ) if value]
        out.append("{\\info" + "".join(info) + "}")

    pending = list(content.links) if options.preserve_hyperlinks else []
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            size = max(24, 32 - 2 * (block.level - 1))
            out.append(f"\\pard\\outlinelevel{block.level - 1}\\b\\fs{size} {_rtf_escape(block.text)}\\b0\\fs22\\par")
        elif block.kind == "page_break":
            out.append("\\page")
        else:
            parts = []
            for text, link in link_segments(block.text, pending):
                if link:
                    parts.append(f'{{\\field{{\\*\\fldinst{{HYPERLINK "{link.url}"}}}}{{\\fldrslt{{\\ul {_rtf_escape(text)}}}}}}}')
                else:
                    parts.append(_rtf_escape(text))
            out.append("\\pard\\fs22 " + "".join(parts) + "\\par")

    for table in content.tables:
        width = max(table.column_count, 1)
        for row in table.rows:
            cells = "".join(f"\\cellx{(c + 1) * (9000 // width)}" for c in range(width))
            values = "".join(f"\\intbl {_rtf_escape(v)}\\cell" for v in row + [""] * (width - len(row)))
            out.append(f"\\pard\\trowd{cells}{values}\\row")
        out.append("\\pard\\par")

    out.append("}")
    Path(output_path).write_bytes("\n".join(out).encode("latin-1", errors="replace"))


# ============= ODT =============

_ODF = {
    "office": "urn:oasis:names:tc:opendocument:xmlns:office:1.0",
    "text": "urn:oasis:names:tc:opendocument:xmlns:text:1.0",
    "table": "urn:oasis:names:tc:opendocument:xmlns:table:1.0",
    "style": "urn:oasis:names:tc:opendocument:xmlns:style:1.0",
    "draw": "urn:oasis:names:tc:opendocument:xmlns:drawing:1.0",
    "svg": "urn:oasis:names:tc:opendocument:xmlns:svg-compatible:1.0",
    "xlink": "http://www.w3.org/1999/xlink",
    "meta": "urn:oasis:names:tc:opendocument:xmlns:meta:1.0",
    "dc": "http://purl.org/dc/elements/1.1/",
    "manifest": "urn:oasis:names:tc:opendocument:xmlns:manifest:1.0",
}
ODT_MIMETYPE = "application/vnd.oasis.opendocument.text"


def _q(prefix: str, name: str) -> str:
    return f"{{{_ODF[prefix]}}}{name}"


def _odt_paragraph(parent, text: str, pending: List[DocumentLink]) -> None:
    paragraph = ET.SubElement(parent, _q("text", "p"))
    last = None
    for segment, link in link_segments(text, pending):
        if link:
            last = ET.SubElement(paragraph, _q("text", "a"), {_q("xlink", "type"): "simple", _q("xlink", "href"): link.url})
            last.text = segment
        elif last is None:
            paragraph.text = (paragraph.text or "") + segment
        else:
            last.tail = (last.tail or "") + segment


def write_odt(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    for prefix, uri in _ODF.items():
        ET.register_namespace(prefix, uri)

    root = ET.Element(_q("office", "document-content"), {_q("office", "version"): "1.2"})
    if options.preserve_fonts and content.fonts:
        faces = ET.SubElement(root, _q("office", "font-face-decls"))
        for font in sorted(content.fonts):
            ET.SubElement(faces, _q("style", "font-face"), {_q("style", "name"): font, _q("svg", "font-family"): font})
    text_root = ET.SubElement(ET.SubElement(root, _q("office", "body")), _q("office", "text"))

    pending = list(content.links) if options.preserve_hyperlinks else []
    blocks = content_blocks(content, keep_page_breaks=False)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            heading = ET.SubElement(text_root, _q("text", "h"), {_q("text", "outline-level"): str(block.level)})
            heading.text = block.text
        else:
            _odt_paragraph(text_root, block.text, pending)

    for number, table in enumerate(content.tables, start=1):
        grid = ET.SubElement(text_root, _q("table", "table"), {_q("table", "name"): f"Table{number}"})
        ET.SubElement(grid, _q("table", "table-column"),
                      {_q("table", "number-columns-repeated"): str(max(table.column_count, 1))})
        for row in table.rows:
            row_element = ET.SubElement(grid, _q("table", "table-row"))
            for value in row:
                cell = ET.SubElement(row_element, _q("table", "table-cell"), {_q("office", "value-type"): "string"})
                ET.SubElement(cell, _q("text", "p")).text = value
    for link in pending:
        _odt_paragraph(text_root, link.text or link.url, [link])

    pictures: Dict[str, bytes] = {}
    if options.preserve_images:
        for number, image in enumerate(content.images, start=1):
            png = _as_png(image.data)
            if png is None:
                continue
            name = f"Pictures/image{number}.png"
            pictures[name] = png
            with Image.open(io.BytesIO(png)) as picture:
                width, height = picture.size
            scale = min(1.0, 16.0 / max(width / 37.8, 0.01))
            frame = ET.SubElement(ET.SubElement(text_root, _q("text", "p")), _q("draw", "frame"), {
                _q("svg", "width"): f"{width / 37.8 * scale:.2f}cm",
                _q("svg", "height"): f"{height / 37.8 * scale:.2f}cm",
            })
            ET.SubElement(frame, _q("draw", "image"), {_q("xlink", "href"): name, _q("xlink", "type"): "simple"})

    meta_root = ET.Element(_q("office", "document-meta"), {_q("office", "version"): "1.2"})
    meta = ET.SubElement(meta_root, _q("office", "meta"))
    ET.SubElement(meta, _q("meta", "generator")).text = GENERATOR
    if options.preserve_metadata:
        for tag, value in (("dc:title", metadata.title), ("dc:subject", metadata.subject),
                           ("meta:initial-creator", metadata.author), ("dc:creator", metadata.author)):
            if value:
                prefix, name = tag.split(":")
                ET.SubElement(meta, _q(prefix, name)).text = value
        for keyword in sorted(metadata.keywords):
            ET.SubElement(meta, _q("meta", "keyword")).text = keyword
        if metadata.creation_date:
            ET.SubElement(meta, _q("meta", "creation-date")).text = metadata.creation_date.isoformat()

    manifest = ET.Element(_q("manifest", "manifest"), {_q("manifest", "version"): "1.2"})
    for path, media_type in [("/", ODT_MIMETYPE), ("content.xml", "text/xml"), ("meta.xml", "text/xml")] + \
            [(name, "image/png") for name in pictures]:
        ET.SubElement(manifest, _q("manifest", "file-entry"),
                      {_q("manifest", "full-path"): path, _q("manifest", "media-type"): media_type})

    with zipfile.ZipFile(output_path, "w") as archive:
        # mimetype must be the first entry and stored uncompressed
        archive.writestr(zipfile.ZipInfo("mimetype"), ODT_MIMETYPE, compress_type=zipfile.ZIP_STORED)
        archive.writestr("content.xml", ET.tostring(root, encoding="utf-8", xml_declaration=True), zipfile.ZIP_DEFLATED)
        archive.writestr("meta.xml", ET.tostring(meta_root, encoding="utf-8", xml_declaration=True), zipfile.ZIP_DEFLATED)
        archive.writestr("META-INF/manifest.xml", ET.tostring(manifest, encoding="utf-8", xml_declaration=True),
                         zipfile.ZIP_DEFLATED)
        for name, data in pictures.items():
            archive.writestr(name, data, zipfile.ZIP_DEFLATED)


# ============= XML / JSON / YAML =============

def document_dict(content: DocumentContent, metadata: DocumentMetadata, options: ConversionOptions, progress) -> Dict[str, Any]:
    blocks = content_blocks(content, options.preserve_page_numbers)
    serialized = []
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            serialized.append({"type": "heading", "level": block.level, "text": block.text})
        elif block.kind == "page_break":
            serialized.append({"type": "page_break"})
        else:
            serialized.append({"type": "paragraph", "text": block.text})
    data: Dict[str, Any] = {}
    if options.preserve_metadata:
        data["metadata"] = _metadata_fields(metadata)
    data["blocks"] = serialized
    if content.tables:
        data["tables"] = [{"caption": t.caption, "rows": t.rows} if t.caption else {"rows": t.rows} for t in content.tables]
    if options.preserve_hyperlinks and content.links:
        data["links"] = [{"text": l.text, "url": l.url} for l in content.links]
    return data


def write_json(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    data = document_dict(content, metadata, options, progress)
    Path(output_path).write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def write_yaml(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    data = document_dict(content, metadata, options, progress)
    Path(output_path).write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")


def write_xml(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    root = ET.Element("document")
    if options.preserve_metadata:
        meta = ET.SubElement(root, "metadata")
        for key, value in _metadata_fields(metadata).items():
            ET.SubElement(meta, key).text = ", ".join(value) if isinstance(value, list) else value
    body = ET.SubElement(root, "body")
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            ET.SubElement(body, "heading", {"level": str(block.level)}).text = block.text
        elif block.kind == "page_break":
            ET.SubElement(body, "page-break")
        else:
            ET.SubElement(body, "paragraph").text = block.text
    for table in content.tables:
        table_element = ET.SubElement(body, "table")
        for row in table.rows:
            row_element = ET.SubElement(table_element, "row")
            for value in row:
                ET.SubElement(row_element, "cell").text = value
    if options.preserve_hyperlinks and content.links:
        links = ET.SubElement(root, "links")
        for link in content.links:
            ET.SubElement(links, "link", {"href": link.url}).text = link.text
    ET.indent(root)
    ET.ElementTree(root).write(str(output_path), encoding="utf-8", xml_declaration=True)


# ============= LaTeX =============

_LATEX_ESCAPES = {
    "\\": r"\textbackslash{}", "&": r"\&", "%": r"\%", "$": r"\$", "#": r"\#",
    "_": r"\_", "{": r"\{", "}": r"\}", "~": r"\textasciitilde{}", "^": r"\textasciicircum{}",
}
_LATEX_LEVELS = {1: "section", 2: "subsection", 3: "subsubsection", 4: "paragraph"}


def latex_escape(text: str) -> str:
    return "".join(_LATEX_ESCAPES.get(ch, ch) for ch in text)


def write_latex(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    out = ["\\documentclass{article}", "\\usepackage[utf8]{inputenc}", "\\usepackage{hyperref}"]
    title = _title(content, metadata)
    if options.preserve_metadata:
        if title:
            out.append(f"\\title{{{latex_escape(title)}}}")
        if metadata.author:
            out.append(f"\\author{{{latex_escape(metadata.author)}}}")
        if metadata.keywords:
            out.append(f"\\hypersetup{{pdfkeywords={{{latex_escape(', '.join(sorted(metadata.keywords)))}}}}}")
    out.append("\\begin{document}")

    pending = list(content.links) if options.preserve_hyperlinks else []
    blocks = content_blocks(content, options.preserve_page_numbers)
    for index, block in enumerate(blocks):
        progress.step(index, len(blocks) + 1)
        if block.kind == "heading":
            out.append(f"\\{_LATEX_LEVELS.get(block.level, 'subparagraph')}{{{latex_escape(block.text)}}}")
        elif block.kind == "page_break":
            out.append("\\newpage")
        else:
            out.append("".join(
                f"\\href{{{l.url}}}{{{latex_escape(t)}}}" if l else latex_escape(t)
                for t, l in link_segments(block.text, pending)
            ))
        out.append("")

    for table in content.tables:
        width = max(table.column_count, 1)
        out.append(f"\\begin{{tabular}}{{{'|l' * width}|}}")
        out.append("\\hline")
        for row in table.rows:
            out.append(" & ".join(latex_escape(v) for v in row + [""] * (width - len(row))) + " \\\\")
            out.append("\\hline")
        out.append("\\end{tabular}")
        out.append("")
    for link in pending:
        out.append(f"\\href{{{link.url}}}{{{latex_escape(link.text or link.url)}}}")
        out.append("")
    out.append("\\end{document}")
    Path(output_path).write_text("\n".join(out) + "\n", encoding="utf-8")


# ============= CSV / TSV =============

def _write_delimited(content, output_path: Path, delimiter: str, progress) -> None:
    rows: List[List[str]] = []
    for table in content.tables:
        if rows:
            rows.append([])
        rows.extend(table.rows)
    if not rows:
        rows = [[line] for line in content.text.replace(PAGE_BREAK, "\n").split("\n") if line.strip()]
    with open(output_path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, delimiter=delimiter)
        for index, row in enumerate(rows):
            if index % 100 == 0:
                progress.step(index, len(rows))
            writer.writerow(row)


def write_csv(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    _write_delimited(content, output_path, ",", progress)


def write_tsv(content, metadata, output_path: Path, options: ConversionOptions, progress) -> None:
    _write_delimited(content, output_path, "\t", progress)
