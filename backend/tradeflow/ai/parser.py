"""
Local document parser used when no OCR provider is available.

Supports:
- PDF: embedded text via pdfplumber (scanned pages are counted, not read)
- Images (PNG/JPG/TIFF): dimensions and format via Pillow, no text
- CSV: header-aware "column: value" lines
- Anything else: read as plain text
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import pdfplumber
from PIL import Image

logger = logging.getLogger("tradeflow.parser")

# Minimum chars per page to consider a PDF page text-based rather than scanned
SCANNED_THRESHOLD = 50

IMAGE_TYPES = ("png", "jpg", "jpeg", "tiff", "tif")


@dataclass
class ParsedDocument:
    """Result of parsing a document file locally."""

    text: str = ""
    page_count: int = 0
    metadata: dict = field(default_factory=dict)

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())


class DocumentParser:
    """Routes documents to the appropriate local parsing strategy."""

    async def parse(self, file_path: str, file_type: str) -> ParsedDocument:
        file_type = (file_type or "").lower()
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {file_path}")

        if file_type == "pdf":
            return self._parse_pdf(path)
        if file_type in IMAGE_TYPES:
            return self._parse_image(path)
        if file_type == "csv":
            return await self._parse_csv(path)
        return await self._parse_text(path)

    def _parse_pdf(self, path: Path) -> ParsedDocument:
        text_parts: list[str] = []
        scanned_pages = 0

        with pdfplumber.open(path) as pdf:
            page_count = len(pdf.pages)
            for page in pdf.pages:
                page_text = page.extract_text() or ""
                if len(page_text.strip()) < SCANNED_THRESHOLD:
                    scanned_pages += 1
                text_parts.append(page_text)

        full_text = "\n\n".join(text_parts).strip()
        logger.info(
            "Parsed PDF locally: %d pages, %d scanned, %d chars text",
            page_count,
            scanned_pages,
            len(full_text),
        )
        return ParsedDocument(
            text=full_text,
            page_count=page_count,
            metadata={
                "parser": "pdfplumber",
                "scanned_pages": scanned_pages,
                "is_scanned": page_count > 0 and scanned_pages > page_count / 2,
            },
        )

    def _parse_image(self, path: Path) -> ParsedDocument:
        with Image.open(path) as img:
            width, height = img.size
            image_format = img.format
        return ParsedDocument(
            text="",
            page_count=1,
            metadata={"parser": "image", "width": width, "height": height, "format": image_format},
        )

    async def _parse_csv(self, path: Path) -> ParsedDocument:
        async with aiofiles.open(path, mode="r", errors="replace") as f:
            content = await f.read()

        rows = list(csv.reader(io.StringIO(content)))
        if not rows:
            return ParsedDocument(text="", page_count=1, metadata={"parser": "csv", "rows": 0})

        header, body = rows[0], rows[1:]
        lines: list[str] = []
        for row in body:
            for name, value in zip(header, row):
                if value.strip():
                    lines.append(f"{name.strip()}: {value.strip()}")
            lines.append("")

        return ParsedDocument(
            text="\n".join(lines).strip() or ",".join(header),
            page_count=1,
            metadata={"parser": "csv", "rows": len(body), "columns": len(header)},
        )

    async def _parse_text(self, path: Path) -> ParsedDocument:
        async with aiofiles.open(path, mode="r", errors="replace") as f:
            content = await f.read()
        return ParsedDocument(text=content, page_count=1, metadata={"parser": "text"})
