"""
PDF page rasterization for OCR.

Pages are rendered with PyMuPDF as greyscale PNGs into a caller-owned
working directory; the OCR client wraps that directory in a
TemporaryDirectory so it is always removed.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import fitz  # PyMuPDF

from claim_flow.logging import log

# (pdf_path, out_dir, dpi, max_pages) -> page image paths in page order
Rasterizer = Callable[[Path, Path, int, int], list[Path]]


def rasterize_pdf(pdf_path: Path, out_dir: Path, dpi: int, max_pages: int) -> list[Path]:
    """Render the first *max_pages* pages of *pdf_path* at *dpi*."""
    zoom = dpi / 72
    matrix = fitz.Matrix(zoom, zoom)
    images: list[Path] = []

    with fitz.open(str(pdf_path)) as doc:
        page_count = min(len(doc), max(1, max_pages))
        for page_index in range(page_count):
            pix = doc[page_index].get_pixmap(matrix=matrix, colorspace=fitz.csGRAY)
            target = out_dir / f"page-{page_index + 1:03d}.png"
            pix.save(str(target))
            images.append(target)

    log.debug("rasterizer.done", pdf=pdf_path.name, pages=len(images), dpi=dpi)
    return images
