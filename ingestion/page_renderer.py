"""
Page renderer for quiz generation.

Renders single PDF pages to PNG so a page cluster can be sent to the vision
model. PyMuPDF (fitz) rasterizes at the requested density; Pillow resizes the
result to the fixed output size.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import fitz  # PyMuPDF
from PIL import Image

from generation.errors import FetchError, RenderError

PathLike = Union[str, Path]


@dataclass(frozen=True)
class RenderOptions:
    """Rasterization settings (density in DPI, output size in pixels)."""
    density: int = 150
    width: int = 1024
    height: int = 1448
    format: str = "png"


DEFAULT_RENDER_OPTIONS = RenderOptions()


class PdfPageRenderer:
    """Render pages of a PDF on disk into an output directory."""

    def __init__(self, options: RenderOptions = DEFAULT_RENDER_OPTIONS):
        self.options = options

    def count_pages(self, document_path: PathLike) -> int:
        """Open the PDF and return its page count. Unreadable files raise FetchError."""
        try:
            with fitz.open(str(document_path)) as doc:
                return len(doc)
        except (fitz.FileDataError, RuntimeError, ValueError, OSError) as e:
            raise FetchError(f"Could not open PDF {document_path}: {e}") from e

    def render_page(
        self,
        document_path: PathLike,
        page_number: int,
        output_dir: PathLike,
        basename: str = "page",
    ) -> Path:
        """
        Render one page to an image file.

        Args:
            document_path: Path to the PDF file.
            page_number: 1-based page number.
            output_dir: Directory to write the image into.
            basename: File prefix; the image is written as {basename}.{page_number}.{format}.

        Returns:
            Path of the written image.
        """
        opts = self.options
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        img_path = out / f"{basename}.{page_number}.{opts.format}"

        try:
            with fitz.open(str(document_path)) as doc:
                if not 1 <= page_number <= len(doc):
                    raise RenderError(f"Page {page_number} out of range (document has {len(doc)} pages)")
                mat = fitz.Matrix(opts.density / 72, opts.density / 72)
                pix = doc[page_number - 1].get_pixmap(matrix=mat, alpha=False)
                img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        except RenderError:
            raise
        except (fitz.FileDataError, RuntimeError, ValueError, OSError) as e:
            raise RenderError(f"Failed to render page {page_number} of {document_path}: {e}") from e

        if img.size != (opts.width, opts.height):
            img = img.resize((opts.width, opts.height), Image.Resampling.LANCZOS)
        try:
            img.save(str(img_path), format=opts.format.upper())
        except OSError as e:
            raise RenderError(f"Failed to write {img_path}: {e}") from e
        return img_path
