"""
Document ingestion for quiz generation.

1. Download (Supabase Storage) → PDF bytes
2. Sample (page clusters)      → pages to show the model
3. Render (PyMuPDF + Pillow)   → PNG per page
"""

from .page_sampler import PageCluster, SampleOutcome, sample_cluster, sample_clusters
from .page_renderer import PdfPageRenderer, RenderOptions, DEFAULT_RENDER_OPTIONS
from .storage import SupabaseBlobStore

__all__ = [
    # Download
    "SupabaseBlobStore",

    # Sample
    "PageCluster",
    "SampleOutcome",
    "sample_cluster",
    "sample_clusters",

    # Render
    "PdfPageRenderer",
    "RenderOptions",
    "DEFAULT_RENDER_OPTIONS",
]
