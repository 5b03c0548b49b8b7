"""
Page cluster sampler.

Picks small windows of consecutive pages from a document so each model call
sees a different part of it. Windows avoid pages used earlier in the same run
when the document is long enough; on short documents the sampler degrades in
three named phases instead of failing:

  DISJOINT     → no page of the window was used before        (≤ 100 draws)
  FRESH_START  → only the start page of the window is unused  (≤ 50 draws)
  OVERLAP      → last drawn window, overlap accepted
"""

import enum
import random
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

DEFAULT_CLUSTER_SIZE = 3
DEFAULT_CLUSTER_COUNT = 5
MAX_DISJOINT_ATTEMPTS = 100
MAX_FRESH_START_ATTEMPTS = 50


class SampleOutcome(str, enum.Enum):
    """Which phase produced a cluster."""
    WHOLE_DOCUMENT = "whole_document"
    DISJOINT = "disjoint"
    FRESH_START = "fresh_start"
    OVERLAP = "overlap"


@dataclass(frozen=True)
class PageCluster:
    """Inclusive page range [start_page, start_page + size - 1], 1-based."""
    start_page: int
    size: int
    outcome: SampleOutcome = SampleOutcome.DISJOINT

    @property
    def end_page(self) -> int:
        return self.start_page + self.size - 1

    @property
    def pages(self) -> List[int]:
        return list(range(self.start_page, self.end_page + 1))


def _draw_start(rng, page_count: int, cluster_size: int) -> int:
    return rng.randint(1, page_count - cluster_size + 1)


def _search_disjoint(
    rng, page_count: int, cluster_size: int, used_pages: Set[int], attempts: int
) -> Optional[int]:
    for _ in range(attempts):
        start = _draw_start(rng, page_count, cluster_size)
        if used_pages.isdisjoint(range(start, start + cluster_size)):
            return start
    return None


def _search_fresh_start(
    rng, page_count: int, cluster_size: int, used_pages: Set[int], attempts: int
) -> Tuple[int, bool]:
    """Returns (start, found). When not found, start is the last window drawn."""
    start = _draw_start(rng, page_count, cluster_size)
    for _ in range(attempts - 1):
        if start not in used_pages:
            return start, True
        start = _draw_start(rng, page_count, cluster_size)
    return start, start not in used_pages


def sample_cluster(
    page_count: int,
    used_pages: Set[int],
    cluster_size: int = DEFAULT_CLUSTER_SIZE,
    rng: Optional[random.Random] = None,
    max_disjoint_attempts: int = MAX_DISJOINT_ATTEMPTS,
    max_fresh_start_attempts: int = MAX_FRESH_START_ATTEMPTS,
) -> PageCluster:
    """
    Sample one page cluster and mark its pages in used_pages.

    Args:
        page_count: Number of pages in the document (≥ 1)
        used_pages: Pages claimed by earlier clusters of this run; updated in place
        cluster_size: Pages per cluster (≥ 1)
        rng: Random source; the process-wide `random` module when None

    Returns:
        PageCluster. Documents not longer than cluster_size always give the
        whole-document cluster {1, page_count}.
    """
    if page_count < 1:
        raise ValueError(f"page_count must be >= 1, got {page_count}")
    if cluster_size < 1:
        raise ValueError(f"cluster_size must be >= 1, got {cluster_size}")
    rng = rng if rng is not None else random

    if page_count <= cluster_size:
        cluster = PageCluster(1, page_count, SampleOutcome.WHOLE_DOCUMENT)
    else:
        start = _search_disjoint(rng, page_count, cluster_size, used_pages, max_disjoint_attempts)
        if start is not None:
            cluster = PageCluster(start, cluster_size, SampleOutcome.DISJOINT)
        else:
            start, fresh = _search_fresh_start(
                rng, page_count, cluster_size, used_pages, max(1, max_fresh_start_attempts)
            )
            outcome = SampleOutcome.FRESH_START if fresh else SampleOutcome.OVERLAP
            cluster = PageCluster(start, cluster_size, outcome)

    used_pages.update(cluster.pages)
    return cluster


def sample_clusters(
    page_count: int,
    cluster_size: int = DEFAULT_CLUSTER_SIZE,
    cluster_count: int = DEFAULT_CLUSTER_COUNT,
    rng: Optional[random.Random] = None,
) -> List[PageCluster]:
    """Sample cluster_count clusters against one fresh used-page set."""
    used_pages: Set[int] = set()
    return [
        sample_cluster(page_count, used_pages, cluster_size=cluster_size, rng=rng)
        for _ in range(cluster_count)
    ]
