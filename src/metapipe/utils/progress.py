"""Stage progress bar for interactive runs."""

from __future__ import annotations

import sys
from typing import Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")

BAR_FORMAT = "{desc}{n_fmt}/{total_fmt} stages |{bar:20}| {elapsed}"


def iter_progress(
    iterable: Iterable[T],
    total: Optional[int] = None,
    desc: Optional[str] = None,
    enabled: bool = True,
) -> Iterator[T]:
    """Yield from ``iterable``, drawing a tqdm bar on stderr when enabled.

    Batch jobs redirect stderr to a file, so the bar is also suppressed
    whenever stderr is not a terminal.
    """
    if not enabled:
        return iter(iterable)
    from tqdm import tqdm

    return iter(
        tqdm(
            iterable,
            total=total,
            desc=f"[{desc}] " if desc else "",
            unit="stage",
            bar_format=BAR_FORMAT,
            file=sys.stderr,
            disable=None,
            leave=False,
        )
    )
