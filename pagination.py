"""
Cursor Paginator

Walks a registry listing page by page until the server stops handing out a
continuation cursor. Used for both the repository catalog and tag lists.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Set, TypeVar

from registry_errors import EmptyTagListing, PageFetchError
from registry_models import Page, PageCursor

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageFetcher = Callable[[Optional[PageCursor]], Awaitable[Page[T]]]


async def paginate(fetch_page: PageFetcher, description: str = "listing") -> List[T]:
    """Accumulate the items of every page, preserving page order.

    An EmptyTagListing raised while fetching the first page means the
    listing is empty. Any other failure aborts the whole walk with
    PageFetchError; no partial result is returned.
    """
    items: List[T] = []
    requested: Set[PageCursor] = set()
    cursor: Optional[PageCursor] = None
    pages = 0

    while True:
        try:
            page = await fetch_page(cursor)
        except EmptyTagListing:
            if pages == 0:
                logger.debug(f"{description}: first page not found, treating as empty")
                return []
            raise PageFetchError(f"Unable to retrieve {description}: page vanished during walk")
        except PageFetchError:
            raise
        except Exception as e:
            raise PageFetchError(f"Unable to retrieve {description}", e) from e

        pages += 1
        items.extend(page.items)

        next_cursor = page.next_cursor
        if next_cursor is None:
            break
        if next_cursor in requested:
            raise PageFetchError(
                f"Unable to retrieve {description}: registry repeated cursor last={next_cursor.last}"
            )
        requested.add(next_cursor)
        logger.debug(f"{description}: page {pages} gave {len(page.items)} items, continuing after {next_cursor.last}")
        cursor = next_cursor

    logger.info(f"{description}: collected {len(items)} items over {pages} pages")
    return items
