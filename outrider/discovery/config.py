"""Configuration for endpoint discovery."""

from __future__ import annotations

import dataclasses as dc

from outrider.common.env import parse_positive_float, parse_positive_int, read_str

DEFAULT_DIRECTORY_URL = "https://plc.directory"
DEFAULT_RELAY_URL = "https://bsky.network"


@dc.dataclass(frozen=True, slots=True)
class DiscoveryConfig:
    """Discovery sources and pacing.

    Attributes
    ----------
    directory_url
        Base URL of the identity directory (export and resolution).
    relay_url
        Base URL of the relay whose host listing is consulted each cycle.
    page_size
        Entries requested per directory export page.
    page_delay_s
        Fixed pause between directory pages.
    max_pages
        Upper bound on pages per walk run; ``None`` walks to the end.
    queue_size
        Capacity of the channel between the page producer and the consumer.
    mention_batch_size
        Identities resolved concurrently per batch.
    relay_limit
        ``limit`` parameter sent with the relay host listing request.

    """

    directory_url: str = DEFAULT_DIRECTORY_URL
    relay_url: str = DEFAULT_RELAY_URL
    page_size: int = 1000
    page_delay_s: float = 1.0
    max_pages: int | None = None
    queue_size: int = 1000
    mention_batch_size: int = 10
    relay_limit: int = 1000

    @classmethod
    def from_env(cls) -> DiscoveryConfig:
        """Create configuration from ``OUTRIDER_*`` environment variables.

        Reads ``OUTRIDER_DIRECTORY_URL``, ``OUTRIDER_RELAY_URL``,
        ``OUTRIDER_DIRECTORY_PAGE_SIZE``, ``OUTRIDER_DIRECTORY_PAGE_DELAY_S``,
        ``OUTRIDER_DIRECTORY_MAX_PAGES`` and ``OUTRIDER_MENTION_BATCH_SIZE``.

        Raises
        ------
        ValueError
            If a numeric variable is not positive.

        """
        max_pages_raw = read_str("OUTRIDER_DIRECTORY_MAX_PAGES")
        return cls(
            directory_url=read_str("OUTRIDER_DIRECTORY_URL") or DEFAULT_DIRECTORY_URL,
            relay_url=read_str("OUTRIDER_RELAY_URL") or DEFAULT_RELAY_URL,
            page_size=parse_positive_int("OUTRIDER_DIRECTORY_PAGE_SIZE", 1000),
            page_delay_s=parse_positive_float("OUTRIDER_DIRECTORY_PAGE_DELAY_S", 1.0),
            max_pages=(
                parse_positive_int("OUTRIDER_DIRECTORY_MAX_PAGES", 1)
                if max_pages_raw
                else None
            ),
            mention_batch_size=parse_positive_int("OUTRIDER_MENTION_BATCH_SIZE", 10),
        )


__all__ = ["DiscoveryConfig"]
