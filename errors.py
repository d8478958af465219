"""
Scraper error taxonomy.

Extractors raise these; the service layer is the only place that turns them
into empty results. ``kind`` is kept for logging, never for caller branching.
"""


class ScraperError(Exception):
    kind = "scraper"

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url

    def __str__(self) -> str:
        message = super().__str__()
        if self.url:
            return f"{message} ({self.url})"
        return message


class TransportError(ScraperError):
    """Network, DNS, HTTP status or timeout failure reaching a source site."""

    kind = "transport"


class ParseError(ScraperError):
    """Expected structure (selector, JSON shape, global variable) is absent."""

    kind = "parse"


class BotMitigationTimeout(ScraperError):
    kind = "timeout"


class BrowserLaunchError(ScraperError):
    """The configured browser binary could not be started. Never retried."""

    kind = "launch"
