from __future__ import annotations

import logging
import threading
import webbrowser
from typing import Callable

logger = logging.getLogger(__name__)

AUTH_KEYWORDS = ("oauth", "auth", "login", "verify", "device")

LinkHandler = Callable[[str], object]


def open_in_browser(url: str) -> bool:
    return webbrowser.open(url)


def find_auth_urls(line: str) -> list[str]:
    """https URLs in ``line`` that look like an authentication/device-login prompt."""
    if "https://" not in line:
        return []
    found: list[str] = []
    for word in line.split():
        word = word.strip("\"'<>")
        if not word.startswith("https://"):
            continue
        if any(k in word for k in AUTH_KEYWORDS):
            found.append(word)
    return found


class AuthLinkScanner:
    """Opens each distinct auth URL seen in install output exactly once.

    One scanner lives for one install run; the seen-set is shared by every
    line of that run.
    """

    def __init__(self, handler: LinkHandler | None = None):
        self.handler = handler
        self._lock = threading.Lock()
        self._opened: set[str] = set()

    @property
    def opened(self) -> set[str]:
        with self._lock:
            return set(self._opened)

    def scan(self, line: str) -> list[str]:
        """Return the URLs newly opened because of this line."""
        new: list[str] = []
        for url in find_auth_urls(line):
            with self._lock:
                if url in self._opened:
                    continue
                self._opened.add(url)
            new.append(url)
            if self.handler is None:
                continue
            logger.info("Opening authentication URL in browser: %s", url)
            try:
                self.handler(url)
            except Exception as e:
                logger.error("Failed to open browser for %s: %s", url, e)
        return new
