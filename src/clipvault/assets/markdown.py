import re
from urllib.parse import urlparse

from clipvault.constants import DEFAULT_ASSET_EXTENSION

# ![alt](https://host/path.png)
IMAGE_LINK_RE = re.compile(r"!\[([^\]]*)\]\((https?://[^)\s]+)\)")
EXTENSION_RE = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)


def extract_image_urls(markdown: str) -> list[str]:
    """Unique image urls in order of first appearance."""
    return list(dict.fromkeys(match.group(2) for match in IMAGE_LINK_RE.finditer(markdown)))


def replace_image_target(markdown: str, old: str, new: str) -> str:
    """
    Point every image link whose target is exactly `old` at `new`, keeping alt text.
    """
    pattern = re.compile(r"!\[([^\]]*)\]\(" + re.escape(old) + r"\)")
    return pattern.sub(lambda m: f"![{m.group(1)}]({new})", markdown)


def guess_extension(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return DEFAULT_ASSET_EXTENSION
    match = EXTENSION_RE.search(path)
    return match.group(1).lower() if match else DEFAULT_ASSET_EXTENSION
