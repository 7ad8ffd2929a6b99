"""Repository reference parsing and repository list reading."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .errors import InvalidReference, ListSourceMissing

logger = logging.getLogger(APP_NAME)

_SEGMENT = r"([^/\s:@]+)"

_HTTPS_RE = re.compile(rf"^https://github\.com/{_SEGMENT}/{_SEGMENT}$")
_SSH_RE = re.compile(rf"^git@github\.com:{_SEGMENT}/{_SEGMENT}$")
_SHORT_RE = re.compile(rf"^{_SEGMENT}/{_SEGMENT}$")

_USERINFO_RE = re.compile(r"(https://)[^@/\s]+@")


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A normalized repository reference.

    Attributes:
        source_ref (str): The text exactly as it appeared in the list.
        clone_url (str): The URL handed to `git clone` (may embed a token).
        local_name (str): `{owner}_{repo}`; names both the clone and the backup folder.
    """

    source_ref: str
    clone_url: str
    local_name: str

    @property
    def display_url(self) -> str:
        """The clone URL with any embedded credential masked, safe for logs."""
        return redact_url(self.clone_url)


def redact_url(url: str) -> str:
    """Masks the user-info component of every HTTPS URL in `url`."""
    return _USERINFO_RE.sub(r"\1****@", url)


def parse_reference(text: str, token: str | None = None) -> RepositoryDescriptor:
    """Normalizes a repository reference into a clone URL and local name.

    Accepted shapes (each with an optional trailing `.git`):
        - `owner/repo`
        - `https://github.com/owner/repo`
        - `git@github.com:owner/repo`

    Args:
        text (str): One line of the repository list.
        token (str | None): Access token embedded into HTTPS clone URLs.

    Returns:
        RepositoryDescriptor: The normalized descriptor.

    Raises:
        InvalidReference: If the text matches none of the accepted shapes.
    """
    source = text.strip()
    candidate = source.removesuffix(".git")

    if match := _HTTPS_RE.match(candidate):
        owner, repo = match.groups()
        url = f"https://github.com/{owner}/{repo}.git"
    elif match := _SSH_RE.match(candidate):
        owner, repo = match.groups()
        url = f"git@github.com:{owner}/{repo}.git"
    elif match := _SHORT_RE.match(candidate):
        owner, repo = match.groups()
        url = f"https://github.com/{owner}/{repo}.git"
    else:
        raise InvalidReference(f"Invalid repository format: {source!r}")

    if token and url.startswith("https://"):
        url = url.replace("https://", f"https://{token}@", 1)

    return RepositoryDescriptor(
        source_ref=source, clone_url=url, local_name=f"{owner}_{repo}"
    )


def read_repo_list(path: Path) -> list[str]:
    """Reads repository references from a plain-text list.

    Blank lines and lines starting with `#` are skipped.

    Args:
        path (Path): The list document.

    Returns:
        list[str]: The stripped references, in file order.

    Raises:
        ListSourceMissing: If the file does not exist or cannot be read.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ListSourceMissing(
            f"Repository list file not readable: {path} ({e})"
        ) from e

    refs = []
    for line in lines:
        clean_line = line.strip()
        if not clean_line or clean_line.startswith("#"):
            continue
        refs.append(clean_line)
    return refs
