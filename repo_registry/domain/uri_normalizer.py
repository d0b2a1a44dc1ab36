"""
Remote URI normalization.

Two remote URIs that point at the same repository can be spelled in many
ways ("ssh://git@host/repo.git", "git@host:repo.git", "https://host/repo/").
Normalizing each of them to a bare path under the rules of a version control
system makes them comparable.
"""

import re
from collections.abc import Iterable
from urllib.parse import urlsplit

from repo_registry.domain.enums import VCSType

# scp-style git remotes: [user@]host:path
_GIT_SCP_PATTERN = re.compile(r"^(?:[^@/:]+@)?(?P<domain>[^@/:]+):(?P<path>.*)$")
_HAS_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
# Clone URIs of hosted repositories may carry anything after the callsign,
# e.g. "/diffusion/X/anything.git".
_HOSTED_PATH_PATTERN = re.compile(r"^(diffusion/[A-Z]+)")


class URINormalizer:
    """Normalize a remote URI under the rules of one version control system."""

    def __init__(self, vcs: VCSType | str, uri: str) -> None:
        self.vcs = VCSType(vcs)
        self.uri = uri

    def _url_path(self) -> str | None:
        if not _HAS_SCHEME_PATTERN.match(self.uri):
            return None
        return urlsplit(self.uri).path

    @property
    def path(self) -> str:
        url_path = self._url_path()
        if url_path is not None:
            return url_path

        if self.vcs == VCSType.GIT:
            match = _GIT_SCP_PATTERN.match(self.uri)
            if match and match.group("domain"):
                return match.group("path")

        return self.uri

    @property
    def normalized_path(self) -> str:
        path = self.path.strip("/")

        if self.vcs == VCSType.GIT:
            path = re.sub(r"\.git$", "", path)

        match = _HOSTED_PATH_PATTERN.match(path)
        if match:
            path = match.group(1)

        return path


def normalize_uri(vcs: VCSType | str, uri: str) -> str:
    return URINormalizer(vcs, uri).normalized_path


def normalized_paths_for_any_vcs(uris: Iterable[str]) -> set[str]:
    """Normalize each URI under every VCS scheme and return the union.

    The caller's intended VCS is not known, so every normalization is
    produced. Some of them will not match any repository.
    """
    return {normalize_uri(vcs, uri) for uri in uris for vcs in VCSType}
