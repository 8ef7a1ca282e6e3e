"""Remote catalog of published PostgreSQL source versions.

The archive host serves a plain directory listing whose entries look like
``v9.6.24/``. Versions are grouped into major-version buckets encoded as
integers: ``9.6 -> 96``, ``7.4 -> 74``, ``10.3 -> 100``, ``6.5 -> 60``.
From 10 on only the leading number is the major version; releases up to 6
predate the two-part major scheme, so both bucket by the leading number.
"""
from __future__ import annotations

import re
import urllib.error
import urllib.request
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from .errors import ExternalCommandFailure, UserInputError
from .versions import sort_versions, version_sort_key

ROW_WIDTH = 6

_SEGMENT_RE = re.compile(r"\bv(\d[^/\"'\s<>]*)/")
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)*$")
_LABEL_RE = re.compile(r"^(?P<major>\d+)(?:\.(?P<minor>\d+))?$")


class CatalogError(ExternalCommandFailure):
    """Raised when the remote listing cannot be retrieved or is empty."""


def extract_versions(listing: str) -> set[str]:
    """Return the purely numeric version strings found in *listing*."""
    found: set[str] = set()
    for match in _SEGMENT_RE.finditer(listing):
        candidate = match.group(1)
        if _NUMERIC_RE.match(candidate):
            found.add(candidate)
    return found


def major_bucket(version: str) -> int:
    """Return the major-version bucket for a numeric *version*."""
    parts = version.split(".")
    leading = int(parts[0])
    if leading >= 10 or leading <= 6:
        return leading * 10
    minor = parts[1] if len(parts) > 1 and parts[1] else "0"
    return int(f"{leading}{minor}")


def bucket_label(bucket: int) -> str:
    """Return the human-facing label for *bucket* (``96 -> '9.6'``)."""
    if bucket >= 100 or bucket <= 60:
        return str(bucket // 10)
    text = str(bucket)
    return f"{text[0]}.{text[1:]}"


def label_to_bucket(label: str) -> int:
    """Return the bucket for a human-facing major label (``'9.6'``, ``'12'``)."""
    match = _LABEL_RE.match(label.strip())
    if not match:
        raise UserInputError(
            f"'{label}' is not a major version label.",
            hint="Use labels such as 9.6, 10 or 16.",
        )
    major = match.group("major")
    minor = match.group("minor")
    if minor is None:
        return int(major) * 10
    return major_bucket(f"{major}.{minor}")


@dataclass
class Catalog:
    """Remote versions grouped by major-version bucket."""

    buckets: dict[int, list[str]] = field(default_factory=dict)

    @classmethod
    def from_versions(cls, versions: Iterable[str]) -> Catalog:
        """Group *versions* into sorted buckets."""
        grouped: dict[int, list[str]] = {}
        for version in versions:
            grouped.setdefault(major_bucket(version), []).append(version)
        return cls(
            buckets={bucket: sort_versions(grouped[bucket]) for bucket in sorted(grouped)}
        )

    def filtered(self, labels: Sequence[str]) -> Catalog:
        """Return a catalog restricted to the buckets named by *labels*."""
        if not labels:
            return self
        allowed = {label_to_bucket(label) for label in labels}
        return Catalog(
            buckets={bucket: items for bucket, items in self.buckets.items() if bucket in allowed}
        )

    def rows(self, bucket: int, width: int = ROW_WIDTH) -> Iterator[list[str]]:
        """Yield the versions of *bucket* in rows of *width*."""
        versions = self.buckets.get(bucket, [])
        for start in range(0, len(versions), width):
            yield versions[start : start + width]

    def latest(self, label: str | None = None) -> str | None:
        """Return the highest version overall or within the bucket of *label*."""
        if label is None:
            pool = [version for versions in self.buckets.values() for version in versions]
        else:
            pool = list(self.buckets.get(label_to_bucket(label), []))
        if not pool:
            return None
        return max(pool, key=version_sort_key)

    def __len__(self) -> int:
        """Return the number of versions across all buckets."""
        return sum(len(items) for items in self.buckets.values())


@dataclass
class CatalogFetcher:
    """Retrieve and normalise the remote version listing."""

    download_root: str
    timeout: float = 30.0

    def fetch(self, filter_majors: Sequence[str] | None = None) -> Catalog:
        """Return the grouped remote catalog, optionally filtered by labels."""
        listing = self._fetch_listing()
        versions = extract_versions(listing)
        if not versions:
            raise CatalogError(
                f"No versions found at {self.download_root}.",
                hint="The listing format may have changed or the host is unreachable.",
            )
        catalog = Catalog.from_versions(versions)
        return catalog.filtered(filter_majors or [])

    def _fetch_listing(self) -> str:
        """Download the listing page (isolated for testing)."""
        url = self.download_root.rstrip("/") + "/"
        request = urllib.request.Request(url, headers={"User-Agent": "pgenvctl"})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310
                return response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            raise CatalogError(f"Listing {url} failed: HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise CatalogError(f"Listing {url} unreachable: {exc}") from exc


__all__ = [
    "Catalog",
    "CatalogError",
    "CatalogFetcher",
    "ROW_WIDTH",
    "bucket_label",
    "extract_versions",
    "label_to_bucket",
    "major_bucket",
]
