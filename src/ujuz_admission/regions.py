"""Supported metro sub-regions and address → region resolution.

Regions are listed narrowest first: Wirye addresses also contain
"성남", so ``wirye`` must be tried before ``seongnam``.
"""

from __future__ import annotations

from typing import Literal, NamedTuple

RegionKey = Literal["wirye", "bundang", "gangnam", "seocho", "songpa", "seongnam", "default"]


class RegionDef(NamedTuple):
    key: RegionKey
    label: str
    keywords: tuple[str, ...]
    # (min_lng, min_lat, max_lng, max_lat)
    bbox: tuple[float, float, float, float] | None = None


REGION_DEFS: list[RegionDef] = [
    RegionDef("wirye", "위례", ("위례",), (127.125, 37.465, 127.155, 37.495)),
    RegionDef("bundang", "분당구", ("분당구", "분당")),
    RegionDef("gangnam", "강남구", ("강남구",)),
    RegionDef("seocho", "서초구", ("서초구",)),
    RegionDef("songpa", "송파구", ("송파구",)),
    RegionDef("seongnam", "성남시", ("성남시", "성남")),
]

_REGION_MAP: dict[str, RegionDef] = {r.key: r for r in REGION_DEFS}

DEFAULT_REGION_LABEL = "기타 지역"


def extract_region(
    address: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
) -> RegionKey | None:
    """Resolve a region from an address and/or coordinates.

    Keywords are matched first, in ``REGION_DEFS`` order.  When no keyword
    matches and coordinates are given, the bounding boxes are tried.
    Returns ``None`` when nothing matches.
    """
    if address:
        for region in REGION_DEFS:
            if any(kw in address for kw in region.keywords):
                return region.key

    if lat is not None and lng is not None:
        for region in REGION_DEFS:
            if region.bbox is None:
                continue
            min_lng, min_lat, max_lng, max_lat = region.bbox
            if min_lng <= lng <= max_lng and min_lat <= lat <= max_lat:
                return region.key

    return None


def region_label(key: str) -> str:
    """Korean display label for a region key."""
    region = _REGION_MAP.get(key)
    return region.label if region else DEFAULT_REGION_LABEL
