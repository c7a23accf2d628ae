from __future__ import annotations
import hashlib

from app.providers.base import LatLng

def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()

def hash_address(address: str | None) -> str:
    # Trimmed text so whitespace-only edits don't invalidate the geocode
    return sha1_hex((address or "").strip().encode("utf-8"))

def _coord_text(point: LatLng | None) -> str:
    if point is None:
        return ","
    return f"{point.lat!r},{point.lng!r}"

def route_cache_key(pickup: LatLng | None, dropoff: LatLng | None) -> str:
    return sha1_hex(f"{_coord_text(pickup)}|{_coord_text(dropoff)}".encode("utf-8"))
