import math
from typing import Any, Iterable

from sqlalchemy import bindparam, text

EARTH_RADIUS_M = 6_371_000.0

GeoPoint = tuple[float, float]


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _to_point(lat: Any, lon: Any) -> GeoPoint | None:
    try:
        if lat is None or lon is None:
            return None
        return float(lat), float(lon)
    except (TypeError, ValueError):
        return None


def fetch_postal_centroids(db, postal_codes: Iterable[str]) -> dict[str, GeoPoint]:
    codes = sorted({str(c).strip() for c in postal_codes if c and str(c).strip()})
    if not codes:
        return {}
    stmt = text("SELECT postal_code, lat, lon FROM postal_centroid WHERE postal_code IN :codes").bindparams(
        bindparam("codes", expanding=True)
    )
    out: dict[str, GeoPoint] = {}
    for r in db.execute(stmt, {"codes": codes}).mappings().all():
        point = _to_point(r["lat"], r["lon"])
        if point:
            out[str(r["postal_code"])] = point
    return out


def resolve_points(rows: list[dict[str, Any]], centroids: dict[str, GeoPoint]) -> dict[str, GeoPoint]:
    """Own coordinates win; otherwise fall back to the postal centroid."""
    out: dict[str, GeoPoint] = {}
    for row in rows:
        point = _to_point(row.get("lat"), row.get("lon"))
        if point is None and row.get("postal_code"):
            point = centroids.get(str(row["postal_code"]).strip())
        if point is not None:
            out[str(row["id"])] = point
    return out


def bounding_box(center: GeoPoint, radius_m: float) -> tuple[float, float, float, float]:
    """(lat_min, lat_max, lon_min, lon_max) enclosing a circle around ``center``.

    Used as a SQL prefilter; the exact cut is still ``haversine_m``.
    """
    lat, lon = center
    d_lat = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = math.cos(math.radians(lat))
    d_lon = 180.0 if cos_lat < 1e-6 else min(180.0, math.degrees(radius_m / (EARTH_RADIUS_M * cos_lat)))
    return max(-90.0, lat - d_lat), min(90.0, lat + d_lat), lon - d_lon, lon + d_lon
