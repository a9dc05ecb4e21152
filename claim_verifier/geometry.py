"""
Polygon area and intersection in metres.

Claim boundaries are small (hectares, not countries), so a local
equirectangular projection centred on the candidate is accurate enough and
keeps the maths in shapely's planar world. Both polygons of a comparison are
projected with the same origin, so area ratios are exact.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from .models import Coordinate, Polygon

METRES_PER_DEGREE_LAT = 110_540.0
METRES_PER_DEGREE_LNG = 111_320.0


@dataclass(frozen=True)
class LocalProjection:
    origin_lat: float
    origin_lng: float

    @classmethod
    def centred_on(cls, polygon: Polygon) -> LocalProjection:
        coords = polygon.coordinates
        return cls(
            origin_lat=sum(c.lat for c in coords) / len(coords),
            origin_lng=sum(c.lng for c in coords) / len(coords),
        )

    def project(self, coord: Coordinate) -> tuple[float, float]:
        x = (
            (coord.lng - self.origin_lng)
            * METRES_PER_DEGREE_LNG
            * math.cos(math.radians(self.origin_lat))
        )
        y = (coord.lat - self.origin_lat) * METRES_PER_DEGREE_LAT
        return x, y

    def to_shape(self, polygon: Polygon) -> BaseGeometry:
        shape = ShapelyPolygon([self.project(c) for c in polygon.coordinates])
        if not shape.is_valid:
            # Hand-drawn boundaries sometimes self-intersect (bow-ties).
            shape = make_valid(shape)
        return shape


@dataclass(frozen=True)
class Overlap:
    intersection_area_sqm: float
    candidate_area_sqm: float
    percentage: float  # of the candidate's area, 0-100


def polygon_area_sqm(polygon: Polygon) -> float:
    return LocalProjection.centred_on(polygon).to_shape(polygon).area


def measure_overlap(candidate: Polygon, other: Polygon) -> Overlap:
    """How much of `candidate` is covered by `other`."""
    projection = LocalProjection.centred_on(candidate)
    a = projection.to_shape(candidate)
    b = projection.to_shape(other)

    if a.area <= 0 or not a.intersects(b):
        return Overlap(0.0, a.area, 0.0)

    intersection = a.intersection(b).area
    percentage = min(intersection / a.area * 100, 100.0)
    return Overlap(
        intersection_area_sqm=round(intersection, 2),
        candidate_area_sqm=round(a.area, 2),
        percentage=round(percentage, 2),
    )
