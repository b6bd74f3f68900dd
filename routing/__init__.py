#Marks routing as a package.
#Re-exports the straight-line distance helpers so other modules import from routing
#without knowing internal file names.
#No business logic.

from .geo import LatLng, haversine_km, is_valid_coordinate

__all__ = [
    "LatLng",
    "haversine_km",
    "is_valid_coordinate",
]
