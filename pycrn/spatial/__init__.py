"""
Spatial extension: reaction networks replicated over a lattice of compartments
with transport between neighbours.
"""

from .lattice import LatticeReactionSystem, SpatialTrajectory, TransportReaction, make_lattice

__all__ = [
    "LatticeReactionSystem",
    "SpatialTrajectory",
    "TransportReaction",
    "make_lattice",
]
