from .models import Species, Parameter, ReactionNetwork, merge, species, parameters, t
from .reactions import Reaction, MassActionReaction, RateLawReaction, LogisticGrowthReaction
from .functions import hill, hillr, mm, mmr
from .systems import ODESystem, SDESystem, JumpSystem
from .dsl import parse_network, reaction_network, load_network

__all__ = [
    "Species",
    "Parameter",
    "ReactionNetwork",
    "merge",
    "species",
    "parameters",
    "t",
    "Reaction",
    "MassActionReaction",
    "RateLawReaction",
    "LogisticGrowthReaction",
    "hill",
    "hillr",
    "mm",
    "mmr",
    "ODESystem",
    "SDESystem",
    "JumpSystem",
    "parse_network",
    "reaction_network",
    "load_network",
]
