"""
Geo experiment estimation: GBR and TBR causal effects, iROAS and
preanalysis precision simulation.
"""

from .core import *  # noqa: F401,F403
from .core import __all__, __version__
