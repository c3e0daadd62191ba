"""Open quantum system dynamics: closed, Redfield, CGME, ULE and AME
evolution with pulses, positivity monitoring and trajectory ensembles."""

from importlib.metadata import PackageNotFoundError, version

from . import (
    bath,
    callbacks,
    coupling,
    ensemble,
    errors,
    hamiltonian,
    integration,
    operators,
    relaxation,
    shared,
    simulation,
    utils,
)
from .shared import Q_, ureg

try:
    __version__ = version("openqdyn")
except PackageNotFoundError:
    __version__ = "0.0.0"
