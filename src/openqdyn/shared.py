#! /usr/bin/env python
"""
Shared objects: physical constants, unit registry and logging setup.

- ``Constant``: a subclass of ``float`` that carries a ``details`` attribute
  (a ``types.SimpleNamespace``) with auxiliary information about the constant,
  e.g. ``constants.k_B.details.units``.

- ``Constant.fromjson(path)``: load a JSON mapping of name → {value, ...}
  into a ``SimpleNamespace`` of ``Constant`` objects.

- ``DATA_DIR``: path to bundled data files.

- ``constants``: the default namespace of constants loaded from
  ``DATA_DIR/constants.json``.

- ``ureg`` / ``Q_``: the `pint` unit registry used to accept temperatures
  and frequencies as quantities (``Q_(16, "mK")``).

- ``setup_logging()``: configure the root logger from the
  ``OPENQDYN_LOG_LEVEL`` environment variable.
"""

import json
import logging
import os
from pathlib import Path
from types import SimpleNamespace

from pint import UnitRegistry


class Constant(float):
    """Constant class.

    Extends float with the `Constant.details` member.

    >>> c = Constant({"value": 1.5, "units": "J"})
    >>> c * 2, c.details.units
    (3.0, 'J')
    """

    details: SimpleNamespace
    """Details (e.g. units) of the constant."""

    def __new__(cls, details: dict):  # noqa D102
        details = dict(details)
        obj = super().__new__(cls, details.pop("value"))
        obj.details = SimpleNamespace(**details)
        return obj

    @staticmethod
    def fromjson(json_file: Path) -> SimpleNamespace:
        """Read all constants from the JSON file.

        Args:
            json_file (str)

        Returns:
            SimpleNamespace: A namespace containing all constants.
        """
        with open(json_file, encoding="utf-8") as f:
            data = json.load(f)
        return SimpleNamespace(**{k: Constant(v) for k, v in data.items()})


DATA_DIR = Path(__file__).parent / "data_files"
constants = Constant.fromjson(DATA_DIR / "constants.json")

ureg = UnitRegistry()
Q_ = ureg.Quantity

LOG_LEVEL_ENV = "OPENQDYN_LOG_LEVEL"
LOG_FORMAT = "%(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | None = None) -> int:
    """Configure logging for scripts using the package.

    The level is taken from `level` or, if not given, from the
    ``OPENQDYN_LOG_LEVEL`` environment variable (default ``WARNING``).

    Returns:
        int: The numeric logging level that was configured.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV, "WARNING")).upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {name}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("openqdyn").setLevel(numeric)
    return numeric
