"""
Hydrogen-bond parameter tables: one dimensional polynomials, fade intervals and the
evaluation-type table choosing which of them score a donor/acceptor pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from hbondsnap.hbonds.types import WILDCARD, HBEvalTuple
from hbondsnap.log import logger


class HBondDatabaseError(ValueError):
  """Raised when a parameter table is missing or malformed."""


# -----------------------------
# Functional forms
# -----------------------------


@dataclass(frozen=True)
class Polynomial1D:
  """Polynomial on ``[xmin, xmax]``, constant at the end values outside it.

  Attributes:
    name: Table name.
    xmin: Lower end of the fitted range.
    xmax: Upper end of the fitted range.
    coefficients: Coefficients from the highest degree down to the constant term.
  """
  name: str
  xmin: float
  xmax: float
  coefficients: Tuple[float, ...]

  def __call__(self, x: float) -> Tuple[float, float]:
    """Evaluate the value and the first derivative at ``x``."""
    clamped = False
    if x < self.xmin:
      x, clamped = self.xmin, True
    elif x > self.xmax:
      x, clamped = self.xmax, True
    value = 0.0
    deriv = 0.0
    for coef in self.coefficients:
      deriv = deriv * x + value
      value = value * x + coef
    return value, (0.0 if clamped else deriv)


@dataclass(frozen=True)
class FadeInterval:
  """Switching function: 0 below ``min0``, smooth rise to 1 at ``fmin``, 1 until ``fmax``, smooth fall to 0 at ``max0``."""
  name: str
  min0: float
  fmin: float
  fmax: float
  max0: float

  def __call__(self, x: float) -> Tuple[float, float]:
    if x <= self.min0 or x >= self.max0:
      return 0.0, 0.0
    if x < self.fmin:
      width = self.fmin - self.min0
      t = (x - self.min0) / width
      return t * t * (3.0 - 2.0 * t), 6.0 * t * (1.0 - t) / width
    if x > self.fmax:
      width = self.max0 - self.fmax
      t = (self.max0 - x) / width
      return t * t * (3.0 - 2.0 * t), -6.0 * t * (1.0 - t) / width
    return 1.0, 0.0


@dataclass(frozen=True)
class HBEvalParams:
  """The functions scoring one evaluation type.

  Attributes:
    AHdist: Polynomial in the hydrogen to acceptor distance.
    cosAHD: Polynomial in the cosine of the angle at the hydrogen.
    cosBAH: Polynomial in the cosine of the angle at the acceptor.
    fade_rAH: Fade on the hydrogen to acceptor distance.
    fade_xD: Fade on the cosine at the hydrogen.
    fade_xH: Fade on the cosine at the acceptor.
    chi_weight: Weight of the out of plane penalty for sp2 acceptors.
  """
  AHdist: Polynomial1D
  cosAHD: Polynomial1D
  cosBAH: Polynomial1D
  fade_rAH: FadeInterval
  fade_xD: FadeInterval
  fade_xH: FadeInterval
  chi_weight: float = 0.0


# -----------------------------
# Table loading
# -----------------------------


def _default_params_root() -> Path:
  return Path(__file__).resolve().parent.parent / "hbond_lib"


def _read_rows(path: Path, ncols: int) -> List[Tuple[int, List[str]]]:
  """Read a comma separated table, skipping the header, blank lines and comments."""
  if not path.exists():
    logger.critical("Missing hydrogen-bond parameter table %s", path)
    raise HBondDatabaseError(f"Missing hydrogen-bond parameter table {path}")
  rows = []
  with open(path, "r") as f:
    header_seen = False
    for lineno, line in enumerate(f, start=1):
      line = line.strip()
      if not line or line.startswith("#"):
        continue
      if not header_seen:
        header_seen = True
        continue
      parts = [p.strip() for p in line.split(",")]
      if len(parts) != ncols:
        _fatal(path, lineno, f"expected {ncols} columns but found {len(parts)}")
      rows.append((lineno, parts))
  return rows


def _fatal(path: Path, lineno: int, reason: str):
  message = f"{path}:{lineno}: {reason}"
  logger.critical("Malformed hydrogen-bond parameter table, %s", message)
  raise HBondDatabaseError(message)


def _floats(path: Path, lineno: int, values: Sequence[str]) -> List[float]:
  try:
    return [float(v) for v in values]
  except ValueError:
    _fatal(path, lineno, f"cannot read numbers from {list(values)}")


class HBondDatabase:
  """Lookup from a donor/acceptor evaluation type to its scoring functions.

  Lookups try, in order, (donor, acceptor, separation), (donor, acceptor, *),
  (*, acceptor, *), (donor, *, *) and (*, *, *).
  """

  def __init__(self, polys: Dict[str, Polynomial1D], fades: Dict[str, FadeInterval], evals: Dict[Tuple[str, str, str], HBEvalParams], tag: str = "custom"):
    self.polys = polys
    self.fades = fades
    self.evals = evals
    self.tag = tag
    self._cache: Dict[Tuple[str, str, str], Optional[HBEvalParams]] = {}

  @classmethod
  def load(cls, path: Optional[Path] = None, tag: str = "default") -> "HBondDatabase":
    """Load the three parameter tables from a directory.

    Args:
      path: Directory holding ``HBPoly1D.csv``, ``HBFadeIntervals.csv`` and ``HBEval.csv``.
        Defaults to the bundled library sub-directory ``tag``.
      tag: Name of the bundled parameter set.

    Returns:
      The loaded database.

    Raises:
      HBondDatabaseError: If a table is missing, a row is malformed or names an unknown function.
    """
    root = _default_params_root() / tag if path is None else Path(path)

    polys: Dict[str, Polynomial1D] = {}
    poly_path = root / "HBPoly1D.csv"
    for lineno, parts in _read_rows(poly_path, 4):
      name = parts[0]
      xmin, xmax = _floats(poly_path, lineno, parts[1:3])
      coefficients = _floats(poly_path, lineno, parts[3].split())
      if not coefficients or xmax <= xmin:
        _fatal(poly_path, lineno, f"polynomial {name} needs coefficients and xmin < xmax")
      polys[name] = Polynomial1D(name, xmin, xmax, tuple(coefficients))

    fades: Dict[str, FadeInterval] = {}
    fade_path = root / "HBFadeIntervals.csv"
    for lineno, parts in _read_rows(fade_path, 5):
      min0, fmin, fmax, max0 = _floats(fade_path, lineno, parts[1:])
      if not min0 <= fmin <= fmax <= max0:
        _fatal(fade_path, lineno, f"fade interval {parts[0]} is not ordered")
      fades[parts[0]] = FadeInterval(parts[0], min0, fmin, fmax, max0)

    evals: Dict[Tuple[str, str, str], HBEvalParams] = {}
    eval_path = root / "HBEval.csv"
    for lineno, parts in _read_rows(eval_path, 10):
      don, acc, sep, ahdist, cosahd, cosbah, fade_r, fade_xd, fade_xh, chi = parts
      try:
        params = HBEvalParams(
          AHdist=polys[ahdist],
          cosAHD=polys[cosahd],
          cosBAH=polys[cosbah],
          fade_rAH=fades[fade_r],
          fade_xD=fades[fade_xd],
          fade_xH=fades[fade_xh],
          chi_weight=_floats(eval_path, lineno, [chi])[0],
        )
      except KeyError as e:
        _fatal(eval_path, lineno, f"unknown function {e.args[0]}")
      evals[(don, acc, sep)] = params

    logger.info("Loaded hydrogen-bond parameters from %s (%d evaluation types).", root, len(evals))
    return cls(polys, fades, evals, tag=tag)

  def lookup(self, hbe: HBEvalTuple) -> Optional[HBEvalParams]:
    """Scoring functions for an evaluation tuple, None when no row covers it."""
    key = hbe.eval_type
    if key not in self._cache:
      don, acc, sep = key
      found = None
      for candidate in ((don, acc, sep), (don, acc, WILDCARD), (WILDCARD, acc, WILDCARD), (don, WILDCARD, WILDCARD), (WILDCARD, WILDCARD, WILDCARD)):
        if candidate in self.evals:
          found = self.evals[candidate]
          break
      self._cache[key] = found
    return self._cache[key]


_DATABASES: Dict[str, HBondDatabase] = {}


def get_database(tag: str = "default") -> HBondDatabase:
  """Return the bundled database for ``tag``, loading it on first use."""
  if tag not in _DATABASES:
    _DATABASES[tag] = HBondDatabase.load(tag=tag)
  return _DATABASES[tag]
