"""
Energy maps, score weights and the small interface every energy method implements.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

import numpy as np

from hbondsnap.constants import DEFAULT_WEIGHTS, SCORE_TYPES
from hbondsnap.log import logger


class EnergyMap(dict):
  """Score type to unweighted energy. Missing score types read as zero."""

  def __missing__(self, key: str) -> float:
    return 0.0

  def weighted(self, weights: Mapping[str, float]) -> Dict[str, float]:
    """Return every score type multiplied by its weight plus a ``total`` entry.

    Args:
      weights: Weights keyed by score type.

    Returns:
      Dict of weighted terms in :data:`SCORE_TYPES` order with the total last.
    """
    out = {name: self[name] * weights.get(name, 0.0) for name in SCORE_TYPES}
    out["total"] = sum(out.values())
    return out

  def dot(self, weights: Mapping[str, float]) -> float:
    return sum(value * weights.get(name, 0.0) for name, value in self.items())


def get_weights(weight_dict: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
  """Build a full weight set, overriding the defaults with ``weight_dict``.

  Args:
    weight_dict: Partial mapping of score type to weight.

  Returns:
    Weights for every hydrogen-bond score type.

  Raises:
    ValueError: If ``weight_dict`` names an unknown score type.
  """
  weights = dict(DEFAULT_WEIGHTS)
  if weight_dict is None:
    return weights
  for name, value in weight_dict.items():
    if name not in weights:
      raise ValueError(f'Unknown score type "{name}", expected one of {", ".join(SCORE_TYPES)}')
    weights[name] = float(value)
  return weights


class SmoothStepFunc:
  """Cubic step rising from 0 at ``low`` to 1 at ``high``."""

  def __init__(self, low: float, high: float):
    assert high > low, "SmoothStepFunc needs low < high"
    self.low = low
    self.high = high

  def func(self, x: float) -> float:
    if x <= self.low:
      return 0.0
    if x >= self.high:
      return 1.0
    t = (x - self.low) / (self.high - self.low)
    return t * t * (3.0 - 2.0 * t)

  def dfunc(self, x: float) -> float:
    if x <= self.low or x >= self.high:
      return 0.0
    t = (x - self.low) / (self.high - self.low)
    return 6.0 * t * (1.0 - t) / (self.high - self.low)


class MinimizationData:
  """Keyed cache slot owned by a minimizer for one residue or one residue pair."""

  def __init__(self):
    self._data: Dict[str, Any] = {}

  def get_data(self, key: str) -> Optional[Any]:
    return self._data.get(key)

  def set_data(self, key: str, value: Any) -> None:
    self._data[key] = value

  def clear(self) -> None:
    self._data.clear()


def new_deriv_array(natoms: int) -> np.ndarray:
  """Allocate a zeroed per-atom derivative array of shape ``(natoms, 2, 3)``.

  Index ``[:, 0]`` holds the f1 (torque-like) vectors and ``[:, 1]`` the f2 (gradient) vectors.
  """
  return np.zeros((natoms, 2, 3), dtype=float)


class EnergyMethod(Protocol):
  """Operations a context dependent two body energy method provides to a scoring framework."""

  def setup_for_scoring(self, pose, previous=None, minimizing: bool = False): ...

  def residue_pair_energy(self, rsd1, rsd2, pose, hbond_set, emap: EnergyMap) -> None: ...

  def eval_intrares_energy(self, rsd, pose, hbond_set, emap: EnergyMap) -> None: ...

  def eval_residue_pair_derivatives(self, rsd1, rsd2, pair_data, pose, hbond_set, weights, r1_derivs, r2_derivs) -> None: ...

  def finalize_total_energy(self, hbond_set, totals: EnergyMap, minimizing: bool = False) -> None: ...


def log_energies(emap: EnergyMap, weights: Mapping[str, float]) -> None:
  """Write the non zero weighted terms of an energy map to the debug log."""
  for name, value in emap.weighted(weights).items():
    if value != 0.0:
      logger.debug("%s: %.4f", name, value)
