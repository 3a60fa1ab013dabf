"""
Hydrogen-bond geometry: the raw energy and its gradients as a function of the donor heavy
atom, hydrogen, acceptor and the two acceptor bases, plus the environment, membrane and
helix-length weights applied on top of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from hbondsnap.hbonds.database import HBondDatabase
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import HBEvalTuple

# Tagged positions of a hydrogen bond
DONOR_HEAVY = 0
DONOR_H = 1
ACCEPTOR = 2
ACCEPTOR_BASE = 3
ACCEPTOR_BASE2 = 4
N_HB_ATOMS = 5
LAST_DONOR_ATOM = DONOR_H

# Burial ramp of the environment weight
ENV_MIN_NEIGHBORS = 7
ENV_MAX_NEIGHBORS = 24
ENV_MIN_WEIGHT = 0.1


@dataclass
class HBondDerivs:
  """Gradient of the raw energy with respect to each tagged position, shape ``(5, 3)``."""
  grads: np.ndarray = field(default_factory=lambda: np.zeros((N_HB_ATOMS, 3), dtype=float))

  def deriv(self, which: int) -> np.ndarray:
    return self.grads[which]


def _cos_and_grads(u: np.ndarray, v: np.ndarray) -> Tuple[float, np.ndarray, np.ndarray]:
  """Cosine of the angle between ``u`` and ``v`` with its gradients in both vectors."""
  nu = float(np.linalg.norm(u))
  nv = float(np.linalg.norm(v))
  if nu < 1e-8 or nv < 1e-8:
    return 0.0, np.zeros(3), np.zeros(3)
  uh = u / nu
  vh = v / nv
  x = float(np.clip(np.dot(uh, vh), -1.0, 1.0))
  return x, (vh - x * uh) / nu, (uh - x * vh) / nv


def dihedral_cos_and_grads(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray, p4: np.ndarray) -> Tuple[float, List[np.ndarray]]:
  """Cosine of the dihedral p1-p2-p3-p4 and its gradient at each of the four points.

  Degenerate (collinear) geometries return a cosine of 1 and zero gradients.
  """
  b1 = p2 - p1
  b2 = p3 - p2
  b3 = p4 - p3
  m = np.cross(b1, b2)
  n = np.cross(b2, b3)
  nm = float(np.linalg.norm(m))
  nn = float(np.linalg.norm(n))
  if nm < 1e-8 or nn < 1e-8:
    return 1.0, [np.zeros(3) for _ in range(4)]
  mh = m / nm
  nh = n / nn
  c = float(np.clip(np.dot(mh, nh), -1.0, 1.0))
  gm = (nh - c * mh) / nm
  gn = (mh - c * nh) / nn
  dc_db1 = np.cross(b2, gm)
  dc_db2 = np.cross(gm, b1) + np.cross(b3, gn)
  dc_db3 = np.cross(gn, b2)
  return c, [-dc_db1, dc_db1 - dc_db2, dc_db2 - dc_db3, dc_db3]


def effective_acceptor_base(hybridization: str, base_xyz: np.ndarray, base2_xyz: np.ndarray) -> np.ndarray:
  """Ring acceptors use the midpoint of their two bases as the base."""
  if hybridization == "RING":
    return 0.5 * (base_xyz + base2_xyz)
  return base_xyz


def hb_energy_deriv(
  database: HBondDatabase,
  options: HBondOptions,
  hbe: HBEvalTuple,
  d_xyz: np.ndarray,
  h_xyz: np.ndarray,
  a_xyz: np.ndarray,
  b_xyz: np.ndarray,
  b2_xyz: np.ndarray,
  evaluate_deriv: bool = False,
) -> Tuple[float, Optional[HBondDerivs]]:
  """Raw hydrogen-bond energy, and optionally its gradients, for one donor/acceptor geometry.

  The energy is ``P(r) F(xD) F(xH) + F(r) [P(xD) F(xH) + F(xD) P(xH)]`` plus, for sp2
  acceptors, ``chi_weight F(r) F(xD) F(xH) (1 - cos^2 chi)`` where ``r`` is the
  hydrogen to acceptor distance, ``xD`` the cosine of the angle at the hydrogen, ``xH``
  the cosine of the angle at the acceptor and ``chi`` the B2-B-A-H dihedral.

  Args:
    database: Parameter tables.
    options: Hydrogen-bond options (unused by the functional form, kept for callers).
    hbe: Evaluation tuple of the pair.
    d_xyz: Donor heavy atom.
    h_xyz: Donor hydrogen.
    a_xyz: Acceptor.
    b_xyz: Acceptor base.
    b2_xyz: Acceptor second base.
    evaluate_deriv: Whether to compute gradients.

  Returns:
    Tuple of (energy, derivs). Energy is 0 when no table row covers ``hbe``; derivs is None
    unless requested. Gradients at ``b_xyz`` are taken with respect to the effective base
    (the ring midpoint for ring acceptors); callers split them through HBDerivAssigner.
  """
  params = database.lookup(hbe)
  if params is None:
    return 0.0, (HBondDerivs() if evaluate_deriv else None)

  hybrid = hbe.hybridization
  base = effective_acceptor_base(hybrid, b_xyz, b2_xyz)

  ah = a_xyz - h_xyz
  r = float(np.linalg.norm(ah))
  if r < 1e-8:
    return 0.0, (HBondDerivs() if evaluate_deriv else None)

  xD, dxD_du, dxD_dv = _cos_and_grads(h_xyz - d_xyz, a_xyz - h_xyz)
  xH, dxH_du, dxH_dv = _cos_and_grads(a_xyz - base, h_xyz - a_xyz)

  Pr, dPr = params.AHdist(r)
  PxD, dPxD = params.cosAHD(xD)
  PxH, dPxH = params.cosBAH(xH)
  FSr, dFSr = params.fade_rAH(r)
  FxD, dFxD = params.fade_xD(xD)
  FxH, dFxH = params.fade_xH(xH)

  energy = Pr * FxD * FxH + FSr * (PxD * FxH + FxD * PxH)

  use_chi = hybrid == "SP2" and params.chi_weight != 0.0
  chi_c = 1.0
  chi_grads: List[np.ndarray] = []
  s = 0.0
  if use_chi:
    chi_c, chi_grads = dihedral_cos_and_grads(b2_xyz, base, a_xyz, h_xyz)
    s = 1.0 - chi_c * chi_c
    energy += params.chi_weight * FSr * FxD * FxH * s

  if not evaluate_deriv:
    return energy, None

  dE_dr = dPr * FxD * FxH + dFSr * (PxD * FxH + FxD * PxH)
  dE_dxD = Pr * dFxD * FxH + FSr * (dPxD * FxH + dFxD * PxH)
  dE_dxH = Pr * FxD * dFxH + FSr * (PxD * dFxH + FxD * dPxH)
  if use_chi:
    dE_dr += params.chi_weight * dFSr * FxD * FxH * s
    dE_dxD += params.chi_weight * FSr * dFxD * FxH * s
    dE_dxH += params.chi_weight * FSr * FxD * dFxH * s

  derivs = HBondDerivs()
  g = derivs.grads
  # r = |A - H|
  dr = ah / r
  g[ACCEPTOR] += dE_dr * dr
  g[DONOR_H] -= dE_dr * dr
  # xD: u = H - D, v = A - H
  g[DONOR_HEAVY] -= dE_dxD * dxD_du
  g[DONOR_H] += dE_dxD * (dxD_du - dxD_dv)
  g[ACCEPTOR] += dE_dxD * dxD_dv
  # xH: u = A - B, v = H - A
  g[ACCEPTOR_BASE] -= dE_dxH * dxH_du
  g[ACCEPTOR] += dE_dxH * (dxH_du - dxH_dv)
  g[DONOR_H] += dE_dxH * dxH_dv
  if use_chi:
    dE_dc = params.chi_weight * FSr * FxD * FxH * (-2.0 * chi_c)
    g[ACCEPTOR_BASE2] += dE_dc * chi_grads[0]
    g[ACCEPTOR_BASE] += dE_dc * chi_grads[1]
    g[ACCEPTOR] += dE_dc * chi_grads[2]
    g[DONOR_H] += dE_dc * chi_grads[3]
  return energy, derivs


# -----------------------------
# Derivative assignment
# -----------------------------


@dataclass(frozen=True)
class AssignmentScaleAndDerivVectID:
  """Where one tagged position's gradient goes: ``scale * grads[dvect_id]``."""
  scale: float
  dvect_id: int


class HBDerivAssigner:
  """Maps the five tagged positions of a hydrogen bond onto donor and acceptor atom indices.

  Positions up to the donor hydrogen index into the donor residue, the rest into the
  acceptor residue. For ring acceptors the geometric base is the midpoint of the two
  bases, so each real base receives half of the base gradient.
  """

  def __init__(self, hbe: HBEvalTuple, don_rsd, hatm: int, acc_rsd, aatm: int):
    self._ind = [0] * N_HB_ATOMS
    self._assign = [AssignmentScaleAndDerivVectID(1.0, i) for i in range(N_HB_ATOMS)]
    self._ind[DONOR_HEAVY] = don_rsd.atom_base(hatm)
    self._ind[DONOR_H] = hatm
    self._ind[ACCEPTOR] = aatm
    self._ind[ACCEPTOR_BASE] = acc_rsd.atom_base(aatm)
    self._ind[ACCEPTOR_BASE2] = acc_rsd.abase2(aatm)
    if hbe.hybridization == "RING":
      self._assign[ACCEPTOR_BASE] = AssignmentScaleAndDerivVectID(0.5, ACCEPTOR_BASE)
      self._assign[ACCEPTOR_BASE2] = AssignmentScaleAndDerivVectID(0.5, ACCEPTOR_BASE)

  def ind(self, which: int) -> int:
    return self._ind[which]

  def assignment(self, which: int) -> AssignmentScaleAndDerivVectID:
    return self._assign[which]


def accumulate_derivs(
  assigner: HBDerivAssigner,
  derivs: HBondDerivs,
  weight: float,
  don_rsd,
  acc_rsd,
  don_atom_derivs: np.ndarray,
  acc_atom_derivs: np.ndarray,
) -> None:
  """Add ``weight``-scaled f1/f2 vectors of one hydrogen bond into per-atom arrays.

  ``f2`` is the weighted gradient and ``f1 = f2 x xyz`` of the receiving atom.
  """
  for which in range(N_HB_ATOMS):
    assignment = assigner.assignment(which)
    f2 = assignment.scale * weight * derivs.deriv(assignment.dvect_id)
    if which <= LAST_DONOR_ATOM:
      atm = assigner.ind(which)
      don_atom_derivs[atm, 0] += np.cross(f2, don_rsd.xyz(atm))
      don_atom_derivs[atm, 1] += f2
    else:
      atm = assigner.ind(which)
      acc_atom_derivs[atm, 0] += np.cross(f2, acc_rsd.xyz(atm))
      acc_atom_derivs[atm, 1] += f2


# -----------------------------
# Weights
# -----------------------------


def burial_weight(nneighbors: int) -> float:
  """Linear ramp from 0.1 at 7 or fewer neighbors to 1.0 at 24 or more."""
  if nneighbors <= ENV_MIN_NEIGHBORS:
    return ENV_MIN_WEIGHT
  if nneighbors >= ENV_MAX_NEIGHBORS:
    return 1.0
  frac = (nneighbors - ENV_MIN_NEIGHBORS) / (ENV_MAX_NEIGHBORS - ENV_MIN_NEIGHBORS)
  return ENV_MIN_WEIGHT + (1.0 - ENV_MIN_WEIGHT) * frac


def get_environment_dependent_weight(hbe: HBEvalTuple, don_nb: int, acc_nb: int, options: HBondOptions) -> float:
  """Mean burial weight of the donor and acceptor residues."""
  return 0.5 * (burial_weight(don_nb) + burial_weight(acc_nb))


def get_membrane_depth_dependent_weight(
  membrane,
  hbe: HBEvalTuple,
  don_nb: int,
  acc_nb: int,
  h_xyz: np.ndarray,
  a_xyz: np.ndarray,
  options: HBondOptions,
) -> float:
  """Blend of the membrane core weight and the burial weight by depth in the membrane.

  Args:
    membrane: MembraneInfo of the pose, or None.
    hbe: Evaluation tuple of the bond.
    don_nb: Donor residue neighbor count.
    acc_nb: Acceptor residue neighbor count.
    h_xyz: Donor hydrogen.
    a_xyz: Acceptor.
    options: Hydrogen-bond options.

  Returns:
    ``fa * membrane_core_weight + (1 - fa) * environment weight`` with ``fa`` the mean
    membrane projection of the hydrogen and the acceptor.
  """
  env = get_environment_dependent_weight(hbe, don_nb, acc_nb, options)
  if membrane is None:
    return env
  fa = 0.5 * (membrane.fa_projection(h_xyz) + membrane.fa_projection(a_xyz))
  return fa * options.membrane_core_weight + (1.0 - fa) * env


def get_membrane_depth_dependent_weight_deriv(
  membrane,
  hbe: HBEvalTuple,
  don_nb: int,
  acc_nb: int,
  h_xyz: np.ndarray,
  a_xyz: np.ndarray,
  options: HBondOptions,
) -> Tuple[np.ndarray, np.ndarray]:
  """Gradients of :func:`get_membrane_depth_dependent_weight` at the hydrogen and at the acceptor."""
  if membrane is None:
    return np.zeros(3), np.zeros(3)
  env = get_environment_dependent_weight(hbe, don_nb, acc_nb, options)
  scale = 0.5 * (options.membrane_core_weight - env)
  return scale * membrane.fa_projection_deriv(h_xyz), scale * membrane.fa_projection_deriv(a_xyz)


def helix_segment(secstruct: Optional[str], chains: List[str], seqpos: int) -> Optional[Tuple[int, int]]:
  """Bounds ``(start, end)`` of the helix containing ``seqpos``, None when it is not helical."""
  if secstruct is None or secstruct[seqpos] != "H":
    return None
  start = seqpos
  while start > 0 and secstruct[start - 1] == "H" and chains[start - 1] == chains[seqpos]:
    start -= 1
  end = seqpos
  while end + 1 < len(secstruct) and secstruct[end + 1] == "H" and chains[end + 1] == chains[seqpos]:
    end += 1
  return start, end


def get_ssdep_weight(rsd1, rsd2, secstruct: Optional[str], chains: List[str], options: HBondOptions) -> float:
  """Helix-length dependent scale for a residue pair inside one helix.

  Args:
    rsd1: First residue.
    rsd2: Second residue.
    secstruct: Secondary structure string of the pose, or None.
    chains: Chain identifier per sequence position.
    options: Hydrogen-bond options.

  Returns:
    1.0 unless the option is on and both residues lie in the same helix; then the low
    scale for short helices, the high scale for long ones and a linear blend between.
  """
  if not options.length_dependent_srbb:
    return 1.0
  seg1 = helix_segment(secstruct, chains, rsd1.seqpos)
  if seg1 is None or seg1 != helix_segment(secstruct, chains, rsd2.seqpos):
    return 1.0
  length = seg1[1] - seg1[0] + 1
  low = options.length_dependent_srbb_lowscale
  high = options.length_dependent_srbb_highscale
  minlen = options.length_dependent_srbb_minlength
  maxlen = options.length_dependent_srbb_maxlength
  if length <= minlen:
    return low
  if length >= maxlen:
    return high
  return low + (high - low) * (length - minlen) / (maxlen - minlen)


def raw_geometry(d_xyz: np.ndarray, h_xyz: np.ndarray, a_xyz: np.ndarray, base_xyz: np.ndarray) -> Dict[str, float]:
  """Distance and angles of a hydrogen bond for reports: AHdist, cosAHD and cosBAH."""
  xD, _, _ = _cos_and_grads(h_xyz - d_xyz, a_xyz - h_xyz)
  xH, _, _ = _cos_and_grads(a_xyz - base_xyz, h_xyz - a_xyz)
  return {"AHdist": float(np.linalg.norm(a_xyz - h_xyz)), "cosAHD": xD, "cosBAH": xH}
