"""
Enumeration of the hydrogen bonds formed by the polar hydrogens of one residue with the
acceptors of another (or the same) residue, and accumulation of their weighted energies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Optional

import numpy as np

from hbondsnap.constants import HBOND_WAT, MAX_R2, WAT_ENTROPY, WATER_ENTROPY_STEP
from hbondsnap.hbonds.database import HBondDatabase
from hbondsnap.hbonds.geom import (
  HBondDerivs,
  get_environment_dependent_weight,
  get_membrane_depth_dependent_weight,
  hb_energy_deriv,
)
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import SR_BB, HBEvalTuple, get_hbond_weight_type, hb_eval_type_weight, increment_hbond_energy
from hbondsnap.scoring import SmoothStepFunc

WATER_ENTROPY_FUNC = SmoothStepFunc(*WATER_ENTROPY_STEP)


@dataclass
class HBondHit:
  """A donor hydrogen / acceptor pair whose raw energy is below the bond cutoff."""
  hatm: int
  datm: int
  aatm: int
  hbe: HBEvalTuple
  energy: float
  derivs: Optional[HBondDerivs] = None


def calculate_intra_res_hbonds(rsd, options: HBondOptions) -> bool:
  """Whether hydrogen bonds inside ``rsd`` are scored."""
  return options.intra_res_hbonds and not rsd.is_water


def _intra_pair_excluded(rsd, datm: int, aatm: int) -> bool:
  # an atom cannot accept from itself or from the atom it is bonded to
  return aatm == datm or rsd.atom_base(aatm) == datm or rsd.abase2(aatm) == datm


def iter_hbonds_1way(
  database: HBondDatabase,
  options: HBondOptions,
  don_rsd,
  acc_rsd,
  exclude_bb: bool = False,
  exclude_bsc: bool = False,
  exclude_scb: bool = False,
  exclude_sc: bool = False,
  evaluate_derivative: bool = False,
) -> Iterator[HBondHit]:
  """Yield the hydrogen bonds with donors on ``don_rsd`` and acceptors on ``acc_rsd``.

  Args:
    database: Parameter tables.
    options: Hydrogen-bond options.
    don_rsd: Residue providing polar hydrogens.
    acc_rsd: Residue providing acceptors (may be ``don_rsd``).
    exclude_bb: Skip backbone donor / backbone acceptor pairs.
    exclude_bsc: Skip side-chain donor / backbone acceptor pairs.
    exclude_scb: Skip backbone donor / side-chain acceptor pairs.
    exclude_sc: Skip side-chain donor / side-chain acceptor pairs.
    evaluate_derivative: Attach raw energy gradients to every hit.

  Yields:
    HBondHit for every pair passing the exclusions, the distance gate and the energy cutoff.
  """
  is_intra = don_rsd.seqpos == acc_rsd.seqpos
  for hatm in don_rsd.hpos_polar:
    datm = don_rsd.atom_base(hatm)
    datm_is_bb = don_rsd.atom_is_backbone(datm)
    if datm_is_bb:
      if exclude_bb and exclude_scb:
        continue
    elif exclude_sc and exclude_bsc:
      continue
    h_xyz = don_rsd.xyz(hatm)
    d_xyz = don_rsd.xyz(datm)

    for aatm in acc_rsd.accpt_pos:
      if is_intra and _intra_pair_excluded(acc_rsd, datm, aatm):
        continue
      if acc_rsd.atom_is_backbone(aatm):
        if datm_is_bb:
          if exclude_bb:
            continue
        elif exclude_bsc:
          continue
      else:
        if datm_is_bb:
          if exclude_scb:
            continue
        elif exclude_sc:
          continue

      a_xyz = acc_rsd.xyz(aatm)
      delta = a_xyz - h_xyz
      # cheap rejection before any trigonometry
      if float(np.dot(delta, delta)) > MAX_R2:
        continue

      hbe = HBEvalTuple.from_residues(don_rsd, datm, acc_rsd, aatm)
      energy, derivs = hb_energy_deriv(
        database,
        options,
        hbe,
        d_xyz,
        h_xyz,
        a_xyz,
        acc_rsd.xyz(acc_rsd.atom_base(aatm)),
        acc_rsd.xyz(acc_rsd.abase2(aatm)),
        evaluate_deriv=evaluate_derivative,
      )
      if energy >= options.max_hb_energy:
        continue
      yield HBondHit(hatm, datm, aatm, hbe, energy, derivs)


def environment_weight(
  options: HBondOptions,
  hbe: HBEvalTuple,
  don_nb: int,
  acc_nb: int,
  h_xyz: np.ndarray,
  a_xyz: np.ndarray,
  ssdep_weight: float = 1.0,
  bond_near_wat: bool = False,
  membrane=None,
  is_intra: bool = False,
) -> float:
  """Environment factor multiplying the raw energy of one bond.

  Burial weight (or 1), or the membrane depth weight when a membrane mode is on; forced
  to 1 near water with hybrid water scoring; short range backbone/backbone bonds outside
  membrane mode are further scaled by ``ssdep_weight``.
  """
  if options.membrane:
    weight = get_membrane_depth_dependent_weight(membrane, hbe, don_nb, acc_nb, h_xyz, a_xyz, options)
  elif options.use_hb_env_dep:
    weight = get_environment_dependent_weight(hbe, don_nb, acc_nb, options)
  else:
    weight = 1.0
  if options.water_hybrid_sf and bond_near_wat:
    weight = 1.0
  if not options.membrane and not is_intra and get_hbond_weight_type(hbe) == SR_BB:
    weight *= ssdep_weight
  return weight


def hbond_weight(
  options: HBondOptions,
  hit: HBondHit,
  don_rsd,
  acc_rsd,
  don_nb: int,
  acc_nb: int,
  ssdep_weight: float = 1.0,
  bond_near_wat: bool = False,
  membrane=None,
) -> float:
  """:func:`environment_weight` of a bond found by :func:`iter_hbonds_1way`."""
  return environment_weight(
    options,
    hit.hbe,
    don_nb,
    acc_nb,
    don_rsd.xyz(hit.hatm),
    acc_rsd.xyz(hit.aatm),
    ssdep_weight,
    bond_near_wat,
    membrane,
    is_intra=don_rsd.seqpos == acc_rsd.seqpos,
  )


def weighted_hbond_energy(
  options: HBondOptions,
  hbe: HBEvalTuple,
  energy: float,
  env_weight: float,
  weights: Mapping[str, float],
  don_is_wat: bool = False,
  acc_is_wat: bool = False,
  is_intra: bool = False,
) -> float:
  """Fully weighted contribution of one bond, as :func:`add_hbond_energy` followed by a dot with ``weights``."""
  if options.water_hybrid_sf and (don_is_wat or acc_is_wat):
    total = energy * env_weight * weights.get(HBOND_WAT, 0.0)
    if don_is_wat != acc_is_wat:
      total += weights.get(WAT_ENTROPY, 0.0) * (1.0 - WATER_ENTROPY_FUNC.func(energy))
    return total
  return energy * env_weight * hb_eval_type_weight(hbe, weights, is_intra, options.put_intra_into_total)


def add_hbond_energy(options: HBondOptions, hit: HBondHit, don_rsd, acc_rsd, weight: float, emap) -> None:
  """Add one weighted bond to ``emap``, routing water bonds to the water buckets."""
  is_intra = don_rsd.seqpos == acc_rsd.seqpos
  hb_e = hit.energy * weight
  if options.water_hybrid_sf:
    if don_rsd.is_water != acc_rsd.is_water:
      emap[WAT_ENTROPY] += 1.0 - WATER_ENTROPY_FUNC.func(hit.energy)
    if don_rsd.is_water or acc_rsd.is_water:
      emap[HBOND_WAT] += hb_e
      return
  increment_hbond_energy(hit.hbe, emap, hb_e, is_intra, options.put_intra_into_total)


def identify_hbonds_1way(
  database: HBondDatabase,
  options: HBondOptions,
  don_rsd,
  acc_rsd,
  don_nb: int,
  acc_nb: int,
  emap,
  *,
  exclude_bb: bool = False,
  exclude_bsc: bool = False,
  exclude_scb: bool = False,
  exclude_sc: bool = False,
  ssdep_weight: float = 1.0,
  bond_near_wat: bool = False,
  membrane=None,
) -> int:
  """Accumulate the weighted energies of the bonds from ``don_rsd`` to ``acc_rsd`` into ``emap``.

  Returns:
    Number of bonds found.
  """
  nfound = 0
  for hit in iter_hbonds_1way(database, options, don_rsd, acc_rsd, exclude_bb, exclude_bsc, exclude_scb, exclude_sc):
    weight = hbond_weight(options, hit, don_rsd, acc_rsd, don_nb, acc_nb, ssdep_weight, bond_near_wat, membrane)
    add_hbond_energy(options, hit, don_rsd, acc_rsd, weight, emap)
    nfound += 1
  return nfound


def identify_intra_res_hbonds(database: HBondDatabase, options: HBondOptions, rsd, rsd_nb: int, emap, bond_near_wat: bool = False) -> int:
  """Accumulate the bonds a residue makes with itself, nothing when intra scoring is off."""
  if not calculate_intra_res_hbonds(rsd, options):
    return 0
  return identify_hbonds_1way(database, options, rsd, rsd, rsd_nb, rsd_nb, emap, bond_near_wat=bond_near_wat)
