"""
Per scoring round bookkeeping: neighbor counts, the backbone/backbone hydrogen bonds of the
pose and which backbone donors and acceptors they claim.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from hbondsnap.constants import MAX_HEAVY_H_BOND, MAX_R
from hbondsnap.hbonds.database import HBondDatabase
from hbondsnap.hbonds.geom import get_ssdep_weight
from hbondsnap.hbonds.identify import hbond_weight, iter_hbonds_1way
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import HBEvalTuple, get_hbond_weight_type, increment_hbond_energy
from hbondsnap.log import logger
from hbondsnap.pose import Pose, compute_neighbor_counts, residues_near_water

# Raw energy below which a backbone i -> i+4 bond counts as a helical turn
HELIX_TURN_ENERGY = -0.5
HELIX_TURN_SPAN = 4


@dataclass
class HBond:
  """One hydrogen bond found while setting up a scoring round.

  Attributes:
    don_res: Donor sequence position.
    don_hatm: Index of the polar hydrogen.
    don_datm: Index of the donor heavy atom.
    acc_res: Acceptor sequence position.
    acc_atm: Index of the acceptor atom.
    energy: Raw energy.
    weight: Environment / membrane / helix-length factor.
    eval_tuple: Classification of the pair.
    don_name: Donor residue name and atom, for reports.
    acc_name: Acceptor residue name and atom, for reports.
  """
  don_res: int
  don_hatm: int
  don_datm: int
  acc_res: int
  acc_atm: int
  energy: float
  weight: float
  eval_tuple: HBEvalTuple
  don_name: Tuple[str, str] = ("", "")
  acc_name: Tuple[str, str] = ("", "")

  @property
  def weighted_energy(self) -> float:
    return self.energy * self.weight


def residue_pairs_in_range(pose: Pose, cutoff: float) -> List[Tuple[int, int]]:
  """Distinct residue pairs ``(i, j)``, ``i < j``, whose bounding spheres come within ``cutoff``."""
  n = pose.size
  if n < 2:
    return []
  centers = np.array([res.nbr_xyz for res in pose.residues], dtype=float)
  radii = np.array([res.nbr_radius for res in pose.residues], dtype=float)
  d2 = np.sum((centers[:, None, :] - centers[None, :, :]) ** 2, axis=-1)
  reach = radii[:, None] + radii[None, :] + cutoff
  close = np.triu(d2 <= reach * reach, k=1)
  return [(int(i), int(j)) for i, j in zip(*np.nonzero(close))]


class HBondSet:
  """Neighbor counts, bb/bb hydrogen bonds and donor/acceptor claims of one scoring round.

  Attributes:
    options: Options shared with the energy method.
    hbonds: Backbone/backbone bonds found by :meth:`setup_for_residue_pair_energies`.
    membrane: Membrane geometry snapshot used by membrane weighting, or None.
    secstruct: Secondary structure string used by helix-length weighting, or None. Taken
      from the pose, or assigned from backbone bonds each round when the pose has none.
    chains: Chain identifier per sequence position.
  """

  def __init__(self, options: Optional[HBondOptions] = None, nres: int = 0):
    self.options = HBondOptions() if options is None else options
    self.hbonds: List[HBond] = []
    self._nbrs: List[int] = [1] * nres
    self._don_bb_claimed: List[bool] = [False] * nres
    self._acc_bb_claimed: List[bool] = [False] * nres
    self._near_water: List[bool] = [False] * nres
    self.membrane = None
    self.secstruct: Optional[str] = None
    self.chains: List[str] = []

  def __len__(self) -> int:
    return len(self.hbonds)

  def __iter__(self) -> Iterator[HBond]:
    return iter(self.hbonds)

  @property
  def nres(self) -> int:
    return len(self._nbrs)

  def nbrs(self, seqpos: int) -> int:
    """Neighbor count of a residue (10 A between representative atoms, self included)."""
    return self._nbrs[seqpos]

  def don_bbg_in_bb_bb_hbond(self, seqpos: int) -> bool:
    """Whether the backbone donor of a residue is used by a bb/bb bond."""
    return self._don_bb_claimed[seqpos]

  def acc_bbg_in_bb_bb_hbond(self, seqpos: int) -> bool:
    """Whether the backbone acceptor of a residue is used by a bb/bb bond."""
    return self._acc_bb_claimed[seqpos]

  def residue_near_water(self, seqpos: int) -> bool:
    return self._near_water[seqpos]

  def bond_near_water(self, don_seqpos: int, acc_seqpos: int) -> bool:
    return self._near_water[don_seqpos] or self._near_water[acc_seqpos]

  def copy_bb_donor_acceptor_arrays(self, other: "HBondSet") -> None:
    """Carry the donor/acceptor claims of a previous round forward."""
    self._don_bb_claimed = list(other._don_bb_claimed)
    self._acc_bb_claimed = list(other._acc_bb_claimed)

  def append_hbond(self, hbond: HBond) -> None:
    self.hbonds.append(hbond)

  def setup_for_residue_pair_energies(self, pose: Pose, database: HBondDatabase) -> None:
    """Compute neighbor counts and find every backbone/backbone bond in the pose.

    Args:
      pose: Structure being scored.
      database: Parameter tables.
    """
    options = self.options
    n = pose.size
    self._nbrs = compute_neighbor_counts(pose)
    self._don_bb_claimed = [False] * n
    self._acc_bb_claimed = [False] * n
    self._near_water = residues_near_water(pose, options.water_proximity_cutoff) if options.water_hybrid_sf else [False] * n
    self.membrane = pose.membrane if options.membrane else None
    self.secstruct = pose.secstruct
    if self.secstruct is None and options.length_dependent_srbb:
      self.secstruct = assign_helices(pose, database, options)
    self.chains = [res.chain for res in pose.residues]
    self.hbonds = []

    for i, j in residue_pairs_in_range(pose, MAX_R + MAX_HEAVY_H_BOND):
      for don, acc in ((i, j), (j, i)):
        don_rsd = pose.residue(don)
        acc_rsd = pose.residue(acc)
        if options.exclude_DNA_DNA and don_rsd.is_dna and acc_rsd.is_dna:
          continue
        ssdep = get_ssdep_weight(don_rsd, acc_rsd, self.secstruct, self.chains, options)
        for hit in iter_hbonds_1way(database, options, don_rsd, acc_rsd, exclude_bb=False, exclude_bsc=True, exclude_scb=True, exclude_sc=True):
          weight = hbond_weight(
            options, hit, don_rsd, acc_rsd, self._nbrs[don], self._nbrs[acc], ssdep, self.bond_near_water(don, acc), self.membrane
          )
          self.append_hbond(
            HBond(
              don_res=don,
              don_hatm=hit.hatm,
              don_datm=hit.datm,
              acc_res=acc,
              acc_atm=hit.aatm,
              energy=hit.energy,
              weight=weight,
              eval_tuple=hit.hbe,
              don_name=(don_rsd.name, don_rsd.atoms[hit.datm].name),
              acc_name=(acc_rsd.name, acc_rsd.atoms[hit.aatm].name),
            )
          )
          if don_rsd.is_protein and acc_rsd.is_protein:
            self._don_bb_claimed[don] = True
            self._acc_bb_claimed[acc] = True
    logger.debug("Found %d backbone/backbone hydrogen bonds over %d residues.", len(self.hbonds), n)

  def total_energies(self, emap) -> None:
    """Add the weighted energies of the stored bonds into ``emap`` by weight type."""
    for hbond in self.hbonds:
      increment_hbond_energy(hbond.eval_tuple, emap, hbond.weighted_energy)

  def to_dataframe(self) -> pd.DataFrame:
    """Tabulate the stored hydrogen bonds, one row per bond.

    Returns:
      DataFrame with donor and acceptor positions, residue and atom names, the
      evaluation type, weight type, raw energy, weight and weighted energy.
    """
    columns = [
      "don_res",
      "don_resname",
      "don_atom",
      "acc_res",
      "acc_resname",
      "acc_atom",
      "eval_type",
      "weight_type",
      "energy",
      "weight",
      "weighted_energy",
    ]
    rows = []
    for hbond in self.hbonds:
      rows.append(
        {
          "don_res": hbond.don_res,
          "don_resname": hbond.don_name[0],
          "don_atom": hbond.don_name[1],
          "acc_res": hbond.acc_res,
          "acc_resname": hbond.acc_name[0],
          "acc_atom": hbond.acc_name[1],
          "eval_type": "/".join(hbond.eval_tuple.eval_type),
          "weight_type": get_hbond_weight_type(hbond.eval_tuple),
          "energy": hbond.energy,
          "weight": hbond.weight,
          "weighted_energy": hbond.weighted_energy,
        }
      )
    return pd.DataFrame(rows, columns=columns)


def assign_helices(pose: Pose, database: HBondDatabase, options: HBondOptions) -> str:
  """Assign helices from backbone hydrogen bonds (DSSP minimal helices).

  A turn starts at residue i when the backbone N-H of i+4 bonds the backbone O of i with a
  raw energy below ``HELIX_TURN_ENERGY``. Two consecutive turns at i-1 and i make
  residues i..i+3 helical.

  Args:
    pose: Structure to assign.
    database: Parameter tables.
    options: Hydrogen-bond options.

  Returns:
    String of ``H`` and ``L``, one character per residue.
  """
  n = pose.size
  turn = [False] * n
  for i in range(n - HELIX_TURN_SPAN):
    acc_rsd = pose.residue(i)
    don_rsd = pose.residue(i + HELIX_TURN_SPAN)
    if not (acc_rsd.is_protein and don_rsd.is_protein) or acc_rsd.chain != don_rsd.chain:
      continue
    for hit in iter_hbonds_1way(database, options, don_rsd, acc_rsd, exclude_bb=False, exclude_bsc=True, exclude_scb=True, exclude_sc=True):
      if don_rsd.atoms[hit.datm].name == "N" and acc_rsd.atoms[hit.aatm].name == "O" and hit.energy < HELIX_TURN_ENERGY:
        turn[i] = True
        break

  ss = ["L"] * n
  for i in range(1, n):
    if turn[i - 1] and turn[i]:
      for k in range(i, min(i + HELIX_TURN_SPAN, n)):
        ss[k] = "H"
  secstruct = "".join(ss)
  logger.debug("Assigned %d helical residues from backbone hydrogen bonds.", secstruct.count("H"))
  return secstruct

