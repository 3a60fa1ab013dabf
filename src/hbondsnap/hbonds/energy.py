"""
The hydrogen-bond energy method: setup of a scoring round, pairwise and intra-residue
energies, the decomposed bb/bb, bb/sc and sc/sc energies, the minimization interface with
its derivatives, and batched rotamer energies through rotamer tries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

import numpy as np

from hbondsnap.constants import (
  HBOND,
  HBOND_BB_SC,
  HBOND_INTRA,
  HBOND_LR_BB_SC,
  HBOND_SC,
  HBOND_SR_BB_SC,
  HBOND_WAT,
  MAX_HEAVY_H_BOND,
  MAX_R,
  WAT_ENTROPY,
)
from hbondsnap.hbonds.database import HBondDatabase, get_database
from hbondsnap.hbonds.geom import HBDerivAssigner, accumulate_derivs, get_membrane_depth_dependent_weight_deriv, get_ssdep_weight
from hbondsnap.hbonds.hbond_set import HBondSet, residue_pairs_in_range
from hbondsnap.hbonds.hbtrie import (
  HBCountPairFunction,
  HBondsTrieVsTrieCachedDataContainer,
  HBondTrieEvaluator,
  create_rotamer_descriptor,
)
from hbondsnap.hbonds.identify import (
  WATER_ENTROPY_FUNC,
  HBondHit,
  add_hbond_energy,
  calculate_intra_res_hbonds,
  hbond_weight,
  identify_hbonds_1way,
  identify_intra_res_hbonds,
  iter_hbonds_1way,
)
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import hb_eval_type_weight
from hbondsnap.log import logger
from hbondsnap.pose import Pose, Residue, RotamerSet
from hbondsnap.scoring import EnergyMap, MinimizationData, get_weights, log_energies
from hbondsnap.trie.rotamer_trie import RotamerTrie, TrieCollection, log_trie_summary, trie_vs_path, trie_vs_trie

# Keys of the minimization and rotamer set caches
HBOND_RES_DATA = "hbond_res_data"
HBOND_RESPAIR_DATA = "hbond_respair_data"
HBOND_TRIE = "hbond_trie"

# Terms left untouched when the stored bb/bb bonds are added at finalize
FINALIZE_RESTORED_TYPES = (HBOND_BB_SC, HBOND_SR_BB_SC, HBOND_LR_BB_SC, HBOND_SC, HBOND_WAT, WAT_ENTROPY, HBOND_INTRA)


@dataclass
class HBondResidueMinData:
  """Per residue data frozen for a minimization trajectory.

  Attributes:
    natoms: Atom count of the residue.
    nneighbors: Neighbor count used for environment weighting.
    bb_don_avail: The backbone donor may still bond side chains.
    bb_acc_avail: The backbone acceptor may still bond side chains.
  """
  natoms: int = 0
  nneighbors: int = 1
  bb_don_avail: bool = True
  bb_acc_avail: bool = True


@dataclass
class HBondResPairMinData:
  """Links the frozen data of the two residues of a pair."""
  res1_data: Optional[HBondResidueMinData] = None
  res2_data: Optional[HBondResidueMinData] = None

  def initialize(self, res1_data: HBondResidueMinData, res2_data: HBondResidueMinData) -> None:
    self.res1_data = res1_data
    self.res2_data = res2_data

  @property
  def natoms1(self) -> int:
    return self.res1_data.natoms

  @property
  def natoms2(self) -> int:
    return self.res2_data.natoms


class HBondEnergy:
  """Context dependent two body hydrogen-bond energy method.

  Args:
    options: Hydrogen-bond options, defaults to :class:`HBondOptions()`.
    database: Parameter tables, defaults to the bundled set named by ``options.params_database_tag``.
  """

  def __init__(self, options: Optional[HBondOptions] = None, database: Optional[HBondDatabase] = None):
    self.options = HBondOptions() if options is None else options
    self.database = get_database(self.options.params_database_tag) if database is None else database

  # -----------------------------
  # Cutoffs and capabilities
  # -----------------------------

  def atomic_interaction_cutoff(self) -> float:
    """Longest heavy atom distance at which two residues can still hydrogen bond."""
    return MAX_R + MAX_HEAVY_H_BOND

  def hydrogen_interaction_cutoff2(self) -> float:
    return self.atomic_interaction_cutoff() ** 2

  def use_extended_residue_pair_energy_interface(self) -> bool:
    return True

  def defines_intrares_energy(self, weights: Mapping[str, float]) -> bool:
    return weights.get(HBOND_INTRA, 0.0) > 0.0 or weights.get(HBOND, 0.0) > 0.0

  def defines_score_for_residue_pair(self, rsd1: Residue, rsd2: Residue, res_moving_wrt_eachother: bool) -> bool:
    """Pairs that do not move relative to each other only matter when bb/bb bonds are scored pairwise."""
    if res_moving_wrt_eachother:
      return True
    return self.options.decompose_bb_hb_into_pair_energies

  def _skip_pair(self, rsd1: Residue, rsd2: Residue) -> bool:
    if rsd1.seqpos == rsd2.seqpos:
      return True
    return self.options.exclude_DNA_DNA and rsd1.is_dna and rsd2.is_dna

  def _in_interaction_range(self, rsd1: Residue, rsd2: Residue) -> bool:
    reach = rsd1.nbr_radius + rsd2.nbr_radius + self.atomic_interaction_cutoff()
    d = rsd1.nbr_xyz - rsd2.nbr_xyz
    return float(np.dot(d, d)) <= reach * reach

  # -----------------------------
  # Setup
  # -----------------------------

  def setup_for_scoring(self, pose: Pose, previous: Optional[HBondSet] = None, minimizing: bool = False) -> HBondSet:
    """Build the HBondSet of a scoring round.

    Args:
      pose: Structure to score.
      previous: HBondSet of the previous round, if any.
      minimizing: Whether a minimizer is running; the backbone claims of ``previous`` are then kept.

    Returns:
      The new HBondSet.
    """
    hbond_set = HBondSet(self.options, pose.size)
    hbond_set.setup_for_residue_pair_energies(pose, self.database)
    if minimizing and previous is not None:
      hbond_set.copy_bb_donor_acceptor_arrays(previous)
    return hbond_set

  def create_rotamer_trie(self, rotamers: Union[RotamerSet, Residue], hbond_set: HBondSet) -> RotamerTrie:
    """Trie over the rotamers of a RotamerSet, or over a single residue."""
    if isinstance(rotamers, RotamerSet):
      residues = rotamers.rotamers
    else:
      residues = [rotamers]
    descriptors = [create_rotamer_descriptor(res, self.options, hbond_set, i) for i, res in enumerate(residues)]
    trie = RotamerTrie(descriptors, num_rotamers=len(residues))
    log_trie_summary("hbond", trie, sum(d.natoms() for d in descriptors))
    return trie

  def setup_for_packing(self, pose: Pose) -> Tuple[HBondSet, TrieCollection]:
    """Build the HBondSet and one single-rotamer trie per residue for background energies."""
    hbond_set = self.setup_for_scoring(pose)
    tries = TrieCollection(pose.size)
    for res in pose.residues:
      tries.set_trie(res.seqpos, self.create_rotamer_trie(res, hbond_set))
    return hbond_set, tries

  def prepare_rotamers_for_packing(self, pose: Pose, rotset: RotamerSet, hbond_set: HBondSet) -> None:
    rotset.store_trie(HBOND_TRIE, self.create_rotamer_trie(rotset, hbond_set))

  def update_residue_for_packing(self, pose: Pose, resid: int, hbond_set: HBondSet, tries: TrieCollection) -> None:
    """Rebuild the background trie of one residue after it changed."""
    tries.set_trie(resid, self.create_rotamer_trie(pose.residue(resid), hbond_set))

  # -----------------------------
  # Energies
  # -----------------------------

  def _identify_both_ways(
    self,
    rsd1: Residue,
    rsd2: Residue,
    hbond_set: HBondSet,
    emap,
    flags_1to2: Tuple[bool, bool, bool, bool],
    flags_2to1: Tuple[bool, bool, bool, bool],
    ssdep_weight: float = 1.0,
  ) -> None:
    near = hbond_set.bond_near_water(rsd1.seqpos, rsd2.seqpos)
    for don, acc, flags in ((rsd1, rsd2, flags_1to2), (rsd2, rsd1, flags_2to1)):
      exclude_bb, exclude_bsc, exclude_scb, exclude_sc = flags
      if exclude_bb and exclude_bsc and exclude_scb and exclude_sc:
        continue
      identify_hbonds_1way(
        self.database,
        self.options,
        don,
        acc,
        hbond_set.nbrs(don.seqpos),
        hbond_set.nbrs(acc.seqpos),
        emap,
        exclude_bb=exclude_bb,
        exclude_bsc=exclude_bsc,
        exclude_scb=exclude_scb,
        exclude_sc=exclude_sc,
        ssdep_weight=ssdep_weight,
        bond_near_wat=near,
        membrane=hbond_set.membrane,
      )

  def _live_exclusions(self, don: Residue, acc: Residue, hbond_set: HBondSet) -> Tuple[bool, bool, bool, bool]:
    check = self.options.bb_donor_acceptor_check
    exclude_scb = check and don.is_protein and hbond_set.don_bbg_in_bb_bb_hbond(don.seqpos)
    exclude_bsc = check and acc.is_protein and hbond_set.acc_bbg_in_bb_bb_hbond(acc.seqpos)
    return (not self.options.decompose_bb_hb_into_pair_energies, exclude_bsc, exclude_scb, False)

  def residue_pair_energy(self, rsd1: Residue, rsd2: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    """Add the hydrogen bonds between two residues, in both directions, to ``emap``.

    Backbone/backbone bonds are left to :meth:`finalize_total_energy` unless bb/bb
    decomposition is on. Side chain bonds to a backbone group that already forms a
    backbone/backbone bond are skipped.
    """
    if self._skip_pair(rsd1, rsd2):
      return
    ssdep = get_ssdep_weight(rsd1, rsd2, hbond_set.secstruct, hbond_set.chains, self.options)
    self._identify_both_ways(
      rsd1,
      rsd2,
      hbond_set,
      emap,
      self._live_exclusions(rsd1, rsd2, hbond_set),
      self._live_exclusions(rsd2, rsd1, hbond_set),
      ssdep,
    )

  def backbone_backbone_energy(self, rsd1: Residue, rsd2: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    if not self.options.decompose_bb_hb_into_pair_energies or self._skip_pair(rsd1, rsd2):
      return
    flags = (False, True, True, True)
    self._identify_both_ways(rsd1, rsd2, hbond_set, emap, flags, flags)

  def backbone_sidechain_energy(self, rsd1: Residue, rsd2: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    """Bonds between the backbone of ``rsd1`` and the side chain of ``rsd2``."""
    if self._skip_pair(rsd1, rsd2):
      return
    check = self.options.bb_donor_acceptor_check and rsd1.is_protein
    skip_don = check and hbond_set.don_bbg_in_bb_bb_hbond(rsd1.seqpos)
    skip_acc = check and hbond_set.acc_bbg_in_bb_bb_hbond(rsd1.seqpos)
    all_off = (True, True, True, True)
    self._identify_both_ways(
      rsd1,
      rsd2,
      hbond_set,
      emap,
      all_off if skip_don else (True, True, False, True),
      all_off if skip_acc else (True, False, True, True),
    )

  def sidechain_sidechain_energy(self, rsd1: Residue, rsd2: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    if self._skip_pair(rsd1, rsd2):
      return
    flags = (True, True, True, False)
    self._identify_both_ways(rsd1, rsd2, hbond_set, emap, flags, flags)

  def eval_intrares_energy(self, rsd: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    identify_intra_res_hbonds(
      self.database, self.options, rsd, hbond_set.nbrs(rsd.seqpos), emap, hbond_set.residue_near_water(rsd.seqpos)
    )

  def atomistic_pair_energy(self, atm1: int, rsd1: Residue, atm2: int, rsd2: Residue, pose: Pose, hbond_set: HBondSet, emap) -> None:
    """Add the bond between one atom of ``rsd1`` and one atom of ``rsd2``, if they form one.

    Either atom may be the polar hydrogen. The same exclusions apply as in
    :meth:`residue_pair_energy`, or the intra-residue rules when both atoms share a residue.
    """
    is_intra = rsd1.seqpos == rsd2.seqpos
    if is_intra:
      if not calculate_intra_res_hbonds(rsd1, self.options):
        return
    elif self._skip_pair(rsd1, rsd2):
      return
    ssdep = 1.0 if is_intra else get_ssdep_weight(rsd1, rsd2, hbond_set.secstruct, hbond_set.chains, self.options)
    near = hbond_set.bond_near_water(rsd1.seqpos, rsd2.seqpos)
    for don, hatm, acc, aatm in ((rsd1, atm1, rsd2, atm2), (rsd2, atm2, rsd1, atm1)):
      if hatm not in don.hpos_polar or aatm not in acc.accpt_pos:
        continue
      flags = (False, False, False, False) if is_intra else self._live_exclusions(don, acc, hbond_set)
      for hit in iter_hbonds_1way(self.database, self.options, don, acc, *flags):
        if hit.hatm != hatm or hit.aatm != aatm:
          continue
        weight = hbond_weight(self.options, hit, don, acc, hbond_set.nbrs(don.seqpos), hbond_set.nbrs(acc.seqpos), ssdep, near, hbond_set.membrane)
        add_hbond_energy(self.options, hit, don, acc, weight, emap)
      if is_intra:
        break

  def finalize_total_energy(self, hbond_set: HBondSet, totals, minimizing: bool = False) -> None:
    """Add the backbone/backbone bonds of the round to ``totals``.

    Skipped while minimizing and when bb/bb bonds are scored pairwise. Only the
    backbone/backbone terms and ``hbond`` change.
    """
    if minimizing or self.options.decompose_bb_hb_into_pair_energies:
      return
    saved = {name: totals[name] for name in FINALIZE_RESTORED_TYPES}
    hbond_set.total_energies(totals)
    for name, value in saved.items():
      totals[name] = value

  def score_pose(self, pose: Pose, weights: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    """Score a whole pose.

    Args:
      pose: Structure to score.
      weights: Partial weight mapping passed through :func:`get_weights`.

    Returns:
      Weighted terms with their ``total``.
    """
    weights = get_weights(weights)
    hbond_set = self.setup_for_scoring(pose)
    emap = EnergyMap()
    for i, j in residue_pairs_in_range(pose, self.atomic_interaction_cutoff()):
      self.residue_pair_energy(pose.residue(i), pose.residue(j), pose, hbond_set, emap)
    if self.defines_intrares_energy(weights):
      for res in pose.residues:
        self.eval_intrares_energy(res, pose, hbond_set, emap)
    self.finalize_total_energy(hbond_set, emap)
    log_energies(emap, weights)
    return emap.weighted(weights)

  # -----------------------------
  # Minimization
  # -----------------------------

  def setup_for_minimizing_for_residue(self, rsd: Residue, pose: Pose, hbond_set: HBondSet, res_data_cache: MinimizationData) -> None:
    """Create the frozen residue data on first use; the atom count is always refreshed."""
    data = res_data_cache.get_data(HBOND_RES_DATA)
    if data is None:
      data = HBondResidueMinData(nneighbors=hbond_set.nbrs(rsd.seqpos))
      if self.options.bb_donor_acceptor_check and rsd.is_protein:
        data.bb_don_avail = not hbond_set.don_bbg_in_bb_bb_hbond(rsd.seqpos)
        data.bb_acc_avail = not hbond_set.acc_bbg_in_bb_bb_hbond(rsd.seqpos)
      res_data_cache.set_data(HBOND_RES_DATA, data)
    data.natoms = rsd.natoms

  def setup_for_minimizing_for_residue_pair(
    self,
    rsd1: Residue,
    rsd2: Residue,
    pose: Pose,
    res1_data_cache: MinimizationData,
    res2_data_cache: MinimizationData,
    pair_data_cache: MinimizationData,
  ) -> None:
    pair = pair_data_cache.get_data(HBOND_RESPAIR_DATA)
    if pair is None:
      pair = HBondResPairMinData()
      pair_data_cache.set_data(HBOND_RESPAIR_DATA, pair)
    pair.initialize(res1_data_cache.get_data(HBOND_RES_DATA), res2_data_cache.get_data(HBOND_RES_DATA))

  def _pair_min_data(self, rsd1: Residue, rsd2: Residue, pair_data: MinimizationData) -> Tuple[HBondResidueMinData, HBondResidueMinData]:
    pair = pair_data.get_data(HBOND_RESPAIR_DATA)
    assert pair is not None and pair.res1_data is not None and pair.res2_data is not None, "residue pair was not set up for minimizing"
    assert pair.natoms1 == rsd1.natoms and pair.natoms2 == rsd2.natoms, "minimization data does not match the residues"
    return pair.res1_data, pair.res2_data

  def residue_pair_energy_ext(self, rsd1: Residue, rsd2: Residue, pair_data: MinimizationData, hbond_set: HBondSet, emap, pose: Optional[Pose] = None) -> None:
    """Pair energy during minimization, using the backbone availability frozen at setup.

    Backbone/backbone bonds are scored here since :meth:`finalize_total_energy` skips them
    while minimizing.
    """
    if self._skip_pair(rsd1, rsd2):
      return
    r1_data, r2_data = self._pair_min_data(rsd1, rsd2, pair_data)
    if not self._in_interaction_range(rsd1, rsd2):
      return
    ssdep = get_ssdep_weight(rsd1, rsd2, hbond_set.secstruct, hbond_set.chains, self.options)
    near = hbond_set.bond_near_water(rsd1.seqpos, rsd2.seqpos)
    for don, acc, don_data, acc_data in ((rsd1, rsd2, r1_data, r2_data), (rsd2, rsd1, r2_data, r1_data)):
      identify_hbonds_1way(
        self.database,
        self.options,
        don,
        acc,
        don_data.nneighbors,
        acc_data.nneighbors,
        emap,
        exclude_bb=False,
        exclude_bsc=not acc_data.bb_acc_avail,
        exclude_scb=not don_data.bb_don_avail,
        exclude_sc=False,
        ssdep_weight=ssdep,
        bond_near_wat=near,
        membrane=hbond_set.membrane,
      )

  def _weight_coefficient(self, hit: HBondHit, weights: Mapping[str, float], don_rsd: Residue, acc_rsd: Residue) -> float:
    """Score weight multiplying ``energy * environment weight`` for one bond."""
    if self.options.water_hybrid_sf and (don_rsd.is_water or acc_rsd.is_water):
      return weights.get(HBOND_WAT, 0.0)
    is_intra = don_rsd.seqpos == acc_rsd.seqpos
    return hb_eval_type_weight(hit.hbe, weights, is_intra, self.options.put_intra_into_total)

  def _derivative_scale(self, hit: HBondHit, env_weight: float, weights: Mapping[str, float], don_rsd: Residue, acc_rsd: Residue) -> float:
    """Derivative of the weighted score with respect to the raw energy of one bond.

    The weight is the one the energy uses (ssdep on short range bb/bb only, the water
    buckets and entropy for water bonds, real neighbor counts for intra-residue bonds),
    so that gradients match the scored energy.
    """
    scale = env_weight * self._weight_coefficient(hit, weights, don_rsd, acc_rsd)
    if self.options.water_hybrid_sf and don_rsd.is_water != acc_rsd.is_water:
      scale -= weights.get(WAT_ENTROPY, 0.0) * WATER_ENTROPY_FUNC.dfunc(hit.energy)
    return scale

  def _add_membrane_weight_derivs(
    self,
    hit: HBondHit,
    weights: Mapping[str, float],
    don_rsd: Residue,
    acc_rsd: Residue,
    don_nb: int,
    acc_nb: int,
    membrane,
    don_atom_derivs: np.ndarray,
    acc_atom_derivs: np.ndarray,
  ) -> None:
    """Add the gradient of the depth dependent weight, which moves with the hydrogen and the acceptor."""
    coef = hit.energy * self._weight_coefficient(hit, weights, don_rsd, acc_rsd)
    if coef == 0.0:
      return
    h_xyz, a_xyz = don_rsd.xyz(hit.hatm), acc_rsd.xyz(hit.aatm)
    dw_h, dw_a = get_membrane_depth_dependent_weight_deriv(membrane, hit.hbe, don_nb, acc_nb, h_xyz, a_xyz, self.options)
    f2_h = coef * dw_h
    f2_a = coef * dw_a
    don_atom_derivs[hit.hatm, 0] += np.cross(f2_h, h_xyz)
    don_atom_derivs[hit.hatm, 1] += f2_h
    acc_atom_derivs[hit.aatm, 0] += np.cross(f2_a, a_xyz)
    acc_atom_derivs[hit.aatm, 1] += f2_a

  def hbond_derivs_1way(
    self,
    weights: Mapping[str, float],
    hbond_set: HBondSet,
    don_rsd: Residue,
    acc_rsd: Residue,
    don_nb: int,
    acc_nb: int,
    exclude_bb: bool,
    exclude_bsc: bool,
    exclude_scb: bool,
    exclude_sc: bool,
    don_atom_derivs: np.ndarray,
    acc_atom_derivs: np.ndarray,
  ) -> None:
    """Accumulate the f1/f2 vectors of every bond from ``don_rsd`` to ``acc_rsd``.

    Args:
      weights: Score weights.
      hbond_set: Current HBondSet.
      don_rsd: Donor residue.
      acc_rsd: Acceptor residue (may be ``don_rsd``).
      don_nb: Donor neighbor count.
      acc_nb: Acceptor neighbor count.
      exclude_bb: Skip backbone/backbone pairs.
      exclude_bsc: Skip side-chain donor / backbone acceptor pairs.
      exclude_scb: Skip backbone donor / side-chain acceptor pairs.
      exclude_sc: Skip side-chain/side-chain pairs.
      don_atom_derivs: ``(don_rsd.natoms, 2, 3)`` array, added to.
      acc_atom_derivs: ``(acc_rsd.natoms, 2, 3)`` array, added to.
    """
    is_intra = don_rsd.seqpos == acc_rsd.seqpos
    ssdep = 1.0 if is_intra else get_ssdep_weight(don_rsd, acc_rsd, hbond_set.secstruct, hbond_set.chains, self.options)
    near = hbond_set.bond_near_water(don_rsd.seqpos, acc_rsd.seqpos)
    # the depth weight follows the hydrogen and acceptor unless water scoring pins the weight to 1
    depth_weighted = self.options.membrane and hbond_set.membrane is not None and not (self.options.water_hybrid_sf and near)
    for hit in iter_hbonds_1way(self.database, self.options, don_rsd, acc_rsd, exclude_bb, exclude_bsc, exclude_scb, exclude_sc, evaluate_derivative=True):
      env_weight = hbond_weight(self.options, hit, don_rsd, acc_rsd, don_nb, acc_nb, ssdep, near, hbond_set.membrane)
      scale = self._derivative_scale(hit, env_weight, weights, don_rsd, acc_rsd)
      if scale != 0.0:
        assigner = HBDerivAssigner(hit.hbe, don_rsd, hit.hatm, acc_rsd, hit.aatm)
        accumulate_derivs(assigner, hit.derivs, scale, don_rsd, acc_rsd, don_atom_derivs, acc_atom_derivs)
      if depth_weighted:
        self._add_membrane_weight_derivs(hit, weights, don_rsd, acc_rsd, don_nb, acc_nb, hbond_set.membrane, don_atom_derivs, acc_atom_derivs)

  def eval_residue_pair_derivatives(
    self,
    rsd1: Residue,
    rsd2: Residue,
    pair_data: MinimizationData,
    pose: Pose,
    hbond_set: HBondSet,
    weights: Mapping[str, float],
    r1_atom_derivs: np.ndarray,
    r2_atom_derivs: np.ndarray,
  ) -> None:
    """Derivatives matching :meth:`residue_pair_energy_ext`."""
    if self._skip_pair(rsd1, rsd2):
      return
    r1_data, r2_data = self._pair_min_data(rsd1, rsd2, pair_data)
    if not self._in_interaction_range(rsd1, rsd2):
      return
    for don, acc, don_data, acc_data, don_derivs, acc_derivs in (
      (rsd1, rsd2, r1_data, r2_data, r1_atom_derivs, r2_atom_derivs),
      (rsd2, rsd1, r2_data, r1_data, r2_atom_derivs, r1_atom_derivs),
    ):
      self.hbond_derivs_1way(
        weights,
        hbond_set,
        don,
        acc,
        don_data.nneighbors,
        acc_data.nneighbors,
        False,
        not acc_data.bb_acc_avail,
        not don_data.bb_don_avail,
        False,
        don_derivs,
        acc_derivs,
      )

  def eval_intrares_derivatives(self, rsd: Residue, pose: Pose, hbond_set: HBondSet, weights: Mapping[str, float], atom_derivs: np.ndarray) -> None:
    """Derivatives matching :meth:`eval_intrares_energy`."""
    if not calculate_intra_res_hbonds(rsd, self.options):
      return
    nb = hbond_set.nbrs(rsd.seqpos)
    self.hbond_derivs_1way(weights, hbond_set, rsd, rsd, nb, nb, False, False, False, False, atom_derivs, atom_derivs)

  # -----------------------------
  # Packing
  # -----------------------------

  def _trie_container(self, res1: Residue, res2: Residue, hbond_set: HBondSet, weights: Mapping[str, float]) -> HBondsTrieVsTrieCachedDataContainer:
    return HBondsTrieVsTrieCachedDataContainer(
      weights=weights,
      res1=res1,
      res2=res2,
      rotamer_seq_sep=res1.polymeric_oriented_sequence_distance(res2),
      res1_nb=hbond_set.nbrs(res1.seqpos),
      res2_nb=hbond_set.nbrs(res2.seqpos),
      ssdep_weight=get_ssdep_weight(res1, res2, hbond_set.secstruct, hbond_set.chains, self.options),
      bond_near_wat=hbond_set.bond_near_water(res1.seqpos, res2.seqpos),
      membrane=hbond_set.membrane,
    )

  def _rotamer_set_trie(self, pose: Pose, rotset: RotamerSet, hbond_set: HBondSet) -> RotamerTrie:
    trie = rotset.get_trie(HBOND_TRIE)
    if trie is None:
      self.prepare_rotamers_for_packing(pose, rotset, hbond_set)
      trie = rotset.get_trie(HBOND_TRIE)
    return trie

  def evaluate_rotamer_pair_energies(
    self,
    set1: RotamerSet,
    set2: RotamerSet,
    pose: Pose,
    hbond_set: HBondSet,
    weights: Mapping[str, float],
    energy_table: np.ndarray,
  ) -> None:
    """Add the weighted energy of every rotamer pair of two sets into ``energy_table[rot1, rot2]``.

    Args:
      set1: Rotamers of the first position.
      set2: Rotamers of the second position.
      pose: Structure being packed.
      hbond_set: HBondSet from :meth:`setup_for_packing`.
      weights: Score weights.
      energy_table: Array of shape ``(set1.num_rotamers, set2.num_rotamers)``, added to.
    """
    if set1.num_rotamers == 0 or set2.num_rotamers == 0:
      return
    res1, res2 = set1.rotamer(0), set2.rotamer(0)
    if self._skip_pair(res1, res2):
      return
    trie1 = self._rotamer_set_trie(pose, set1, hbond_set)
    trie2 = self._rotamer_set_trie(pose, set2, hbond_set)
    evaluator = HBondTrieEvaluator(self.database, self.options, self._trie_container(res1, res2, hbond_set, weights))
    count_pair = HBCountPairFunction(exclude_bb_bb=not self.options.decompose_bb_hb_into_pair_energies)
    trie_vs_trie(trie1, trie2, count_pair, evaluator, energy_table, self.atomic_interaction_cutoff())

  def evaluate_rotamer_background_energies(
    self,
    rotset: RotamerSet,
    rsd: Residue,
    pose: Pose,
    hbond_set: HBondSet,
    weights: Mapping[str, float],
    tries: Optional[TrieCollection],
    energy_vector: np.ndarray,
  ) -> None:
    """Add the weighted energy of every rotamer of ``rotset`` with the fixed residue ``rsd``.

    Nothing is added when ``tries`` holds no trie for ``rsd``.
    """
    if tries is None or rotset.num_rotamers == 0:
      return
    trie2 = tries.get_trie(rsd.seqpos)
    if trie2 is None:
      logger.debug("No background trie for residue %d, skipping its rotamer energies.", rsd.seqpos)
      return
    res1 = rotset.rotamer(0)
    if self._skip_pair(res1, rsd):
      return
    trie1 = self._rotamer_set_trie(pose, rotset, hbond_set)
    evaluator = HBondTrieEvaluator(self.database, self.options, self._trie_container(res1, rsd, hbond_set, weights))
    count_pair = HBCountPairFunction(exclude_bb_bb=not self.options.decompose_bb_hb_into_pair_energies)
    trie_vs_path(trie1, trie2, count_pair, evaluator, energy_vector, self.atomic_interaction_cutoff())
