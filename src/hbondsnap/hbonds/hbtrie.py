"""
Hydrogen-bond payloads for rotamer tries: the per atom data, the count-pair rule, the data
cached for one trie-vs-trie call and the atom pair energy evaluated at the trie leaves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np

from hbondsnap.constants import MAX_R2
from hbondsnap.hbonds.database import HBondDatabase
from hbondsnap.hbonds.geom import hb_energy_deriv
from hbondsnap.hbonds.identify import environment_weight, weighted_hbond_energy
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import NONE_TYPE, HBEvalTuple
from hbondsnap.trie.rotamer_trie import RotamerDescriptor

Vec3 = Tuple[float, float, float]
_ORIGIN: Vec3 = (0.0, 0.0, 0.0)


def _vec(xyz: np.ndarray) -> Vec3:
  return (float(xyz[0]), float(xyz[1]), float(xyz[2]))


@dataclass(frozen=True, order=True)
class HBAtom:
  """Atom stored in a hydrogen-bond trie.

  Hydrogens carry their donor heavy atom as ``base_xyz`` and its chemical type; acceptors
  carry both bases and their own chemical type. Other heavy atoms only shape the trie.

  Attributes:
    xyz: Position.
    is_hydrogen: Polar hydrogen.
    is_acceptor: Acceptor atom.
    is_placeholder: Stand-in atom of a rotamer without polar atoms.
    base_xyz: Donor heavy atom of a hydrogen, acceptor base of an acceptor.
    base2_xyz: Acceptor second base.
    don_type: Donor chemical type of a hydrogen's heavy atom.
    acc_type: Acceptor chemical type.
    atom_index: Index of the atom in its residue.
  """
  xyz: Vec3
  is_hydrogen: bool = False
  is_acceptor: bool = False
  is_placeholder: bool = False
  base_xyz: Vec3 = _ORIGIN
  base2_xyz: Vec3 = _ORIGIN
  don_type: str = NONE_TYPE
  acc_type: str = NONE_TYPE
  atom_index: int = 0

  @property
  def coord(self) -> np.ndarray:
    return np.asarray(self.xyz, dtype=float)


@dataclass(frozen=True, order=True)
class HBCPData:
  """Count-pair data of a trie atom.

  Attributes:
    is_sc: The atom is not a backbone atom.
    avoid_sc_hbonds: Backbone atom already claimed by a backbone/backbone bond.
  """
  is_sc: bool = True
  avoid_sc_hbonds: bool = False


class HBCountPairFunction:
  """Decides whether a pair of trie atoms is scored.

  Backbone/backbone pairs only count when they are not scored elsewhere; a backbone atom
  already claimed by a backbone/backbone bond does not pair with side chains.
  """

  def __init__(self, exclude_bb_bb: bool = True):
    self.exclude_bb_bb = exclude_bb_bb

  def __call__(self, cp1: HBCPData, cp2: HBCPData) -> bool:
    if not cp1.is_sc and not cp2.is_sc:
      return not self.exclude_bb_bb
    if cp1.is_sc and cp2.is_sc:
      return True
    return not (cp1.avoid_sc_hbonds or cp2.avoid_sc_hbonds)


@dataclass
class HBondsTrieVsTrieCachedDataContainer:
  """Everything the leaf energy needs that does not change across one residue pair.

  Attributes:
    weights: Score weights.
    res1: A residue standing for the first trie's position.
    res2: A residue standing for the second trie's position.
    rotamer_seq_sep: ``res2 - res1`` on the same polymer chain, else None.
    res1_nb: Neighbor count of the first position.
    res2_nb: Neighbor count of the second position.
    ssdep_weight: Helix-length scale of short range backbone/backbone bonds.
    bond_near_wat: Either position is next to a water.
    membrane: Membrane geometry, or None.
  """
  weights: Mapping[str, float]
  res1: object = None
  res2: object = None
  rotamer_seq_sep: Optional[int] = None
  res1_nb: int = 1
  res2_nb: int = 1
  ssdep_weight: float = 1.0
  bond_near_wat: bool = False
  membrane: object = None


class HBondTrieEvaluator:
  """Leaf energy of a trie-vs-trie walk: the weighted energy of one acceptor / hydrogen pair.

  The first atom always comes from the trie of ``container.res1``.
  """

  def __init__(self, database: HBondDatabase, options: HBondOptions, container: HBondsTrieVsTrieCachedDataContainer):
    self.database = database
    self.options = options
    self.container = container
    self.res1_is_wat = bool(getattr(container.res1, "is_water", False))
    self.res2_is_wat = bool(getattr(container.res2, "is_water", False))

  def __call__(self, at1: HBAtom, at2: HBAtom, d2: float) -> float:
    if at1.is_placeholder or at2.is_placeholder:
      return 0.0
    if d2 > MAX_R2:
      return 0.0
    c = self.container
    sep = c.rotamer_seq_sep
    if at1.is_hydrogen and at2.is_acceptor:
      return self._pair(at1, at2, sep, c.res1_nb, c.res2_nb, self.res1_is_wat, self.res2_is_wat)
    if at2.is_hydrogen and at1.is_acceptor:
      return self._pair(at2, at1, None if sep is None else -sep, c.res2_nb, c.res1_nb, self.res2_is_wat, self.res1_is_wat)
    return 0.0

  def _pair(self, h: HBAtom, a: HBAtom, sep: Optional[int], don_nb: int, acc_nb: int, don_is_wat: bool, acc_is_wat: bool) -> float:
    hbe = HBEvalTuple(h.don_type, a.acc_type, sep)
    energy, _ = hb_energy_deriv(
      self.database, self.options, hbe, np.asarray(h.base_xyz), h.coord, a.coord, np.asarray(a.base_xyz), np.asarray(a.base2_xyz)
    )
    if energy >= self.options.max_hb_energy:
      return 0.0
    c = self.container
    weight = environment_weight(self.options, hbe, don_nb, acc_nb, h.coord, a.coord, c.ssdep_weight, c.bond_near_wat, c.membrane)
    return weighted_hbond_energy(self.options, hbe, energy, weight, c.weights, don_is_wat, acc_is_wat)


def create_rotamer_descriptor(res, options: HBondOptions, hbond_set, rotamer_id: int = 0) -> RotamerDescriptor:
  """Describe the hydrogen-bonding atoms of one rotamer for trie insertion.

  Acceptors, polar hydrogens and their donor heavy atoms are kept. Heavy atoms are emitted
  in residue order, each followed by its kept hydrogens. A rotamer without any of these
  keeps its first atom as a placeholder so that it still owns a trie path.

  Args:
    res: The rotamer.
    options: Hydrogen-bond options.
    hbond_set: Current HBondSet, for backbone claims.
    rotamer_id: Id of the rotamer within its set.

  Returns:
    The RotamerDescriptor.
  """
  keep = [False] * res.natoms
  for i in res.accpt_pos:
    keep[i] = True
  for h in res.hpos_polar:
    keep[h] = True
    keep[res.atom_base(h)] = True

  descriptor = RotamerDescriptor(rotamer_id)
  if not any(keep):
    if res.natoms:
      cp = HBCPData(is_sc=not res.atom_is_backbone(0), avoid_sc_hbonds=False)
      descriptor.add_atom(HBAtom(_vec(res.xyz(0)), is_placeholder=True), cp)
    return descriptor

  check = options.bb_donor_acceptor_check and res.is_protein
  acceptors = set(res.accpt_pos)
  polar = set(res.hpos_polar)
  for heavy, hydrogens in res.heavy_atoms_with_hydrogens():
    if keep[heavy]:
      is_sc = not res.atom_is_backbone(heavy)
      if heavy in acceptors:
        atom = HBAtom(
          _vec(res.xyz(heavy)),
          is_acceptor=True,
          base_xyz=_vec(res.xyz(res.atom_base(heavy))),
          base2_xyz=_vec(res.xyz(res.abase2(heavy))),
          acc_type=res.atoms[heavy].acc_type or NONE_TYPE,
          atom_index=heavy,
        )
        avoid = check and not is_sc and hbond_set.acc_bbg_in_bb_bb_hbond(res.seqpos)
      else:
        atom = HBAtom(_vec(res.xyz(heavy)), atom_index=heavy)
        avoid = False
      descriptor.add_atom(atom, HBCPData(is_sc=is_sc, avoid_sc_hbonds=avoid))
    for h in hydrogens:
      if h not in polar:
        continue
      is_sc = not res.atom_is_backbone(h)
      atom = HBAtom(
        _vec(res.xyz(h)),
        is_hydrogen=True,
        base_xyz=_vec(res.xyz(heavy)),
        don_type=res.atoms[heavy].don_type or NONE_TYPE,
        atom_index=h,
      )
      avoid = check and not is_sc and hbond_set.don_bbg_in_bb_bb_hbond(res.seqpos)
      descriptor.add_atom(atom, HBCPData(is_sc=is_sc, avoid_sc_hbonds=avoid))
  return descriptor
