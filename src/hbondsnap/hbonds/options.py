"""
Switches controlling the hydrogen-bond energy method.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping


@dataclass(frozen=True)
class HBondOptions:
  """Immutable configuration shared by the energy method, its HBondSet and its tries.

  Attributes:
    use_hb_env_dep: Scale energies by the burial of the donor and acceptor residues.
    bb_donor_acceptor_check: Enforce the bb/sc exclusion rule.
    decompose_bb_hb_into_pair_energies: Score bb/bb bonds in pair energies instead of the finalize step.
    exclude_DNA_DNA: Skip pairs where both residues are DNA.
    max_hb_energy: Raw energies at or above this value are not hydrogen bonds.
    length_dependent_srbb: Scale short range bb/bb bonds inside helices by helix length.
    length_dependent_srbb_lowscale: Scale used for helices of ``minlength`` residues or fewer.
    length_dependent_srbb_highscale: Scale used for helices of ``maxlength`` residues or more.
    length_dependent_srbb_minlength: Helix length where the interpolation starts.
    length_dependent_srbb_maxlength: Helix length where the interpolation ends.
    mb_hbond: Membrane depth weighting with an implicit membrane.
    mp_hbond: Membrane depth weighting with a membrane framework pose.
    membrane_core_weight: Weight of a hydrogen bond fully buried in the membrane core.
    water_hybrid_sf: Hybrid water scoring (water buckets, entropy term, no burial weight near water).
    water_proximity_cutoff: Heavy atom distance at which a residue counts as near a water.
    intra_res_hbonds: Score hydrogen bonds inside a residue.
    put_intra_into_total: Send intra-residue energies to ``hbond`` instead of ``hbond_intra``.
    params_database_tag: Sub-directory of the parameter library holding the tables.
  """
  use_hb_env_dep: bool = True
  bb_donor_acceptor_check: bool = True
  decompose_bb_hb_into_pair_energies: bool = False
  exclude_DNA_DNA: bool = True
  max_hb_energy: float = 0.0
  length_dependent_srbb: bool = False
  length_dependent_srbb_lowscale: float = 0.5
  length_dependent_srbb_highscale: float = 2.0
  length_dependent_srbb_minlength: int = 4
  length_dependent_srbb_maxlength: int = 17
  mb_hbond: bool = False
  mp_hbond: bool = False
  membrane_core_weight: float = 2.0
  water_hybrid_sf: bool = False
  water_proximity_cutoff: float = 3.5
  intra_res_hbonds: bool = False
  put_intra_into_total: bool = False
  params_database_tag: str = "default"

  def __post_init__(self):
    if self.length_dependent_srbb_maxlength <= self.length_dependent_srbb_minlength:
      raise ValueError("length_dependent_srbb_maxlength must be greater than length_dependent_srbb_minlength")
    if self.water_proximity_cutoff <= 0:
      raise ValueError("water_proximity_cutoff must be positive")

  @property
  def membrane(self) -> bool:
    """Whether either membrane weighting mode is on."""
    return self.mb_hbond or self.mp_hbond

  @classmethod
  def from_dict(cls, values: Mapping[str, Any]) -> "HBondOptions":
    """Build options from a plain mapping, rejecting unknown keys.

    Args:
      values: Option name to value.

    Returns:
      A new HBondOptions with the remaining fields at their defaults.
    """
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
      raise ValueError(f"Unknown hbond option(s): {', '.join(unknown)}")
    return cls(**dict(values))

  def with_changes(self, **changes: Any) -> "HBondOptions":
    return replace(self, **changes)
