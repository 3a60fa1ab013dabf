"""
Hydrogen-bond classification: chemical types, sequence separation classes, evaluation
tuples, weight types and the score buckets each weight type feeds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from hbondsnap.constants import (
  HBOND,
  HBOND_BB_SC,
  HBOND_INTRA,
  HBOND_LR_BB,
  HBOND_LR_BB_SC,
  HBOND_SC,
  HBOND_SR_BB,
  HBOND_SR_BB_SC,
)

# -----------------------------
# Chemical types
# -----------------------------
# PBA: protein backbone amide, CXA: carboxamide, CXL: carboxylate, IMD: imidazole,
# IND: indole, AMO: amine, GDE/GDH: guanidinium epsilon/eta, AHX: aromatic hydroxyl,
# HXL: aliphatic hydroxyl, H2O: water, PCA_DNA: DNA phosphate, NAB: nucleic base
# nitrogen, NAO: nucleic base carbonyl.
DONOR_TYPES = ("PBA", "CXA", "IMD", "IND", "AMO", "GDE", "GDH", "AHX", "HXL", "H2O", "NAB")
ACCEPTOR_TYPES = ("PBA", "CXA", "CXL", "IMD", "AHX", "HXL", "H2O", "PCA_DNA", "NAB", "NAO")
NONE_TYPE = "NONE"
WILDCARD = "*"

# Hybridization of each acceptor type, it decides the base geometry and the chi term
ACCEPTOR_HYBRIDIZATION: Dict[str, str] = {
  "PBA": "SP2",
  "CXA": "SP2",
  "CXL": "SP2",
  "IMD": "RING",
  "AHX": "SP3",
  "HXL": "SP3",
  "H2O": "SP3",
  "PCA_DNA": "SP2",
  "NAB": "RING",
  "NAO": "SP2",
}

# Backbone amide donors and acceptors are the only chemistry counted as backbone
# when choosing the score bucket.
BACKBONE_CHEM_TYPE = "PBA"

# -----------------------------
# Sequence separation classes
# -----------------------------
SEP_CLASSES: Dict[int, str] = {
  -4: "M4helix",
  -3: "M3turn",
  -2: "M2turn",
  -1: "PM1",
  1: "PM1",
  2: "P2bulge",
  3: "P3turn",
  4: "P4helix",
}
SEP_OTHER = "other"

# -----------------------------
# Weight types
# -----------------------------
SR_BB = "SR_BB"
LR_BB = "LR_BB"
SR_BB_SC = "SR_BB_SC"
LR_BB_SC = "LR_BB_SC"
SC = "SC"
INTRA = "INTRA"

# Score types an energy of each weight type is added to
WEIGHT_TYPE_BUCKETS: Dict[str, Tuple[str, ...]] = {
  SR_BB: (HBOND_SR_BB, HBOND),
  LR_BB: (HBOND_LR_BB, HBOND),
  SR_BB_SC: (HBOND_BB_SC, HBOND_SR_BB_SC, HBOND),
  LR_BB_SC: (HBOND_BB_SC, HBOND_LR_BB_SC, HBOND),
  SC: (HBOND_SC, HBOND),
}


@dataclass(frozen=True)
class HBEvalTuple:
  """Classification of one donor/acceptor pair.

  Attributes:
    don_type: Donor chemical type of the donor heavy atom.
    acc_type: Acceptor chemical type.
    seq_sep: ``acceptor seqpos - donor seqpos`` for residues on the same polymer chain, else None.
  """
  don_type: str
  acc_type: str
  seq_sep: Optional[int] = None

  @property
  def sep_class(self) -> str:
    # separation classes only distinguish backbone/backbone geometry
    if self.don_type != BACKBONE_CHEM_TYPE or self.acc_type != BACKBONE_CHEM_TYPE or self.seq_sep is None:
      return SEP_OTHER
    return SEP_CLASSES.get(self.seq_sep, SEP_OTHER)

  @property
  def eval_type(self) -> Tuple[str, str, str]:
    return (self.don_type, self.acc_type, self.sep_class)

  @property
  def weight_type(self) -> str:
    return get_hbond_weight_type(self)

  @property
  def hybridization(self) -> str:
    return ACCEPTOR_HYBRIDIZATION.get(self.acc_type, "NONE")

  @classmethod
  def from_residues(cls, don_rsd, datm: int, acc_rsd, aatm: int) -> "HBEvalTuple":
    """Classify a donor heavy atom of ``don_rsd`` against an acceptor atom of ``acc_rsd``."""
    return cls(
      don_type=don_rsd.atoms[datm].don_type or NONE_TYPE,
      acc_type=acc_rsd.atoms[aatm].acc_type or NONE_TYPE,
      seq_sep=don_rsd.polymeric_oriented_sequence_distance(acc_rsd),
    )


def get_hbond_weight_type(hbe: HBEvalTuple) -> str:
  """Weight type of an inter-residue hydrogen bond.

  Backbone/backbone bonds within four residues on one chain are short range, mixed
  backbone/side-chain bonds within two residues are short range.
  """
  don_bb = hbe.don_type == BACKBONE_CHEM_TYPE
  acc_bb = hbe.acc_type == BACKBONE_CHEM_TYPE
  sep = hbe.seq_sep
  if don_bb and acc_bb:
    return SR_BB if sep is not None and abs(sep) <= 4 else LR_BB
  if don_bb or acc_bb:
    return SR_BB_SC if sep is not None and abs(sep) <= 2 else LR_BB_SC
  return SC


def hbond_buckets(hbe: HBEvalTuple, is_intra: bool, put_intra_into_total: bool = False) -> Tuple[str, ...]:
  """Score types that receive the energy of one hydrogen bond."""
  if is_intra:
    return (HBOND,) if put_intra_into_total else (HBOND_INTRA,)
  return WEIGHT_TYPE_BUCKETS[get_hbond_weight_type(hbe)]


def increment_hbond_energy(hbe: HBEvalTuple, emap, energy: float, is_intra: bool = False, put_intra_into_total: bool = False) -> None:
  """Add ``energy`` to every score type its weight type feeds."""
  for name in hbond_buckets(hbe, is_intra, put_intra_into_total):
    emap[name] += energy


def hb_eval_type_weight(hbe: HBEvalTuple, weights: Mapping[str, float], is_intra: bool = False, put_intra_into_total: bool = False) -> float:
  """Total weight an energy of this type receives, the sum over the score types it is added to.

  Args:
    hbe: Hydrogen bond classification.
    weights: Weights keyed by score type.
    is_intra: Whether donor and acceptor are the same residue.
    put_intra_into_total: Whether intra-residue energies go to ``hbond``.

  Returns:
    The weight to multiply a raw energy by so that it matches the weighted energy map.
  """
  return sum(weights.get(name, 0.0) for name in hbond_buckets(hbe, is_intra, put_intra_into_total))
