"""
Constants shared by the hydrogen-bond energy method.
"""

from typing import Dict, Tuple

## Residue Codes
# Standard amino acids by three letter code
STANDARD_AAs = {
  "ALA",
  "ARG",
  "ASN",
  "ASP",
  "CYS",
  "GLN",
  "GLU",
  "GLY",
  "HIS",
  "ILE",
  "LEU",
  "LYS",
  "MET",
  "PHE",
  "PRO",
  "SER",
  "THR",
  "TRP",
  "TYR",
  "VAL",
}
# Residue codes for standard DNA residues
NUC_DNA_CODES = {"DA", "DT", "DC", "DG"}
# Name used for water by the water-specific scoring
WATER_NAME = "TP3"
# Names rewritten while reading structure files
RESIDUE_ALIASES: Dict[str, str] = {"HOH": WATER_NAME, "WAT": WATER_NAME, "HIE": "HIS", "HID": "HIS", "CYX": "CYS"}
# Atom names rewritten while reading structure files
ATOM_ALIASES: Dict[str, str] = {"H1": "H", "HN": "H", "O1P": "OP1", "O2P": "OP2"}

## Distances
# Maximum donor hydrogen to acceptor distance for a hydrogen bond
MAX_R = 3.0
MAX_R2 = MAX_R * MAX_R
# Longest polar hydrogen to heavy atom bond assumed by the interaction cutoff
MAX_HEAVY_H_BOND = 1.35
# Radius of the neighbor graph used for environment weighting
NEIGHBOR_CUTOFF = 10.0

## Score types
HBOND_SR_BB = "hbond_sr_bb"
HBOND_LR_BB = "hbond_lr_bb"
HBOND_BB_SC = "hbond_bb_sc"
HBOND_SR_BB_SC = "hbond_sr_bb_sc"
HBOND_LR_BB_SC = "hbond_lr_bb_sc"
HBOND_SC = "hbond_sc"
HBOND_INTRA = "hbond_intra"
HBOND_WAT = "hbond_wat"
WAT_ENTROPY = "wat_entropy"
HBOND = "hbond"

SCORE_TYPES: Tuple[str, ...] = (
  HBOND_SR_BB,
  HBOND_LR_BB,
  HBOND_BB_SC,
  HBOND_SR_BB_SC,
  HBOND_LR_BB_SC,
  HBOND_SC,
  HBOND_INTRA,
  HBOND_WAT,
  WAT_ENTROPY,
  HBOND,
)

# Weights used when none are given, the standard full atom weight set
DEFAULT_WEIGHTS: Dict[str, float] = {
  HBOND_SR_BB: 1.0,
  HBOND_LR_BB: 1.0,
  HBOND_BB_SC: 1.0,
  HBOND_SR_BB_SC: 0.0,
  HBOND_LR_BB_SC: 0.0,
  HBOND_SC: 1.0,
  HBOND_INTRA: 0.0,
  HBOND_WAT: 0.0,
  WAT_ENTROPY: 0.0,
  HBOND: 0.0,
}

## Water scoring
# Raw energy window of the smoothed step used by the water entropy term
WATER_ENTROPY_STEP: Tuple[float, float] = (-0.55, -0.45)
