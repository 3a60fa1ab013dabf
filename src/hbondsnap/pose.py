"""
A small structural model providing what the hydrogen-bond energy method reads from a structure:
coordinates, donor/acceptor chemistry, backbone flags, covalent bases, neighbor counts and
optional membrane geometry. Structures are read with Biopython.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from Bio.PDB import MMCIFParser, PDBParser

from hbondsnap.constants import ATOM_ALIASES, NEIGHBOR_CUTOFF, NUC_DNA_CODES, RESIDUE_ALIASES, STANDARD_AAs, WATER_NAME
from hbondsnap.hbonds.types import ACCEPTOR_HYBRIDIZATION
from hbondsnap.log import logger


class UnknownResidueError(KeyError):
  """Raised for a residue code the chemistry table does not know."""


class ResidueTypeTableError(ValueError):
  """Raised when the residue chemistry table is missing or malformed."""


# -----------------------------
# Residue chemistry table
# -----------------------------


@dataclass(frozen=True)
class AtomType:
  """Hydrogen-bond chemistry of one named atom in a residue type.

  Attributes:
    name: Atom name.
    is_backbone: Whether the atom belongs to the polymer backbone.
    role: D (donor heavy atom), A (acceptor), DA (both), H (polar hydrogen) or X (other).
    base: Name of the covalent parent used as donor heavy atom or acceptor base.
    base2: Candidate names for the acceptor's second base, first present wins.
    don_type: Donor chemical type name.
    acc_type: Acceptor chemical type name.
  """
  name: str
  is_backbone: bool
  role: str
  base: Optional[str]
  base2: Tuple[str, ...]
  don_type: Optional[str]
  acc_type: Optional[str]


@dataclass
class ResidueType:
  name: str
  kind: str
  atoms: Dict[str, AtomType] = field(default_factory=dict)


_RESIDUE_TYPES: Optional[Dict[str, ResidueType]] = None


def _default_hbond_root() -> Path:
  """Return the path to the bundled hydrogen-bond parameter library."""
  return Path(__file__).resolve().parent / "hbond_lib"


def _field(value: str) -> Optional[str]:
  return None if value == "-" else value


def _table_error(path: Path, lineno: int, reason: str):
  message = f"{path}:{lineno}: {reason}"
  logger.critical("Malformed residue chemistry table, %s", message)
  raise ResidueTypeTableError(message)


def load_residue_types(path: Optional[Path] = None) -> Dict[str, ResidueType]:
  """Load the per residue hydrogen-bond chemistry table.

  Args:
    path: Optional explicit path, defaults to the bundled ``residue_types.txt``.

  Returns:
    Mapping of residue name to ResidueType.

  Raises:
    ResidueTypeTableError: If the table is missing or a line cannot be parsed.
  """
  global _RESIDUE_TYPES
  if path is None and _RESIDUE_TYPES is not None:
    return _RESIDUE_TYPES
  table_path = _default_hbond_root() / "residue_types.txt" if path is None else Path(path)

  if not table_path.exists():
    logger.critical("Missing residue chemistry table %s", table_path)
    raise ResidueTypeTableError(f"Missing residue chemistry table {table_path}")

  types: Dict[str, ResidueType] = {}
  shared: List[AtomType] = []
  with open(table_path, "r") as f:
    for lineno, line in enumerate(f, start=1):
      line = line.strip()
      if not line or line.startswith("#"):
        continue
      parts = line.split()
      if parts[0] == "RES" and len(parts) == 3:
        types[parts[1]] = ResidueType(parts[1], parts[2])
      elif parts[0] == "ATOM" and len(parts) == 9:
        base2 = _field(parts[6])
        atom_type = AtomType(
          name=parts[2],
          is_backbone=parts[3] == "Y",
          role=parts[4],
          base=_field(parts[5]),
          base2=tuple(base2.split("/")) if base2 else (),
          don_type=_field(parts[7]),
          acc_type=_field(parts[8]),
        )
        if parts[1] == "*":
          shared.append(atom_type)
        elif parts[1] in types:
          types[parts[1]].atoms[atom_type.name] = atom_type
        else:
          _table_error(table_path, lineno, f"ATOM line for undeclared residue {parts[1]}")
      else:
        _table_error(table_path, lineno, f"cannot parse line {line!r}")

  for res_type in types.values():
    if res_type.kind == "protein":
      for atom_type in shared:
        res_type.atoms.setdefault(atom_type.name, atom_type)

  if path is None:
    _RESIDUE_TYPES = types
  return types


def representative_atom_name(res_name: str) -> str:
  """Name of the atom used as a residue's center for neighbor counting.

  Args:
    res_name: Three letter residue code.

  Returns:
    CA for glycine, CB for other amino acids, O for water and C1' for DNA.

  Raises:
    UnknownResidueError: If the code is not a known residue.
  """
  if res_name == "GLY":
    return "CA"
  if res_name in STANDARD_AAs:
    return "CB"
  if res_name == WATER_NAME:
    return "O"
  if res_name in NUC_DNA_CODES:
    return "C1'"
  logger.critical("Unrecognized residue code %s while looking up its representative atom.", res_name)
  raise UnknownResidueError(res_name)


# -----------------------------
# Atoms, residues and poses
# -----------------------------


@dataclass(eq=False)
class Atom:
  """One atom of a residue.

  Attributes:
    name: Atom name.
    element: Element symbol.
    xyz: Cartesian coordinate in Angstrom.
    is_backbone: Backbone flag from the chemistry table.
    is_hydrogen: Whether the atom is a hydrogen.
    is_donor: Whether the atom is a donor heavy atom.
    is_acceptor: Whether the atom is an acceptor.
    base: Index of the covalent parent (donor heavy atom for hydrogens, acceptor base for acceptors).
    base2: Index of the acceptor's second base.
    don_type: Donor chemical type name.
    acc_type: Acceptor chemical type name.
    hybridization: SP2, SP3 or RING for acceptors, NONE otherwise.
  """
  name: str
  element: str
  xyz: np.ndarray
  is_backbone: bool = False
  is_hydrogen: bool = False
  is_donor: bool = False
  is_acceptor: bool = False
  base: Optional[int] = None
  base2: Optional[int] = None
  don_type: Optional[str] = None
  acc_type: Optional[str] = None
  hybridization: str = "NONE"


@dataclass(eq=False)
class Residue:
  """A residue with its hydrogen-bond chemistry resolved to atom indices.

  Attributes:
    name: Three letter code.
    kind: protein, dna, water or other.
    seqpos: 0-based position in the pose.
    chain: Chain identifier.
    resnum: Residue number from the structure file.
    atoms: Ordered atoms.
    nbr_atom: Index of the representative atom.
    nbr_radius: Distance from the representative atom to the furthest heavy atom.
  """
  name: str
  kind: str
  seqpos: int
  chain: str
  resnum: int
  atoms: List[Atom]
  nbr_atom: int = 0
  nbr_radius: float = 0.0
  hpos_polar: List[int] = field(init=False, default_factory=list)
  accpt_pos: List[int] = field(init=False, default_factory=list)
  attached_h: Dict[int, List[int]] = field(init=False, default_factory=dict)
  _index: Dict[str, int] = field(init=False, repr=False, default_factory=dict)

  def __post_init__(self):
    self._index = {atom.name: i for i, atom in enumerate(self.atoms)}
    self.hpos_polar = []
    self.accpt_pos = []
    self.attached_h = {}
    for i, atom in enumerate(self.atoms):
      if atom.is_hydrogen and atom.base is not None:
        self.attached_h.setdefault(atom.base, []).append(i)
        if self.atoms[atom.base].is_donor:
          self.hpos_polar.append(i)
      if atom.is_acceptor:
        if atom.base is None or atom.base2 is None:
          logger.debug("Acceptor %s of %s %d lacks base atoms, ignoring it.", atom.name, self.name, self.resnum)
          continue
        self.accpt_pos.append(i)

  @property
  def is_protein(self) -> bool:
    return self.kind == "protein"

  @property
  def is_dna(self) -> bool:
    return self.kind == "dna"

  @property
  def is_water(self) -> bool:
    return self.kind == "water"

  @property
  def natoms(self) -> int:
    return len(self.atoms)

  @property
  def heavy_atoms(self) -> List[int]:
    return [i for i, atom in enumerate(self.atoms) if not atom.is_hydrogen]

  @property
  def nheavyatoms(self) -> int:
    return len(self.heavy_atoms)

  def heavy_atoms_with_hydrogens(self) -> List[Tuple[int, List[int]]]:
    """Heavy atoms in order, each with the indices of the hydrogens bonded to it."""
    return [(i, self.attached_h.get(i, [])) for i in self.heavy_atoms]

  @property
  def nbr_xyz(self) -> np.ndarray:
    return self.atoms[self.nbr_atom].xyz

  @property
  def coords(self) -> np.ndarray:
    return np.array([atom.xyz for atom in self.atoms], dtype=float)

  def xyz(self, i: int) -> np.ndarray:
    return self.atoms[i].xyz

  def atom_base(self, i: int) -> Optional[int]:
    return self.atoms[i].base

  def abase2(self, i: int) -> Optional[int]:
    return self.atoms[i].base2

  def atom_is_backbone(self, i: int) -> bool:
    return self.atoms[i].is_backbone

  def atom_index(self, name: str) -> int:
    return self._index[name]

  def get_atom(self, name: str) -> Optional[Atom]:
    i = self._index.get(name)
    return None if i is None else self.atoms[i]

  def polymeric_oriented_sequence_distance(self, other: "Residue") -> Optional[int]:
    """Signed sequence distance ``other - self`` for polymer residues on the same chain, else None."""
    if self.chain != other.chain or self.is_water or other.is_water:
      return None
    if self.kind != other.kind:
      return None
    return other.seqpos - self.seqpos

  def copy_with_coords(self, coords: np.ndarray) -> "Residue":
    """Return a copy of this residue with new atom coordinates (same atom order)."""
    coords = np.asarray(coords, dtype=float)
    assert coords.shape == (self.natoms, 3), "coordinate array must match the atom count"
    atoms = [replace(atom, xyz=coords[i].copy()) for i, atom in enumerate(self.atoms)]
    res = Residue(self.name, self.kind, self.seqpos, self.chain, self.resnum, atoms, nbr_atom=self.nbr_atom)
    res.nbr_radius = _neighbor_radius(res)
    return res

  def moved_atom(self, name: str, xyz: Sequence[float]) -> "Residue":
    coords = self.coords
    coords[self.atom_index(name)] = np.asarray(xyz, dtype=float)
    return self.copy_with_coords(coords)


@dataclass(eq=False)
class MembraneInfo:
  """Implicit membrane slab.

  Attributes:
    normal: Membrane normal (normalized on construction).
    center: A point on the membrane mid-plane.
    thickness: Half thickness of the hydrophobic core in Angstrom.
    steepness: Steepness of the transition between core and solvent.
  """
  normal: np.ndarray
  center: np.ndarray
  thickness: float = 15.0
  steepness: float = 10.0

  def __post_init__(self):
    self.normal = np.asarray(self.normal, dtype=float)
    self.normal = self.normal / np.linalg.norm(self.normal)
    self.center = np.asarray(self.center, dtype=float)

  def depth(self, xyz: np.ndarray) -> float:
    return float(np.dot(np.asarray(xyz, dtype=float) - self.center, self.normal))

  def fa_projection(self, xyz: np.ndarray) -> float:
    """Fraction of the membrane environment seen at ``xyz``: 1 at the mid-plane, 0 in solvent."""
    if self.thickness <= 0:
      return 0.0
    z = abs(self.depth(xyz)) / self.thickness
    return 1.0 / (1.0 + z**self.steepness)

  def fa_projection_deriv(self, xyz: np.ndarray) -> np.ndarray:
    """Gradient of :meth:`fa_projection` with respect to ``xyz``, along the normal."""
    depth = self.depth(xyz)
    if self.thickness <= 0 or depth == 0.0:
      return np.zeros(3)
    z = abs(depth) / self.thickness
    zs = z**self.steepness
    dfa_dz = -self.steepness * zs / z / (1.0 + zs) ** 2
    return dfa_dz * math.copysign(1.0, depth) / self.thickness * self.normal


@dataclass
class Pose:
  """Ordered residues with optional secondary structure and membrane geometry."""
  residues: List[Residue]
  secstruct: Optional[str] = None
  membrane: Optional[MembraneInfo] = None

  def __len__(self) -> int:
    return len(self.residues)

  @property
  def size(self) -> int:
    return len(self.residues)

  def residue(self, seqpos: int) -> Residue:
    return self.residues[seqpos]

  def replace_residue(self, seqpos: int, residue: Residue) -> None:
    assert residue.seqpos == seqpos, "replacement residue must keep its sequence position"
    self.residues[seqpos] = residue

  def secstruct_at(self, seqpos: int) -> str:
    if self.secstruct is None:
      return "L"
    return self.secstruct[seqpos]


@dataclass
class RotamerSet:
  """Candidate conformations for one sequence position.

  Attributes:
    resid: Sequence position of the residue being designed or repacked.
    rotamers: Candidate residues, all with ``seqpos == resid``.
  """
  resid: int
  rotamers: List[Residue]
  tries: Dict[str, object] = field(default_factory=dict)

  @property
  def num_rotamers(self) -> int:
    return len(self.rotamers)

  def rotamer(self, i: int) -> Residue:
    return self.rotamers[i]

  def store_trie(self, method: str, trie: object) -> None:
    self.tries[method] = trie

  def get_trie(self, method: str) -> Optional[object]:
    return self.tries.get(method)


# -----------------------------
# Building residues
# -----------------------------


def _guess_element(atom_name: str) -> str:
  stripped = atom_name.lstrip("0123456789")
  return stripped[0] if stripped else "X"


def _neighbor_radius(res: Residue) -> float:
  center = res.nbr_xyz
  heavy = [res.atoms[i].xyz for i in res.heavy_atoms]
  if not heavy:
    return 0.0
  return float(np.max(np.linalg.norm(np.array(heavy) - center, axis=1)))


def build_residue(
  name: str,
  atoms: Union[Mapping[str, Sequence[float]], Sequence[Tuple[str, Sequence[float]]]],
  seqpos: int,
  *,
  chain: str = "A",
  resnum: Optional[int] = None,
  elements: Optional[Mapping[str, str]] = None,
  residue_types: Optional[Dict[str, ResidueType]] = None,
) -> Residue:
  """Build a residue from named coordinates, resolving hydrogen-bond chemistry from the table.

  Args:
    name: Three letter residue code (aliases such as HOH are accepted).
    atoms: Atom name to coordinate, as a mapping or ordered pairs.
    seqpos: 0-based position in the pose.
    chain: Chain identifier.
    resnum: Residue number, defaults to ``seqpos + 1``.
    elements: Optional element override per atom name.
    residue_types: Optional chemistry table, defaults to the bundled one.

  Returns:
    The resolved Residue.

  Raises:
    UnknownResidueError: If the residue code is not in the chemistry table.
  """
  types = load_residue_types() if residue_types is None else residue_types
  name = RESIDUE_ALIASES.get(name, name)
  if name not in types:
    logger.critical("Residue %s is not in the hydrogen-bond chemistry table.", name)
    raise UnknownResidueError(name)
  res_type = types[name]
  pairs = list(atoms.items()) if isinstance(atoms, Mapping) else list(atoms)

  names = []
  for atom_name, _ in pairs:
    if res_type.kind == "protein":
      atom_name = ATOM_ALIASES.get(atom_name, atom_name)
    names.append(atom_name)
  index = {atom_name: i for i, atom_name in enumerate(names)}

  built: List[Atom] = []
  for atom_name, (_, xyz) in zip(names, pairs):
    element = (elements or {}).get(atom_name) or _guess_element(atom_name)
    atom = Atom(name=atom_name, element=element, xyz=np.asarray(xyz, dtype=float), is_hydrogen=element == "H")
    atom_type = res_type.atoms.get(atom_name)
    if atom_type is not None:
      atom.is_backbone = atom_type.is_backbone
      atom.is_donor = "D" in atom_type.role
      atom.is_acceptor = "A" in atom_type.role
      atom.don_type = atom_type.don_type
      atom.acc_type = atom_type.acc_type
      if atom.is_acceptor:
        atom.hybridization = ACCEPTOR_HYBRIDIZATION.get(atom.acc_type, "NONE")
      if atom_type.base is not None:
        atom.base = index.get(atom_type.base)
      for candidate in atom_type.base2:
        if candidate in index:
          atom.base2 = index[candidate]
          break
    built.append(atom)

  # Hydrogens not in the table still hang off their closest heavy atom so that they
  # travel with it; they are never polar unless that atom is a donor listed above.
  for i, atom in enumerate(built):
    if atom.is_hydrogen and atom.base is None:
      heavy = [j for j, other in enumerate(built) if not other.is_hydrogen]
      if heavy:
        dists = [np.linalg.norm(built[j].xyz - atom.xyz) for j in heavy]
        k = int(np.argmin(dists))
        if dists[k] < 1.3 and not built[heavy[k]].is_donor:
          atom.base = heavy[k]

  rep_name = representative_atom_name(name)
  if rep_name in index:
    nbr_atom = index[rep_name]
  else:
    heavy = [i for i, atom in enumerate(built) if not atom.is_hydrogen]
    fallback = "CA" if "CA" in index else None
    nbr_atom = index[fallback] if fallback else (heavy[0] if heavy else 0)
    if name != "GLY" and res_type.kind == "protein":
      logger.debug("%s %s lacks %s, using %s as its representative atom.", name, resnum, rep_name, built[nbr_atom].name)

  res = Residue(
    name=name,
    kind=res_type.kind,
    seqpos=seqpos,
    chain=chain,
    resnum=seqpos + 1 if resnum is None else resnum,
    atoms=built,
    nbr_atom=nbr_atom,
  )
  res.nbr_radius = _neighbor_radius(res)
  return res


# -----------------------------
# Neighbor counts
# -----------------------------


def _cell_index(xyz: np.ndarray, cell_size: float) -> Tuple[int, int, int]:
  return (
    int(math.floor(xyz[0] / cell_size)),
    int(math.floor(xyz[1] / cell_size)),
    int(math.floor(xyz[2] / cell_size)),
  )


def _build_cell_list(points: Iterable[Tuple[int, np.ndarray]], cell_size: float) -> Dict[Tuple[int, int, int], List[int]]:
  grid: Dict[Tuple[int, int, int], List[int]] = {}
  for i, xyz in points:
    grid.setdefault(_cell_index(xyz, cell_size), []).append(i)
  return grid


def _iter_neighbor_cells(xyz: np.ndarray, grid: Dict[Tuple[int, int, int], List[int]], cell_size: float) -> Iterable[int]:
  key = _cell_index(xyz, cell_size)
  for dx in (-1, 0, 1):
    for dy in (-1, 0, 1):
      for dz in (-1, 0, 1):
        for other in grid.get((key[0] + dx, key[1] + dy, key[2] + dz), []):
          yield other


def compute_neighbor_counts(pose: Pose, cutoff: float = NEIGHBOR_CUTOFF) -> List[int]:
  """Count, for every residue, the residues whose representative atoms lie within ``cutoff`` (counting itself).

  Args:
    pose: Structure to count neighbors in.
    cutoff: Neighbor distance in Angstrom.

  Returns:
    Neighbor count per sequence position.
  """
  centers = [(res.seqpos, res.nbr_xyz) for res in pose.residues]
  grid = _build_cell_list(centers, cutoff)
  cutoff2 = cutoff * cutoff
  counts = []
  for i, xyz in centers:
    n = 0
    for j in _iter_neighbor_cells(xyz, grid, cutoff):
      d = pose.residues[j].nbr_xyz - xyz
      if float(np.dot(d, d)) < cutoff2:
        n += 1
    counts.append(n)
  return counts


def residues_near_water(pose: Pose, cutoff: float) -> List[bool]:
  """Flag residues with a heavy atom within ``cutoff`` of a water oxygen other than themselves.

  Args:
    pose: Structure to inspect.
    cutoff: Heavy atom distance in Angstrom.

  Returns:
    One flag per sequence position.
  """
  waters = [(res.seqpos, res.xyz(res.nbr_atom)) for res in pose.residues if res.is_water]
  near = [False] * pose.size
  if not waters:
    return near
  grid = _build_cell_list(waters, cutoff)
  cutoff2 = cutoff * cutoff
  for res in pose.residues:
    for i in res.heavy_atoms:
      xyz = res.xyz(i)
      for j in _iter_neighbor_cells(xyz, grid, cutoff):
        if j == res.seqpos:
          continue
        d = pose.residues[j].xyz(pose.residues[j].nbr_atom) - xyz
        if float(np.dot(d, d)) <= cutoff2:
          near[res.seqpos] = True
          break
      if near[res.seqpos]:
        break
  return near


# -----------------------------
# Structure files
# -----------------------------


def pose_from_structure(
  structure: Union[str, Path, io.IOBase],
  format: str = "auto",
  *,
  model: int = 0,
  secstruct: Optional[str] = None,
  membrane: Optional[MembraneInfo] = None,
) -> Pose:
  """Read a PDB or mmCIF structure into a Pose.

  Residues missing from the chemistry table are skipped with a warning.

  Args:
    structure: File path or open handle.
    format: "pdb", "mmcif", or "auto" to infer from the file extension.
    model: Index of the model to read.
    secstruct: Optional secondary structure string for the kept residues.
    membrane: Optional membrane geometry.

  Returns:
    The parsed Pose.
  """
  if format == "auto":
    if str(structure).lower().endswith(".pdb"):
      format = "pdb"
    elif str(structure).lower().endswith(".cif") or str(structure).lower().endswith(".mmcif"):
      format = "mmcif"
    else:
      raise ValueError("Failed to infer format. Please specify format explicitly as 'pdb' or 'mmcif'.")

  if format == "pdb":
    parser = PDBParser(QUIET=True)
  elif format == "mmcif":
    parser = MMCIFParser(QUIET=True)
  else:
    raise ValueError("Invalid format specified. Supported formats are 'pdb' or 'mmcif'.")

  bio_structure = parser.get_structure("structure", structure)
  assert len(bio_structure), "No models found. Structure appears to be empty."
  types = load_residue_types()

  residues: List[Residue] = []
  skipped = set()
  for chain in bio_structure[model]:
    for bio_res in chain:
      res_name = RESIDUE_ALIASES.get(bio_res.get_resname().strip(), bio_res.get_resname().strip())
      if res_name not in types:
        skipped.add(res_name)
        continue
      atoms = [(atom.get_name(), atom.get_coord()) for atom in bio_res]
      elements = {atom.get_name(): atom.element.capitalize() for atom in bio_res if atom.element}
      if types[res_name].kind == "protein":
        elements = {ATOM_ALIASES.get(k, k): v for k, v in elements.items()}
      residues.append(
        build_residue(res_name, atoms, len(residues), chain=chain.id, resnum=bio_res.id[1], elements=elements, residue_types=types)
      )
  for res_name in sorted(skipped):
    logger.warning("No hydrogen-bond chemistry for residue %s; skipping it.", res_name)
  logger.info("Loaded %d residues for hydrogen-bond scoring.", len(residues))
  return Pose(residues, secstruct=secstruct, membrane=membrane)
