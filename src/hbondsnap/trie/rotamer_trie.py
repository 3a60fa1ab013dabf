"""
Rotamer tries: the atoms of many rotamers of one residue stored as a prefix tree, so that
atoms shared by several rotamers (usually the backbone) are evaluated once. The trie is
generic over the atom payload and the count-pair payload; the energy callback and the
count-pair rule are supplied at evaluation time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from hbondsnap.log import logger

# callback types
PairEnergy = Callable[[Any, Any, float], float]
CountPair = Callable[[Any, Any], bool]


@dataclass(frozen=True)
class DescriptorAtom:
  """One atom of a rotamer descriptor with its count-pair data.

  ``atom`` must expose ``xyz`` as a 3-tuple and be orderable together with ``cp_data``.
  """
  atom: Any
  cp_data: Any

  @property
  def key(self) -> Tuple[Any, Any]:
    return (self.atom, self.cp_data)


@dataclass
class RotamerDescriptor:
  """Ordered atoms of one rotamer, the unit inserted into a trie."""
  rotamer_id: int
  atoms: List[DescriptorAtom] = field(default_factory=list)

  def add_atom(self, atom: Any, cp_data: Any) -> None:
    self.atoms.append(DescriptorAtom(atom, cp_data))

  def natoms(self) -> int:
    return len(self.atoms)

  def sort_key(self) -> Tuple[Tuple[Any, Any], ...]:
    return tuple(a.key for a in self.atoms)


class _Node:
  __slots__ = ("entry", "children", "rotamers")

  def __init__(self, entry: Optional[DescriptorAtom]):
    self.entry = entry
    self.children: Dict[Tuple[Any, Any], "_Node"] = {}
    self.rotamers: List[int] = []


class RotamerTrie:
  """Prefix tree over sorted rotamer descriptors, flattened in depth first order.

  Attributes:
    num_rotamers: Number of rotamers (descriptor ids run from 0 to ``num_rotamers - 1``).
    atoms: Atom payload per node.
    cp_data: Count-pair payload per node.
    parent: Parent node per node, -1 for children of the virtual root.
    depth: Depth per node, 0 for children of the virtual root.
    subtree_end: One past the last node of each node's subtree.
    xyz: Node coordinates, shape ``(nnodes, 3)``.
    subtree_radius: Radius around each node enclosing its whole subtree.
    rotamer_node: Terminal node of each rotamer, -1 for rotamers without atoms.
    center: Center of the sphere enclosing every atom.
    radius: Radius of that sphere.
  """

  def __init__(self, descriptors: Sequence[RotamerDescriptor], num_rotamers: Optional[int] = None):
    self.num_rotamers = len(descriptors) if num_rotamers is None else num_rotamers
    ordered = sorted(descriptors, key=lambda d: (d.sort_key(), d.rotamer_id))

    root = _Node(None)
    for descriptor in ordered:
      node = root
      for entry in descriptor.atoms:
        child = node.children.get(entry.key)
        if child is None:
          child = _Node(entry)
          node.children[entry.key] = child
        node = child
      node.rotamers.append(descriptor.rotamer_id)

    self.atoms: List[Any] = []
    self.cp_data: List[Any] = []
    parents: List[int] = []
    depths: List[int] = []
    ends: List[int] = []
    terminal: Dict[int, List[int]] = {}
    self.empty_rotamers: List[int] = list(root.rotamers)

    # depth first flattening with an explicit stack of (node, parent index, depth)
    stack: List[Tuple[_Node, int, int]] = [(child, -1, 0) for child in reversed(list(root.children.values()))]
    open_nodes: List[int] = []
    while stack:
      node, parent, depth = stack.pop()
      while open_nodes and depths[open_nodes[-1]] >= depth:
        ends[open_nodes.pop()] = len(self.atoms)
      index = len(self.atoms)
      self.atoms.append(node.entry.atom)
      self.cp_data.append(node.entry.cp_data)
      parents.append(parent)
      depths.append(depth)
      ends.append(index + 1)
      open_nodes.append(index)
      if node.rotamers:
        terminal[index] = list(node.rotamers)
      for child in reversed(list(node.children.values())):
        stack.append((child, index, depth + 1))
    while open_nodes:
      ends[open_nodes.pop()] = len(self.atoms)

    n = len(self.atoms)
    self.parent = np.array(parents, dtype=int)
    self.depth = np.array(depths, dtype=int)
    self.subtree_end = np.array(ends, dtype=int)
    self.xyz = np.array([a.xyz for a in self.atoms], dtype=float).reshape(n, 3)
    self.max_depth = int(self.depth.max()) + 1 if n else 0

    self.rotamer_node = np.full(self.num_rotamers, -1, dtype=int)
    self._terminal_nodes = np.array(sorted(terminal), dtype=int)
    self._terminal_rotamers = [terminal[k] for k in self._terminal_nodes]
    for k, rotamers in terminal.items():
      self.rotamer_node[rotamers] = k

    self.subtree_radius = np.zeros(n, dtype=float)
    for k in range(n):
      sub = self.xyz[k : self.subtree_end[k]]
      self.subtree_radius[k] = float(np.max(np.linalg.norm(sub - self.xyz[k], axis=1)))
    if n:
      self.center = self.xyz.mean(axis=0)
      self.radius = float(np.max(np.linalg.norm(self.xyz - self.center, axis=1)))
    else:
      self.center = np.zeros(3)
      self.radius = 0.0

  def __len__(self) -> int:
    return len(self.atoms)

  @property
  def nnodes(self) -> int:
    return len(self.atoms)

  def terminals_in_subtree(self, k: int) -> List[int]:
    """Rotamers whose terminal node lies in the subtree rooted at ``k``."""
    lo = np.searchsorted(self._terminal_nodes, k, side="left")
    hi = np.searchsorted(self._terminal_nodes, self.subtree_end[k], side="left")
    out: List[int] = []
    for rotamers in self._terminal_rotamers[lo:hi]:
      out.extend(rotamers)
    return out

  def rotamers_at(self, k: int) -> List[int]:
    i = np.searchsorted(self._terminal_nodes, k)
    if i < len(self._terminal_nodes) and self._terminal_nodes[i] == k:
      return self._terminal_rotamers[i]
    return []

  def path(self, rotamer_id: int) -> List[int]:
    """Nodes from the top of the trie down to the terminal node of ``rotamer_id``."""
    k = int(self.rotamer_node[rotamer_id])
    nodes: List[int] = []
    while k >= 0:
      nodes.append(k)
      k = int(self.parent[k])
    return nodes[::-1]


def _node_values_vs_atom(atom1: Any, cp1: Any, xyz1: np.ndarray, trie2: RotamerTrie, count_pair: CountPair, energy: PairEnergy, cutoff: float) -> np.ndarray:
  """Per rotamer of ``trie2``, the summed energy of ``atom1`` with that rotamer's atoms.

  Path sums are carried down the trie (``val[k + 1] = val[parent + 1] + e(k)``) and whole
  subtrees out of reach of ``atom1`` are skipped.
  """
  n2 = trie2.nnodes
  val = np.zeros(n2 + 1, dtype=float)
  d2_all = np.sum((trie2.xyz - xyz1) ** 2, axis=1)
  cutoff2 = cutoff * cutoff
  k = 0
  while k < n2:
    inherited = val[trie2.parent[k] + 1]
    reach = cutoff + trie2.subtree_radius[k]
    if d2_all[k] > reach * reach:
      end = trie2.subtree_end[k]
      val[k + 1 : end + 1] = inherited
      k = end
      continue
    e = 0.0
    if d2_all[k] <= cutoff2 and count_pair(cp1, trie2.cp_data[k]):
      e = energy(atom1, trie2.atoms[k], float(d2_all[k]))
    val[k + 1] = inherited + e
    k += 1
  return val[trie2.rotamer_node + 1]


def trie_vs_trie(trie1: RotamerTrie, trie2: RotamerTrie, count_pair: CountPair, energy: PairEnergy, energy_table: np.ndarray, cutoff: float) -> None:
  """Add every rotamer pair's energy into ``energy_table[rot1, rot2]``.

  Args:
    trie1: Trie of the first residue.
    trie2: Trie of the second residue.
    count_pair: ``count_pair(cp1, cp2)`` decides whether an atom pair is scored.
    energy: ``energy(atom1, atom2, d2)`` returns the pair energy.
    energy_table: Array of shape ``(trie1.num_rotamers, trie2.num_rotamers)``, only added to.
    cutoff: Distance beyond which atom pairs contribute nothing.
  """
  assert energy_table.shape == (trie1.num_rotamers, trie2.num_rotamers), "energy table shape must match the rotamer counts"
  n1 = trie1.nnodes
  if n1 == 0 or trie2.nnodes == 0:
    return
  n_rot2 = trie2.num_rotamers
  # running sums along the current trie1 path, one row per depth plus the virtual root
  stack = np.zeros((trie1.max_depth + 1, n_rot2), dtype=float)
  zero = np.zeros(n_rot2, dtype=float)
  k = 0
  while k < n1:
    depth = trie1.depth[k]
    above = stack[depth]
    reach = cutoff + trie2.radius + trie1.subtree_radius[k]
    d2 = float(np.sum((trie1.xyz[k] - trie2.center) ** 2))
    if d2 > reach * reach:
      rotamers = trie1.terminals_in_subtree(k)
      if rotamers:
        energy_table[rotamers, :] += above
      k = trie1.subtree_end[k]
      continue
    if d2 > (cutoff + trie2.radius) ** 2:
      contribution = zero
    else:
      contribution = _node_values_vs_atom(trie1.atoms[k], trie1.cp_data[k], trie1.xyz[k], trie2, count_pair, energy, cutoff)
    stack[depth + 1] = above + contribution
    rotamers = trie1.rotamers_at(k)
    if rotamers:
      energy_table[rotamers, :] += stack[depth + 1]
    k += 1


def trie_vs_path(trie1: RotamerTrie, trie2: RotamerTrie, count_pair: CountPair, energy: PairEnergy, energy_vector: np.ndarray, cutoff: float, rotamer_id: int = 0) -> None:
  """Add the energy of every rotamer of ``trie1`` with one fixed rotamer of ``trie2``.

  Args:
    trie1: Trie of the residue being packed.
    trie2: Trie holding the background residue.
    count_pair: ``count_pair(cp1, cp2)`` decides whether an atom pair is scored.
    energy: ``energy(atom1, atom2, d2)`` returns the pair energy.
    energy_vector: Array of shape ``(trie1.num_rotamers,)``, only added to.
    cutoff: Distance beyond which atom pairs contribute nothing.
    rotamer_id: Rotamer of ``trie2`` forming the background path.
  """
  assert energy_vector.shape == (trie1.num_rotamers,), "energy vector length must match the rotamer count"
  path = trie2.path(rotamer_id)
  if trie1.nnodes == 0 or not path:
    return
  path_xyz = trie2.xyz[path]
  path_center = path_xyz.mean(axis=0)
  path_radius = float(np.max(np.linalg.norm(path_xyz - path_center, axis=1)))

  stack = np.zeros(trie1.max_depth + 1, dtype=float)
  k = 0
  while k < trie1.nnodes:
    depth = trie1.depth[k]
    above = stack[depth]
    xyz1 = trie1.xyz[k]
    reach = cutoff + path_radius + trie1.subtree_radius[k]
    if float(np.sum((xyz1 - path_center) ** 2)) > reach * reach:
      rotamers = trie1.terminals_in_subtree(k)
      if rotamers:
        energy_vector[rotamers] += above
      k = trie1.subtree_end[k]
      continue
    e = 0.0
    d2_path = np.sum((path_xyz - xyz1) ** 2, axis=1)
    for m, node in enumerate(path):
      if d2_path[m] > cutoff * cutoff:
        continue
      if count_pair(trie1.cp_data[k], trie2.cp_data[node]):
        e += energy(trie1.atoms[k], trie2.atoms[node], float(d2_path[m]))
    stack[depth + 1] = above + e
    rotamers = trie1.rotamers_at(k)
    if rotamers:
      energy_vector[rotamers] += stack[depth + 1]
    k += 1


class TrieCollection:
  """Tries of the current (background) residues of a pose, keyed by sequence position."""

  def __init__(self, total_residues: int = 0):
    self._tries: Dict[int, RotamerTrie] = {}
    self.total_residues = total_residues

  def __len__(self) -> int:
    return len(self._tries)

  def __contains__(self, seqpos: int) -> bool:
    return seqpos in self._tries

  def set_trie(self, seqpos: int, trie: RotamerTrie) -> None:
    self._tries[seqpos] = trie

  def get_trie(self, seqpos: int) -> Optional[RotamerTrie]:
    return self._tries.get(seqpos)


def log_trie_summary(name: str, trie: RotamerTrie, natoms_total: int) -> None:
  if natoms_total:
    logger.debug("%s trie: %d rotamers, %d nodes for %d atoms.", name, trie.num_rotamers, trie.nnodes, natoms_total)
