"""
Small hand placed structures shared by the hydrogen-bond tests.

The reference bond puts a backbone acceptor O at the origin with its C on the -x axis and
the donor N-H on a line at 30 degrees from +x, H at 1.9 A and N at 2.9 A from the O.
"""

import numpy as np

from hbondsnap.pose import Pose, build_residue

DIR = np.array([np.cos(np.radians(30.0)), np.sin(np.radians(30.0)), 0.0])
# raw energy of the reference geometry: AHdist_bb(1.9) + cosAHD(1.0) + cosBAH_sp2(cos 30)
REFERENCE_ENERGY = -0.996913582 - 0.5 - 0.27724365


def acceptor_gly(seqpos=0, chain="A", offset=(0.0, 0.0, 0.0)):
  """Glycine whose backbone O accepts, no polar hydrogens."""
  offset = np.asarray(offset, dtype=float)
  atoms = {
    "N": np.array([-2.6, 2.3, 0.4]),
    "CA": np.array([-1.9, 1.2, 0.0]),
    "C": np.array([-1.23, 0.0, 0.0]),
    "O": np.array([0.0, 0.0, 0.0]),
  }
  return build_residue("GLY", {k: v + offset for k, v in atoms.items()}, seqpos, chain=chain)


def donor_gly(seqpos=1, chain="B", h_shift=(0.0, 0.0, 0.0), offset=(0.0, 0.0, 0.0)):
  """Glycine whose backbone N-H points at the origin."""
  offset = np.asarray(offset, dtype=float)
  n = 2.9 * DIR
  atoms = {
    "N": n,
    "H": 1.9 * DIR + np.asarray(h_shift, dtype=float),
    "CA": n + np.array([0.9, 1.1, 0.0]),
    "C": n + np.array([2.2, 0.6, 0.3]),
    "O": n + np.array([3.0, 1.4, 0.5]),
  }
  return build_residue("GLY", {k: v + offset for k, v in atoms.items()}, seqpos, chain=chain)


def serine_acceptor(seqpos=2, chain="C", offset=(0.0, 0.0, 0.0)):
  """Serine whose OG sits 1.9 A from the donor H of :func:`donor_gly`, 45 degrees off the N-H axis."""
  offset = np.asarray(offset, dtype=float)
  h = 1.9 * DIR
  u = -DIR * np.cos(np.radians(45.0)) + np.array([0.0, 0.0, 1.0]) * np.sin(np.radians(45.0))
  og = h + 1.9 * u
  cb = og + 1.43 * u
  ca = cb + np.array([1.0, 0.0, 1.1])
  c = ca + np.array([1.2, 0.6, 0.4])
  atoms = {
    "N": ca + np.array([-1.0, 0.5, 0.8]),
    "CA": ca,
    "C": c,
    "O": c + np.array([0.6, 1.0, 0.0]),
    "CB": cb,
    "OG": og,
  }
  return build_residue("SER", {k: v + offset for k, v in atoms.items()}, seqpos, chain=chain)


def serine_intra(seqpos=0, chain="A"):
  """Serine whose HG points at its own backbone O."""
  og = 2.9 * DIR
  atoms = {
    "N": np.array([-2.6, 2.3, 0.4]),
    "CA": np.array([-1.9, 1.2, 0.0]),
    "C": np.array([-1.23, 0.0, 0.0]),
    "O": np.array([0.0, 0.0, 0.0]),
    "CB": og + np.array([0.9, 1.1, 0.2]),
    "OG": og,
    "HG": 1.9 * DIR + np.array([0.0, 0.0, 0.3]),
  }
  return build_residue("SER", atoms, seqpos, chain=chain)


def histidine_acceptor(seqpos=0, chain="A"):
  """Histidine with ND1 at the origin and its ring opening towards +x."""
  atoms = {
    "N": np.array([-1.8, 4.2, 0.9]),
    "CA": np.array([-1.0, 3.2, 0.5]),
    "C": np.array([0.3, 3.6, 0.4]),
    "O": np.array([1.0, 4.4, 1.0]),
    "CB": np.array([-1.6, 2.0, 0.0]),
    "CG": np.array([-1.1, 0.7, 0.0]),
    "ND1": np.array([0.0, 0.0, 0.0]),
    "CD2": np.array([-2.2, 1.1, 0.0]),
    "CE1": np.array([-1.1, -0.7, 0.0]),
    "NE2": np.array([-2.2, -0.1, 0.0]),
  }
  return build_residue("HIS", atoms, seqpos, chain=chain)


def water_donor(seqpos=1, chain="W"):
  """Water whose H1 points at the origin."""
  o = 2.9 * DIR
  h2_dir = np.array([0.2, 0.9, 0.3]) / np.linalg.norm([0.2, 0.9, 0.3])
  atoms = {"O": o, "H1": 1.9 * DIR, "H2": o + 0.96 * h2_dir}
  return build_residue("HOH", atoms, seqpos, chain=chain)


def reference_pose(**donor_kwargs):
  """Acceptor glycine (chain A) and donor glycine (chain B) forming the reference bond."""
  return Pose([acceptor_gly(0), donor_gly(1, **donor_kwargs)])


def three_residue_pose():
  """Reference bond plus a serine whose OG competes for the same backbone N-H."""
  return Pose([acceptor_gly(0), donor_gly(1), serine_acceptor(2)])


def numeric_gradient(energy_fn, residue, atom_index, step=1e-6):
  """Central difference gradient of ``energy_fn(residue)`` with respect to one atom."""
  grad = np.zeros(3)
  for k in range(3):
    plus = residue.coords
    minus = residue.coords
    plus[atom_index, k] += step
    minus[atom_index, k] -= step
    grad[k] = (energy_fn(residue.copy_with_coords(plus)) - energy_fn(residue.copy_with_coords(minus))) / (2.0 * step)
  return grad
