import numpy as np
import pandas as pd
import pytest
from hbond_geometry import (
  DIR,
  REFERENCE_ENERGY,
  acceptor_gly,
  donor_gly,
  histidine_acceptor,
  numeric_gradient,
  reference_pose,
  serine_acceptor,
  serine_intra,
  three_residue_pose,
  water_donor,
)

from hbondsnap.constants import (
  HBOND,
  HBOND_BB_SC,
  HBOND_INTRA,
  HBOND_LR_BB,
  HBOND_LR_BB_SC,
  HBOND_SC,
  HBOND_SR_BB,
  HBOND_WAT,
  WAT_ENTROPY,
)
from hbondsnap.hbonds.energy import HBondEnergy
from hbondsnap.hbonds.hbond_set import HBond, HBondSet, assign_helices
from hbondsnap.hbonds.options import HBondOptions
from hbondsnap.hbonds.types import HBEvalTuple
from hbondsnap.pose import MembraneInfo, Pose, build_residue
from hbondsnap.scoring import EnergyMap, MinimizationData, get_weights, new_deriv_array

NO_ENV = HBondOptions(use_hb_env_dep=False)


def _pair_energy(method, rsd1, rsd2, pose, hbond_set):
  emap = EnergyMap()
  method.residue_pair_energy(rsd1, rsd2, pose, hbond_set, emap)
  return emap


# -----------------------------
# Options and weights
# -----------------------------


def test_options_from_dict():
  options = HBondOptions.from_dict({"use_hb_env_dep": False, "max_hb_energy": -0.1})
  assert not options.use_hb_env_dep
  assert options.max_hb_energy == -0.1
  assert options.bb_donor_acceptor_check
  with pytest.raises(ValueError, match="Unknown hbond option"):
    HBondOptions.from_dict({"use_env": True})


def test_options_validation():
  with pytest.raises(ValueError):
    HBondOptions(length_dependent_srbb_minlength=10, length_dependent_srbb_maxlength=5)
  assert HBondOptions(mp_hbond=True).membrane
  assert not HBondOptions().membrane
  assert NO_ENV.with_changes(water_hybrid_sf=True).water_hybrid_sf


def test_get_weights():
  weights = get_weights({"hbond_sc": 0.5})
  assert weights[HBOND_SC] == 0.5
  assert weights[HBOND_LR_BB] == 1.0
  with pytest.raises(ValueError, match="Unknown score type"):
    get_weights({"fa_rep": 1.0})


# -----------------------------
# HBondSet
# -----------------------------


def test_hbond_set_finds_backbone_bond_and_claims():
  pose = reference_pose()
  hbond_set = HBondEnergy(NO_ENV).setup_for_scoring(pose)
  assert len(hbond_set) == 1
  hbond = hbond_set.hbonds[0]
  assert (hbond.don_res, hbond.acc_res) == (1, 0)
  assert hbond.energy == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  assert hbond.weight == 1.0
  assert hbond_set.don_bbg_in_bb_bb_hbond(1)
  assert hbond_set.acc_bbg_in_bb_bb_hbond(0)
  assert not hbond_set.don_bbg_in_bb_bb_hbond(0)
  assert not hbond_set.acc_bbg_in_bb_bb_hbond(1)
  assert hbond_set.nbrs(0) == 2


def test_hbond_set_dataframe():
  hbond_set = HBondEnergy().setup_for_scoring(reference_pose())
  df = hbond_set.to_dataframe()
  assert isinstance(df, pd.DataFrame)
  assert list(df.columns) == [
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
  row = df.iloc[0]
  assert (row["don_atom"], row["acc_atom"]) == ("N", "O")
  assert row["eval_type"] == "PBA/PBA/other"
  assert row["weight_type"] == "LR_BB"
  # two residues with two neighbors each are fully exposed
  assert row["weight"] == pytest.approx(0.1)
  assert row["weighted_energy"] == pytest.approx(0.1 * REFERENCE_ENERGY, abs=1e-6)
  assert HBondSet().to_dataframe().empty


def test_minimizing_keeps_previous_claims():
  method = HBondEnergy(NO_ENV)
  previous = method.setup_for_scoring(reference_pose())
  # pull the donor away so that the new round finds no bond
  apart = reference_pose(offset=(0.0, 0.0, 5.0))
  fresh = method.setup_for_scoring(apart)
  assert len(fresh) == 0 and not fresh.don_bbg_in_bb_bb_hbond(1)
  kept = method.setup_for_scoring(apart, previous=previous, minimizing=True)
  assert kept.don_bbg_in_bb_bb_hbond(1)
  assert kept.acc_bbg_in_bb_bb_hbond(0)


def _helix_pose():
  # the N-H of residue i+4 bonds the O of residue i
  residues = []
  for i in range(8):
    offset = (0.0, 0.0, 20.0 * (i % 4))
    if i < 4:
      residues.append(acceptor_gly(i, chain="A", offset=offset))
    else:
      residues.append(donor_gly(i, chain="A", offset=offset))
  return Pose(residues)


def test_assign_helices_from_i_to_i_plus_4_bonds():
  pose = _helix_pose()
  assert assign_helices(pose, HBondEnergy().database, HBondOptions()) == "LHHHHHHL"


def test_helices_are_reassigned_every_round():
  pose = _helix_pose()
  method = HBondEnergy(HBondOptions(length_dependent_srbb=True))
  assert method.setup_for_scoring(pose).secstruct == "LHHHHHHL"
  assert pose.secstruct is None
  for i in range(4, 8):
    pose.replace_residue(i, donor_gly(i, chain="A", offset=(0.0, 50.0, 20.0 * (i % 4))))
  assert method.setup_for_scoring(pose).secstruct == "LLLLLLLL"
  assert pose.secstruct is None


def test_pose_secondary_structure_is_used_as_given():
  pose = _helix_pose()
  pose.secstruct = "HHHHLLLL"
  hbond_set = HBondEnergy(HBondOptions(length_dependent_srbb=True)).setup_for_scoring(pose)
  assert hbond_set.secstruct == "HHHHLLLL"


# -----------------------------
# Pair energies
# -----------------------------


def test_backbone_bond_is_left_to_finalize():
  pose = reference_pose()
  method = HBondEnergy(NO_ENV)
  hbond_set = method.setup_for_scoring(pose)
  emap = _pair_energy(method, pose.residue(0), pose.residue(1), pose, hbond_set)
  assert emap.dot(get_weights()) == 0.0
  method.finalize_total_energy(hbond_set, emap)
  assert emap[HBOND_LR_BB] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  assert emap[HBOND] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  assert emap[HBOND_SR_BB] == 0.0


def test_score_pose_reference_bond():
  scores = HBondEnergy(NO_ENV).score_pose(reference_pose())
  assert scores[HBOND_LR_BB] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  assert scores["total"] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  scores = HBondEnergy(NO_ENV).score_pose(reference_pose(), {"hbond_lr_bb": 0.5})
  assert scores["total"] == pytest.approx(0.5 * REFERENCE_ENERGY, abs=1e-6)


@pytest.mark.parametrize("seqpos, expected", [(3, HBOND_SR_BB), (4, HBOND_SR_BB), (5, HBOND_LR_BB)])
def test_backbone_range_by_sequence_separation(seqpos, expected):
  residues = [acceptor_gly(0, chain="A")]
  for i in range(1, seqpos):
    residues.append(acceptor_gly(i, chain="A", offset=(0.0, 0.0, 40.0 + 10.0 * i)))
  residues.append(donor_gly(seqpos, chain="A"))
  pose = Pose(residues)
  options = NO_ENV.with_changes(decompose_bb_hb_into_pair_energies=True)
  method = HBondEnergy(options)
  hbond_set = method.setup_for_scoring(pose)
  emap = _pair_energy(method, pose.residue(0), pose.residue(seqpos), pose, hbond_set)
  assert emap[expected] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)
  other = HBOND_LR_BB if expected == HBOND_SR_BB else HBOND_SR_BB
  assert emap[other] == 0.0


def test_decomposed_pair_energy_is_symmetric():
  pose = three_residue_pose()
  method = HBondEnergy(HBondOptions(decompose_bb_hb_into_pair_energies=True))
  hbond_set = method.setup_for_scoring(pose)
  for i in range(3):
    for j in range(i + 1, 3):
      forward = _pair_energy(method, pose.residue(i), pose.residue(j), pose, hbond_set)
      backward = _pair_energy(method, pose.residue(j), pose.residue(i), pose, hbond_set)
      assert forward.dot(get_weights()) == pytest.approx(backward.dot(get_weights()))


def test_decomposition_sums_to_pair_energy():
  pose = three_residue_pose()
  method = HBondEnergy(HBondOptions(decompose_bb_hb_into_pair_energies=True))
  hbond_set = method.setup_for_scoring(pose)
  weights = get_weights()
  for i, j in ((0, 1), (1, 2), (0, 2)):
    r1, r2 = pose.residue(i), pose.residue(j)
    parts = EnergyMap()
    method.backbone_backbone_energy(r1, r2, pose, hbond_set, parts)
    method.backbone_sidechain_energy(r1, r2, pose, hbond_set, parts)
    method.backbone_sidechain_energy(r2, r1, pose, hbond_set, parts)
    method.sidechain_sidechain_energy(r1, r2, pose, hbond_set, parts)
    whole = _pair_energy(method, r1, r2, pose, hbond_set)
    assert parts.dot(weights) == pytest.approx(whole.dot(weights))


def test_claimed_backbone_donor_skips_side_chain_acceptor():
  pose = three_residue_pose()
  method = HBondEnergy()
  hbond_set = method.setup_for_scoring(pose)
  assert hbond_set.don_bbg_in_bb_bb_hbond(1)
  emap = _pair_energy(method, pose.residue(1), pose.residue(2), pose, hbond_set)
  assert emap[HBOND_BB_SC] == 0.0
  bb_sc = EnergyMap()
  method.backbone_sidechain_energy(pose.residue(1), pose.residue(2), pose, hbond_set, bb_sc)
  assert bb_sc[HBOND_BB_SC] == 0.0

  unchecked = HBondEnergy(HBondOptions(bb_donor_acceptor_check=False))
  hbond_set = unchecked.setup_for_scoring(pose)
  emap = _pair_energy(unchecked, pose.residue(1), pose.residue(2), pose, hbond_set)
  assert emap[HBOND_BB_SC] < 0.0
  assert emap[HBOND_LR_BB_SC] == pytest.approx(emap[HBOND_BB_SC])
  assert emap[HBOND_SC] == 0.0


def test_no_bond_beyond_distance_gate():
  pose = Pose([acceptor_gly(0), donor_gly(1, offset=tuple(1.2 * DIR))])
  method = HBondEnergy(NO_ENV.with_changes(decompose_bb_hb_into_pair_energies=True))
  hbond_set = method.setup_for_scoring(pose)
  assert len(hbond_set) == 0
  emap = _pair_energy(method, pose.residue(0), pose.residue(1), pose, hbond_set)
  assert emap.dot(get_weights()) == 0.0


def test_environment_weight_scales_pair_energy():
  pose = three_residue_pose()
  weights = get_weights()
  exposed = HBondEnergy(HBondOptions(bb_donor_acceptor_check=False))
  flat = HBondEnergy(HBondOptions(bb_donor_acceptor_check=False, use_hb_env_dep=False))
  e_exposed = _pair_energy(exposed, pose.residue(1), pose.residue(2), pose, exposed.setup_for_scoring(pose)).dot(weights)
  e_flat = _pair_energy(flat, pose.residue(1), pose.residue(2), pose, flat.setup_for_scoring(pose)).dot(weights)
  # three residues, each with three neighbors, get the minimum burial weight
  assert e_exposed == pytest.approx(0.1 * e_flat)


def test_membrane_weight_replaces_environment_weight():
  pose = three_residue_pose()
  pose.membrane = MembraneInfo(normal=[0.0, 0.0, 1.0], center=[0.0, 0.0, 0.0], thickness=100.0)
  weights = get_weights()
  options = HBondOptions(bb_donor_acceptor_check=False, use_hb_env_dep=False)
  flat = HBondEnergy(options)
  membrane = HBondEnergy(options.with_changes(mb_hbond=True))
  e_flat = _pair_energy(flat, pose.residue(1), pose.residue(2), pose, flat.setup_for_scoring(pose)).dot(weights)
  e_mem = _pair_energy(membrane, pose.residue(1), pose.residue(2), pose, membrane.setup_for_scoring(pose)).dot(weights)
  # deep inside a thick membrane the core weight applies
  assert e_mem == pytest.approx(2.0 * e_flat, rel=1e-6)


def test_histidine_ring_acceptor():
  pose = Pose([histidine_acceptor(0), donor_gly(1, h_shift=(0.0, 0.0, 0.3))])
  method = HBondEnergy(NO_ENV)
  hbond_set = method.setup_for_scoring(pose)
  emap = _pair_energy(method, pose.residue(0), pose.residue(1), pose, hbond_set)
  assert emap[HBOND_BB_SC] < 0.0


def test_dna_pairs_are_skipped():
  phosphate = {"P": (0.0, 0.0, 0.0), "OP1": (1.4, 0.4, 0.2), "OP2": (-0.6, 1.3, 0.2), "O5'": (-0.5, -0.8, 1.1), "C1'": (3.0, 3.0, 3.0)}
  dna1 = build_residue("DA", phosphate, 0, chain="A")
  dna2 = build_residue("DA", {k: np.asarray(v) + 30.0 for k, v in phosphate.items()}, 1, chain="A")
  method = HBondEnergy()
  assert method._skip_pair(dna1, dna2)
  assert not HBondEnergy(HBondOptions(exclude_DNA_DNA=False))._skip_pair(dna1, dna2)


# -----------------------------
# Water
# -----------------------------


def test_water_bond_with_hybrid_scoring():
  pose = Pose([acceptor_gly(0), water_donor(1)])
  method = HBondEnergy(HBondOptions(water_hybrid_sf=True))
  hbond_set = method.setup_for_scoring(pose)
  assert hbond_set.bond_near_water(0, 1)
  emap = _pair_energy(method, pose.residue(0), pose.residue(1), pose, hbond_set)
  # water donors use the side chain distance term; near a water the burial weight is dropped
  assert emap[HBOND_WAT] == pytest.approx(REFERENCE_ENERGY + 0.996913582 - 0.8, abs=1e-6)
  assert emap[WAT_ENTROPY] == pytest.approx(1.0)
  assert emap[HBOND_BB_SC] == 0.0
  assert emap[HBOND] == 0.0


def test_water_bond_without_hybrid_scoring():
  pose = Pose([acceptor_gly(0), water_donor(1)])
  method = HBondEnergy(NO_ENV)
  hbond_set = method.setup_for_scoring(pose)
  emap = _pair_energy(method, pose.residue(0), pose.residue(1), pose, hbond_set)
  assert emap[HBOND_WAT] == 0.0
  assert emap[WAT_ENTROPY] == 0.0
  assert emap[HBOND_BB_SC] < 0.0
  assert emap[HBOND_LR_BB_SC] == pytest.approx(emap[HBOND_BB_SC])


# -----------------------------
# Intra-residue and finalize
# -----------------------------


def test_intra_residue_bond():
  rsd = serine_intra(0)
  pose = Pose([rsd])
  method = HBondEnergy(NO_ENV.with_changes(intra_res_hbonds=True))
  hbond_set = method.setup_for_scoring(pose)
  emap = EnergyMap()
  method.eval_intrares_energy(rsd, pose, hbond_set, emap)
  assert emap[HBOND_INTRA] < 0.0
  assert emap[HBOND] == 0.0
  assert method.defines_intrares_energy({"hbond_intra": 1.0})
  assert not method.defines_intrares_energy(get_weights())

  off = EnergyMap()
  HBondEnergy(NO_ENV).eval_intrares_energy(rsd, pose, hbond_set, off)
  assert off[HBOND_INTRA] == 0.0

  total = EnergyMap()
  HBondEnergy(NO_ENV.with_changes(intra_res_hbonds=True, put_intra_into_total=True)).eval_intrares_energy(rsd, pose, hbond_set, total)
  assert total[HBOND] == pytest.approx(emap[HBOND_INTRA])
  assert total[HBOND_INTRA] == 0.0


def test_atomistic_pair_energy_matches_pair_energy():
  pose = three_residue_pose()
  method = HBondEnergy(HBondOptions(bb_donor_acceptor_check=False))
  hbond_set = method.setup_for_scoring(pose)
  don, acc = pose.residue(1), pose.residue(2)
  whole = _pair_energy(method, don, acc, pose, hbond_set)
  atomistic = EnergyMap()
  method.atomistic_pair_energy(acc.atom_index("OG"), acc, don.atom_index("H"), don, pose, hbond_set, atomistic)
  assert atomistic[HBOND_BB_SC] == pytest.approx(whole[HBOND_BB_SC])
  other = EnergyMap()
  method.atomistic_pair_energy(acc.atom_index("CB"), acc, don.atom_index("H"), don, pose, hbond_set, other)
  assert not other


def test_finalize_adds_backbone_bonds_only():
  hbond_set = HBondSet(HBondOptions(), 3)
  bb = HBEvalTuple("PBA", "PBA", None)
  dna = HBEvalTuple("PBA", "PCA_DNA", None)
  hbond_set.append_hbond(HBond(1, 0, 0, 0, 0, energy=-1.0, weight=1.0, eval_tuple=bb))
  hbond_set.append_hbond(HBond(1, 0, 0, 2, 0, energy=-0.5, weight=2.0, eval_tuple=dna))
  totals = EnergyMap({HBOND_SC: -3.0, HBOND_BB_SC: -2.0})
  HBondEnergy().finalize_total_energy(hbond_set, totals)
  assert totals[HBOND_LR_BB] == pytest.approx(-1.0)
  assert totals[HBOND_SC] == pytest.approx(-3.0)
  # mixed bonds stored in the set only reach the total
  assert totals[HBOND_BB_SC] == pytest.approx(-2.0)
  assert totals[HBOND_LR_BB_SC] == 0.0
  assert totals[HBOND] == pytest.approx(-2.0)

  untouched = EnergyMap({HBOND_SC: -3.0})
  HBondEnergy().finalize_total_energy(hbond_set, untouched, minimizing=True)
  HBondEnergy(HBondOptions(decompose_bb_hb_into_pair_energies=True)).finalize_total_energy(hbond_set, untouched)
  assert dict(untouched) == {HBOND_SC: -3.0}


# -----------------------------
# Minimization
# -----------------------------


def _setup_pair(method, pose, hbond_set, i, j):
  caches = [MinimizationData(), MinimizationData()]
  r1, r2 = pose.residue(i), pose.residue(j)
  method.setup_for_minimizing_for_residue(r1, pose, hbond_set, caches[0])
  method.setup_for_minimizing_for_residue(r2, pose, hbond_set, caches[1])
  pair = MinimizationData()
  method.setup_for_minimizing_for_residue_pair(r1, r2, pose, caches[0], caches[1], pair)
  return pair


def _check_pair_derivatives(method, pose, i, j, weights):
  hbond_set = method.setup_for_scoring(pose)
  pair = _setup_pair(method, pose, hbond_set, i, j)
  r1, r2 = pose.residue(i), pose.residue(j)
  d1 = new_deriv_array(r1.natoms)
  d2 = new_deriv_array(r2.natoms)
  method.eval_residue_pair_derivatives(r1, r2, pair, pose, hbond_set, weights, d1, d2)

  def energy_moving_1(res):
    emap = EnergyMap()
    method.residue_pair_energy_ext(res, r2, pair, hbond_set, emap)
    return emap.dot(weights)

  def energy_moving_2(res):
    emap = EnergyMap()
    method.residue_pair_energy_ext(r1, res, pair, hbond_set, emap)
    return emap.dot(weights)

  assert energy_moving_1(r1) < 0.0
  for res, derivs, energy_fn in ((r1, d1, energy_moving_1), (r2, d2, energy_moving_2)):
    for atm in range(res.natoms):
      assert derivs[atm, 1] == pytest.approx(numeric_gradient(energy_fn, res, atm), abs=1e-5)
      assert derivs[atm, 0] == pytest.approx(np.cross(derivs[atm, 1], res.xyz(atm)), abs=1e-8)


def test_ext_energy_includes_backbone_bonds():
  pose = reference_pose()
  method = HBondEnergy(NO_ENV)
  hbond_set = method.setup_for_scoring(pose)
  pair = _setup_pair(method, pose, hbond_set, 0, 1)
  emap = EnergyMap()
  method.residue_pair_energy_ext(pose.residue(0), pose.residue(1), pair, hbond_set, emap)
  assert emap[HBOND_LR_BB] == pytest.approx(REFERENCE_ENERGY, abs=1e-6)


def test_ext_energy_uses_frozen_claims():
  pose = three_residue_pose()
  method = HBondEnergy()
  hbond_set = method.setup_for_scoring(pose)
  pair = _setup_pair(method, pose, hbond_set, 1, 2)
  emap = EnergyMap()
  method.residue_pair_energy_ext(pose.residue(1), pose.residue(2), pair, hbond_set, emap)
  assert emap[HBOND_BB_SC] == 0.0


def test_backbone_pair_derivatives():
  pose = reference_pose(h_shift=(0.0, 0.0, 0.3))
  _check_pair_derivatives(HBondEnergy(), pose, 0, 1, get_weights())


def test_ring_acceptor_derivatives():
  pose = Pose([histidine_acceptor(0), donor_gly(1, h_shift=(0.0, 0.0, 0.3))])
  _check_pair_derivatives(HBondEnergy(), pose, 0, 1, get_weights())


def test_side_chain_acceptor_derivatives():
  pose = Pose([donor_gly(0, h_shift=(0.0, 0.0, 0.1)), serine_acceptor(1)])
  _check_pair_derivatives(HBondEnergy(NO_ENV), pose, 0, 1, get_weights())


def test_water_derivatives():
  pose = Pose([acceptor_gly(0), water_donor(1)])
  weights = get_weights({"hbond_wat": 1.0, "wat_entropy": 1.0})
  _check_pair_derivatives(HBondEnergy(HBondOptions(water_hybrid_sf=True)), pose, 0, 1, weights)


def test_membrane_derivatives():
  pose = reference_pose(h_shift=(0.0, 0.0, 0.3))
  # both the hydrogen and the acceptor sit in the transition between core and solvent
  pose.membrane = MembraneInfo(normal=[1.0, 0.0, 0.0], center=[-14.0, 0.0, 0.0], thickness=15.0, steepness=10.0)
  _check_pair_derivatives(HBondEnergy(HBondOptions(mb_hbond=True)), pose, 0, 1, get_weights())


def test_intra_residue_derivatives():
  rsd = serine_intra(0)
  pose = Pose([rsd])
  method = HBondEnergy(HBondOptions(intra_res_hbonds=True))
  hbond_set = method.setup_for_scoring(pose)
  weights = get_weights({"hbond_intra": 1.0})
  derivs = new_deriv_array(rsd.natoms)
  method.eval_intrares_derivatives(rsd, pose, hbond_set, weights, derivs)

  def energy(res):
    emap = EnergyMap()
    method.eval_intrares_energy(res, pose, hbond_set, emap)
    return emap.dot(weights)

  assert energy(rsd) < 0.0
  for atm in range(rsd.natoms):
    assert derivs[atm, 1] == pytest.approx(numeric_gradient(energy, rsd, atm), abs=1e-5)
