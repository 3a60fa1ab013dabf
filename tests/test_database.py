import shutil
from pathlib import Path

import pytest

from hbondsnap.hbonds.database import HBondDatabase, HBondDatabaseError, get_database
from hbondsnap.hbonds.types import HBEvalTuple

BUNDLED = Path(__file__).resolve().parent.parent / "src" / "hbondsnap" / "hbond_lib" / "default"


@pytest.fixture
def table_dir(tmp_path):
  for name in ("HBPoly1D.csv", "HBFadeIntervals.csv", "HBEval.csv"):
    shutil.copy(BUNDLED / name, tmp_path / name)
  return tmp_path


def _append(path: Path, line: str):
  with open(path, "a") as f:
    f.write(line + "\n")


def test_bundled_database_is_cached():
  db = get_database()
  assert db is get_database("default")
  assert db.tag == "default"
  assert "AHdist_bb" in db.polys
  assert ("PBA", "PBA", "*") in db.evals


def test_load_from_directory(table_dir):
  db = HBondDatabase.load(table_dir, tag="copy")
  assert db.tag == "copy"
  assert len(db.evals) == len(get_database().evals)


@pytest.mark.parametrize(
  "hbe, ahdist",
  [
    (HBEvalTuple("PBA", "PBA", None), "AHdist_bb"),
    (HBEvalTuple("PBA", "PBA", 10), "AHdist_bb"),
    (HBEvalTuple("PBA", "PBA", 1), "AHdist_sc"),
    (HBEvalTuple("AMO", "CXL", None), "AHdist_charged"),
    (HBEvalTuple("HXL", "CXL", None), "AHdist_sc"),
    (HBEvalTuple("PBA", "PCA_DNA", None), "AHdist_charged"),
  ],
)
def test_lookup_falls_back_to_wildcards(hbe, ahdist):
  assert get_database().lookup(hbe).AHdist.name == ahdist


def test_lookup_unknown_acceptor_uses_catch_all():
  params = get_database().lookup(HBEvalTuple("PBA", "XYZ", None))
  assert params is not None
  assert params.cosBAH.name == "cosBAH_sp3"


def test_missing_table_is_fatal(tmp_path):
  with pytest.raises(HBondDatabaseError, match="HBPoly1D.csv"):
    HBondDatabase.load(tmp_path)


def test_wrong_column_count_is_fatal(table_dir):
  _append(table_dir / "HBPoly1D.csv", "broken,1.0,2.0")
  with pytest.raises(HBondDatabaseError, match="expected 4 columns"):
    HBondDatabase.load(table_dir)


def test_non_numeric_value_is_fatal(table_dir):
  _append(table_dir / "HBFadeIntervals.csv", "fade_bad,0.1,abc,1.0,1.1")
  with pytest.raises(HBondDatabaseError, match="cannot read numbers"):
    HBondDatabase.load(table_dir)


def test_unordered_fade_is_fatal(table_dir):
  _append(table_dir / "HBFadeIntervals.csv", "fade_bad,0.5,0.1,1.0,1.1")
  with pytest.raises(HBondDatabaseError, match="not ordered"):
    HBondDatabase.load(table_dir)


def test_unknown_function_is_fatal(table_dir):
  _append(table_dir / "HBEval.csv", "HXL,HXL,*,AHdist_missing,cosAHD_std,cosBAH_sp3,fade_rAH,fade_xD,fade_xH_sp3,0.0")
  with pytest.raises(HBondDatabaseError, match="unknown function AHdist_missing"):
    HBondDatabase.load(table_dir)


def test_error_names_line(table_dir):
  path = table_dir / "HBPoly1D.csv"
  nlines = len(path.read_text().splitlines())
  _append(path, "broken,1.0")
  with pytest.raises(HBondDatabaseError, match=f"HBPoly1D.csv:{nlines + 1}"):
    HBondDatabase.load(table_dir)
