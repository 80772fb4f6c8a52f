"""Tests des scripts d'exploitation (initialisation du magasin)."""

from __future__ import annotations

import json
from pathlib import Path

from scripts.init_data import SAMPLE_PROPOSALS, main, seed


def test_seed_writes_sample(tmp_path: Path) -> None:
    path = tmp_path / "data" / "proposals.json"
    assert seed(path) == len(SAMPLE_PROPOSALS)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data[0]["id"] == 1
    assert data[0]["votes"] == 15


def test_seed_keeps_existing_without_force(tmp_path: Path) -> None:
    path = tmp_path / "proposals.json"
    path.write_text('[{"id": "p_keep"}]', encoding="utf-8")
    assert seed(path) == 0
    assert json.loads(path.read_text(encoding="utf-8")) == [{"id": "p_keep"}]


def test_seed_force_overwrites(tmp_path: Path) -> None:
    path = tmp_path / "proposals.json"
    path.write_text('[{"id": "p_old"}]', encoding="utf-8")
    assert seed(path, force=True) == 1
    assert [r["id"] for r in json.loads(path.read_text(encoding="utf-8"))] == [1]


def test_main_exit_codes(tmp_path: Path, capsys) -> None:
    path = tmp_path / "proposals.json"
    assert main([str(path)]) == 0
    assert main([str(path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert main([str(path), "--force"]) == 0
