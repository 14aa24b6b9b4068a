"""
test_dashboard_cache.py

Testes do cache local do painel financeiro.
"""

import json

from settlement.client.dashboard_cache import DashboardCache


def test_save_and_load(tmp_path):
    cache = DashboardCache(str(tmp_path / "painel.json"))

    assert cache.load() is None
    assert cache.save({"pendingCount": 2, "pendingAmount": 250.0}) is True

    snapshot = cache.load()
    assert snapshot["pendingCount"] == 2
    assert snapshot["pendingAmount"] == 250.0
    assert isinstance(snapshot["lastUpdated"], int)
    # A gravação é atômica: o arquivo temporário não permanece
    assert not (tmp_path / "painel.json.tmp").exists()


def test_save_replaces_previous_snapshot(tmp_path):
    cache = DashboardCache(str(tmp_path / "painel.json"))
    cache.save({"pendingCount": 1})
    cache.save({"approvedCount": 3})

    snapshot = cache.load()
    assert "pendingCount" not in snapshot
    assert snapshot["approvedCount"] == 3


def test_corrupted_cache_returns_none(tmp_path):
    path = tmp_path / "painel.json"
    path.write_text("{nao e json", encoding="utf-8")

    assert DashboardCache(str(path)).load() is None


def test_unserializable_data_is_not_saved(tmp_path):
    path = tmp_path / "painel.json"
    cache = DashboardCache(str(path))

    assert cache.save({"quando": object()}) is False
    assert not path.exists()


def test_clear(tmp_path):
    path = tmp_path / "painel.json"
    cache = DashboardCache(str(path))
    cache.save({"pendingCount": 0})
    cache.clear()

    assert not path.exists()
    assert cache.load() is None
    # Limpar sem arquivo não gera erro
    cache.clear()


def test_snapshot_is_plain_json(tmp_path):
    path = tmp_path / "painel.json"
    DashboardCache(str(path)).save({"fornecedor": "Loja São João"})

    with open(path, encoding="utf-8") as cache_file:
        assert json.load(cache_file)["fornecedor"] == "Loja São João"
