"""Tests for the cached topology store"""

import json
import os
import time

import pytest
from conftest import FakeController, drive

from sas_led_control.errors import EmptyInventoryError
from sas_led_control.topology_store import TopologyStore


def make_store(settings, controller, ttl=300):
    return TopologyStore([controller], settings.cache_file, ttl=ttl)


def test_second_call_within_ttl_performs_no_queries(settings, two_adapter_controller):
    store = make_store(settings, two_adapter_controller)

    first = store.get_topology(False)
    queries = len(two_adapter_controller.queries)
    second = store.get_topology(False)

    assert queries == 3  # list + two displays
    assert len(two_adapter_controller.queries) == queries
    assert second is first


def test_force_refresh_always_rebuilds(settings, two_adapter_controller):
    store = make_store(settings, two_adapter_controller)
    store.get_topology(False)
    store.get_topology(True)
    store.get_topology(True)
    assert len(two_adapter_controller.queries) == 9


def test_fresh_cache_file_is_reused_by_a_new_store(settings, two_adapter_controller):
    make_store(settings, two_adapter_controller).get_topology(False)
    queries = len(two_adapter_controller.queries)

    snapshot = make_store(settings, two_adapter_controller).get_topology(False)

    assert len(two_adapter_controller.queries) == queries
    assert [d.serial for d in snapshot.drives] == ["A", "B", "C"]
    assert snapshot.find("c").adapter_id == "3"


def test_stale_cache_file_triggers_rebuild(settings, two_adapter_controller):
    make_store(settings, two_adapter_controller).get_topology(False)
    old = time.time() - 600
    os.utime(settings.cache_file, (old, old))
    queries = len(two_adapter_controller.queries)

    make_store(settings, two_adapter_controller).get_topology(False)

    assert len(two_adapter_controller.queries) == queries + 3


def test_stale_in_memory_snapshot_triggers_rebuild(settings, two_adapter_controller):
    store = make_store(settings, two_adapter_controller, ttl=0)
    store.get_topology(False)
    store.get_topology(False)
    assert len(two_adapter_controller.queries) == 6


def test_empty_rebuild_keeps_previous_snapshot(settings):
    controller = FakeController({"0": [drive("0", 2, 0, "A")]})
    store = make_store(settings, controller)
    previous = store.get_topology(False)
    with open(settings.cache_file) as f:
        cached = f.read()

    controller.drives_by_adapter = {"0": []}
    with pytest.raises(EmptyInventoryError):
        store.get_topology(True)

    assert store.snapshot is previous
    with open(settings.cache_file) as f:
        assert f.read() == cached


def test_empty_inventory_without_previous_snapshot(settings):
    store = make_store(settings, FakeController({}))
    with pytest.raises(EmptyInventoryError):
        store.get_topology(False)
    assert store.snapshot is None
    assert not os.path.exists(settings.cache_file)


def test_adapter_timeout_is_skipped(settings, two_adapter_controller):
    two_adapter_controller.timeout_adapters = {"0"}
    snapshot = make_store(settings, two_adapter_controller).get_topology(False)
    assert [d.serial for d in snapshot.drives] == ["C"]


def test_corrupt_cache_file_is_treated_as_stale(settings, two_adapter_controller):
    with open(settings.cache_file, "w") as f:
        f.write("{not json")

    snapshot = make_store(settings, two_adapter_controller).get_topology(False)

    assert len(snapshot) == 3
    with open(settings.cache_file) as f:
        assert json.load(f)["drives"][0]["serial"] == "A"


def test_controllers_are_merged(settings):
    sas2 = FakeController({"0": [drive("0", 2, 0, "A")]}, binary="sas2ircu")
    sas3 = FakeController({"0": [drive("0", 1, 0, "B", binary="sas3ircu")]}, binary="sas3ircu")
    store = TopologyStore([sas2, sas3], settings.cache_file)

    snapshot = store.get_topology(False)

    assert snapshot.adapter_keys == ["sas2ircu:0", "sas3ircu:0"]
