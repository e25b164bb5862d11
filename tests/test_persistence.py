"""Tests for saving and restoring colony state."""
import sys
import os
import json

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from colony import AgentType, ColonyModel, SenderType, Citation
from persistence import STORAGE_KEY, LocalStorage, StatePersistence


def busy_colony(seed=5):
    model = ColonyModel(seed=seed, vote_probability=1.0)
    genesis = model.seed_genesis()
    model.spawn_agent(AgentType.ANALYST, "Watcher", '{"zone": 4}', parent_id=genesis.agent_id)
    for step in range(6):
        model.propose_spawn(AgentType.RESEARCHER, f"r{step}", "{}")
        model.step()
    model.generate_intel(model.roster[1])
    model.send_comms(model.roster[0])
    model.push_message("hello", "User", SenderType.USER)
    model.push_message("greetings", "A.L.I.C.E. KERNEL", SenderType.SYSTEM, [Citation("https://example.org", "Example")])
    model.propose_policy("min_pas", 0.55)
    model.set_avatar(genesis.agent_id, "data:image/png;base64,AA==")
    return model


def without_logs(state):
    data = state.to_dict()
    data.pop("logs")
    return data


@pytest.fixture
def persistence(tmp_path):
    return StatePersistence(LocalStorage(str(tmp_path)))


def test_save_load_round_trip(persistence):
    model = busy_colony()
    before = model.to_state()
    counters = dict(model.counters)
    stats = dict(model.stats)
    assert persistence.save(model)
    assert model.logs[0] == "[SAVE] Kernel state saved to local storage."

    for _ in range(5):
        model.step()
    model.spawn_agent(AgentType.ENGINEER, "Late", "{}")

    assert persistence.load(model)
    after = model.to_state()
    assert without_logs(after) == without_logs(before)
    assert after.logs[0].startswith("[LOAD]")
    assert after.logs[1:] == before.logs[: len(after.logs) - 1]
    assert not any(line.startswith("[SAVE]") for line in after.logs)
    assert model.counters == counters
    assert model.stats == stats
    assert [a.agent_id for a in model.agents] == [a.id for a in before.agents]


def test_restored_model_keeps_running(persistence):
    model = busy_colony()
    persistence.save(model)
    other = ColonyModel(seed=99)
    assert persistence.load(other)
    restored = [a.agent_id for a in other.roster]
    for _ in range(5):
        other.step()
    assert [a.agent_id for a in other.roster][: len(restored)] == restored
    assert all(other.get_agent(agent_id).age >= 5 for agent_id in restored)


def test_load_without_blob_leaves_state(persistence):
    model = busy_colony()
    before = without_logs(model.to_state())
    assert not persistence.load(model)
    assert model.logs[0] == "[WARN] No saved state found."
    assert without_logs(model.to_state()) == before


def test_corrupt_blob_is_discarded(persistence):
    model = busy_colony()
    before = without_logs(model.to_state())
    persistence.storage.set_item(STORAGE_KEY, "{not json")
    assert not persistence.load(model)
    assert persistence.storage.get_item(STORAGE_KEY) is None
    assert model.logs[0] == "[ERROR] Saved state was corrupt and has been discarded."
    assert without_logs(model.to_state()) == before


def test_undecodable_blob_is_discarded(persistence, tmp_path):
    model = busy_colony()
    before = without_logs(model.to_state())
    (tmp_path / f"{STORAGE_KEY}.json").write_bytes(b"\xff\xfe{garbage")
    assert not persistence.load(model)
    assert persistence.storage.get_item(STORAGE_KEY) is None
    assert model.logs[0] == "[ERROR] Saved state was corrupt and has been discarded."
    assert without_logs(model.to_state()) == before


def test_structurally_invalid_blob_is_discarded(persistence):
    model = busy_colony()
    before = without_logs(model.to_state())
    persistence.storage.set_item(STORAGE_KEY, json.dumps({"state": {"agents": [{"id": "agent-x"}]}}))
    assert not persistence.load(model)
    assert persistence.storage.get_item(STORAGE_KEY) is None
    assert without_logs(model.to_state()) == before


def test_blob_without_feeds_loads(persistence):
    model = busy_colony()
    blob = model.export_blob()
    del blob["state"]["threats"]
    del blob["state"]["comms"]
    persistence.storage.set_item(STORAGE_KEY, json.dumps(blob))

    fresh = ColonyModel(seed=1)
    assert persistence.load(fresh)
    assert fresh.threats == []
    assert fresh.comms == []
    assert len(fresh.roster) == len(model.roster)


class FullStorage(LocalStorage):
    def set_item(self, key, value):
        raise OSError("quota exceeded")


def test_save_failure_is_logged(tmp_path):
    model = busy_colony()
    persistence = StatePersistence(FullStorage(str(tmp_path)))
    assert not persistence.save(model)
    assert model.logs[0] == "[ERROR] Failed to save state: quota exceeded"


def test_save_overwrites_previous_blob(persistence):
    model = busy_colony()
    persistence.save(model)
    model.spawn_agent(AgentType.ENGINEER, "Newer", "{}")
    persistence.save(model)
    blob = json.loads(persistence.storage.get_item(STORAGE_KEY))
    assert [a["role"] for a in blob["state"]["agents"]][-1] == "Newer"


def test_local_storage_keys(tmp_path):
    storage = LocalStorage(str(tmp_path))
    assert storage.get_item("a/b") is None
    storage.set_item("a/b", "value")
    assert storage.get_item("a/b") == "value"
    assert (tmp_path / "a_b.json").exists()
    storage.remove_item("a/b")
    storage.remove_item("a/b")
    assert storage.get_item("a/b") is None
