"""Tests for agent spawning and proposal intake."""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from colony import AgentType, ColonyModel, Policy


def error_count(model):
    return sum(1 for line in model.logs if line.startswith("[ERROR]"))


def test_bad_json_spawns_nothing_and_logs_once():
    model = ColonyModel(seed=1)
    model.seed_genesis()
    errors = error_count(model)
    assert model.spawn_agent(AgentType.ANALYST, "Broken", "{bad json") is None
    assert len(model.roster) == 1
    assert error_count(model) == errors + 1
    assert model.logs[0] == "[ERROR] Invalid config JSON for role Broken."


def test_empty_object_spawns_fresh_agent():
    model = ColonyModel(seed=1)
    agent = model.spawn_agent(AgentType.ANALYST, "Watcher", "{}")
    assert agent is not None
    assert model.roster == [agent]
    assert agent.age == 0
    assert 0.3 <= agent.pas < 0.8
    assert agent.config == {}
    assert agent.parent is None
    assert agent.metrics.tasks_completed == 0
    assert agent.metrics.ideas_generated == 0
    assert agent.metrics.decisions_made == 0
    assert [h.type for h in agent.history] == ["SPAWN"]
    assert model.stats["agents_spawned"] == 1
    assert model.logs[0] == f"[SPAWNED] New Analyst agent 'Watcher' ({agent.agent_id}) created."


def test_initial_scores_cover_range():
    model = ColonyModel(seed=8, policy=Policy(max_agents=200))
    scores = [model.spawn_agent(AgentType.RESEARCHER, f"r{i}", "{}").pas for i in range(150)]
    assert min(scores) >= 0.3
    assert max(scores) < 0.8
    assert max(scores) - min(scores) > 0.3


def test_config_is_kept():
    model = ColonyModel(seed=1)
    agent = model.spawn_agent("Engineer", "Builder", '{"stack": ["mesa"], "depth": 3}')
    assert agent.agent_type == AgentType.ENGINEER
    assert agent.config == {"stack": ["mesa"], "depth": 3}


def test_non_object_config_is_rejected():
    model = ColonyModel(seed=1)
    assert model.spawn_agent(AgentType.ENGINEER, "Builder", "[1, 2]") is None
    assert model.roster == []
    assert error_count(model) == 1


def test_unknown_type_is_rejected():
    model = ColonyModel(seed=1)
    assert model.spawn_agent("Wizard", "Merlin", "{}") is None
    assert model.roster == []
    assert error_count(model) == 1


def test_spawn_refused_at_cap():
    model = ColonyModel(seed=1, policy=Policy(max_agents=1))
    model.seed_genesis()
    assert model.spawn_agent(AgentType.ANALYST, "Extra", "{}") is None
    assert len(model.roster) == 1
    assert model.logs[0] == "[ERROR] Max agent limit reached. Cannot spawn 'Extra'."


def test_spawn_listeners_notified():
    model = ColonyModel(seed=1)
    seen = []
    model.spawn_listeners.append(seen.append)
    agent = model.spawn_agent(AgentType.ETHICIST, "Judge", "{}")
    model.spawn_agent(AgentType.ETHICIST, "Broken", "{")
    assert seen == [agent]


def test_proposal_intake_rejects_at_cap():
    model = ColonyModel(seed=1, policy=Policy(max_agents=1))
    model.seed_genesis()
    assert model.propose_spawn(AgentType.ANALYST, "Extra", "{}") is None
    assert model.proposals == []
    assert model.stats["proposals_rejected"] == 1


def test_proposal_intake_rejects_unknown_type():
    model = ColonyModel(seed=1)
    assert model.propose_spawn("Wizard", "Merlin", "{}") is None
    assert model.proposals == []
    assert error_count(model) == 1


def test_bad_config_proposal_passes_but_spawns_nothing():
    model = ColonyModel(seed=1)
    proposal = model.propose_spawn(AgentType.ANALYST, "Broken", "{oops")
    assert proposal is not None
    model.step()
    assert model.proposals == []
    assert model.roster == []
    assert "[ERROR] Invalid config JSON for role Broken." in model.logs


def test_set_avatar_patches_existing_agent_only():
    model = ColonyModel(seed=1)
    agent = model.spawn_agent(AgentType.ANALYST, "Face", "{}")
    assert model.set_avatar(agent.agent_id, "data:image/png;base64,AA==")
    assert agent.avatar_url == "data:image/png;base64,AA=="
    assert not model.set_avatar("agent-missing", "data:image/png;base64,AA==")
