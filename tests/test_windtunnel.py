"""Tests for the policy wind tunnel."""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from governance_windtunnel import PolicyConfig, evaluate_policies


def test_one_row_per_policy_and_seed():
    policies = [
        PolicyConfig(name="open", min_pas=0.3, max_agents=6, approval_threshold=0.5),
        PolicyConfig(name="strict", min_pas=0.8, max_agents=4, approval_threshold=0.9),
    ]
    df = evaluate_policies(policies, seeds=[1, 2], steps=25, proposal_interval=2)
    assert len(df) == 4
    assert set(df["policy"]) == {"open", "strict"}
    assert sorted(df["seed"].unique().tolist()) == [1, 2]
    limits = {p.name: p.max_agents for p in policies}
    for _, row in df.iterrows():
        assert row["peak_population"] <= limits[row["policy"]]
        assert 1 <= row["population"] <= row["peak_population"]
        assert 0.0 <= row["average_pas"] <= 1.0


def test_windtunnel_is_reproducible():
    policies = [PolicyConfig(name="baseline")]
    first = evaluate_policies(policies, seeds=[3], steps=15)
    second = evaluate_policies(policies, seeds=[3], steps=15)
    assert first.to_dict("records") == second.to_dict("records")


def test_open_policy_admits_more_agents():
    policies = [
        PolicyConfig(name="open", min_pas=0.0, max_agents=10, approval_threshold=0.1, vote_probability=1.0),
        PolicyConfig(name="closed", min_pas=1.0, max_agents=10, approval_threshold=1.0, vote_probability=1.0),
    ]
    df = evaluate_policies(policies, seeds=[5], steps=20, proposal_interval=2).set_index("policy")
    assert df.loc["open", "population"] > df.loc["closed", "population"]
    assert df.loc["closed", "proposals_passed"] == 0
