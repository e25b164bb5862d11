from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from colony import AgentType, ColonyModel, Policy


@dataclass
class PolicyConfig:
    name: str
    min_pas: float = 0.5
    max_agents: int = 15
    approval_threshold: float = 0.6
    vote_probability: float = 0.5


def evaluate_policies(
    policies: List[PolicyConfig],
    seeds: List[int],
    steps: int,
    proposal_interval: int = 5,
) -> pd.DataFrame:
    """Run each policy on every seed and return one row of outcomes per run."""
    kinds = list(AgentType)
    rows = []
    for policy in policies:
        for seed in seeds:
            model = ColonyModel(
                seed=seed,
                policy=Policy(
                    min_pas=policy.min_pas,
                    max_agents=policy.max_agents,
                    approval_threshold=policy.approval_threshold,
                ),
                vote_probability=policy.vote_probability,
            )
            model.seed_genesis()
            for step in range(steps):
                if proposal_interval and step % proposal_interval == 0:
                    kind = kinds[step // proposal_interval % len(kinds)]
                    model.propose_spawn(kind, f"{kind.value}-{step}", "{}")
                model.step()
            history = model.datacollector.get_model_vars_dataframe()
            rows.append(
                dict(
                    policy=policy.name,
                    seed=seed,
                    population=len(model.roster),
                    average_pas=model.average_pas,
                    pas_std=float(np.std([a.pas for a in model.roster])) if model.roster else 0.0,
                    proposals_passed=model.stats["proposals_passed"],
                    proposals_failed=model.stats["proposals_failed"],
                    proposals_rejected=model.stats["proposals_rejected"],
                    pending=len(model.proposals),
                    threats=len(model.threats),
                    peak_population=int(history["population"].max()),
                    final_min_pas=model.policy.min_pas,
                    final_approval_threshold=model.policy.approval_threshold,
                )
            )
    return pd.DataFrame(rows)
