import argparse
import json
import os

import numpy as np

from colony import AgentType, ColonyModel, Policy
from config import setup_logging
from persistence import LocalStorage, StatePersistence


parser = argparse.ArgumentParser(description="Headless A.L.I.C.E. colony run")
parser.add_argument("--steps", type=int, default=200)
parser.add_argument("--seed", type=int, default=42)

parser.add_argument("--minpas", type=float, default=0.5)
parser.add_argument("--maxagents", type=int, default=15)
parser.add_argument("--approvalthreshold", type=float, default=0.6)
parser.add_argument("--voteprobability", type=float, default=0.5)

parser.add_argument("--proposeevery", type=int, default=10,
                    help="submit a spawn proposal every N steps (0 disables)")
parser.add_argument("--agenttype", type=str, default=None,
                    choices=[t.value for t in AgentType],
                    help="type of proposed agents (random when omitted)")
parser.add_argument("--config", type=str, default="{}",
                    help="JSON configuration for proposed agents")

parser.add_argument("--storage", type=str, default="./storage")
parser.add_argument("--load", action="store_true", default=False)
parser.add_argument("--save", action="store_true", default=False)
parser.add_argument("--results", type=str, default="results")
parser.add_argument("--loglevel", type=str, default="WARNING")

args, unknown = parser.parse_known_args()


def main() -> None:
    setup_logging(args.loglevel)
    model = ColonyModel(
        seed=args.seed,
        policy=Policy.from_dict(
            dict(
                min_pas=args.minpas,
                max_agents=args.maxagents,
                approval_threshold=args.approvalthreshold,
            )
        ),
        vote_probability=args.voteprobability,
    )
    persistence = StatePersistence(LocalStorage(args.storage))
    if args.load and not persistence.load(model):
        print("No usable saved state; starting a fresh colony.")
    model.seed_genesis()

    print("Starting colony simulation...")
    kinds = list(AgentType)
    for step in range(args.steps):
        if args.proposeevery and step % args.proposeevery == 0:
            kind = AgentType(args.agenttype) if args.agenttype else kinds[int(model.rng.integers(len(kinds)))]
            model.propose_spawn(kind, f"{kind.value}-{step}", args.config)
        model.step()
        if step % 50 == 0:
            print(
                f"Step {step} | Identity={model.identity} "
                f"Agents={len(model.roster)} "
                f"PAS={model.average_pas:.2f} "
                f"Pending={len(model.proposals)}"
            )

    print("\n" + "=" * 30 + " COLONY REPORT " + "=" * 30)
    print(f"{'Agent':16} {'Type':12} {'Role':22} {'PAS':>6} {'Age':>5} {'Tasks':>6} {'Ideas':>6} {'Votes':>6}")
    print("-" * 86)
    for a in model.roster:
        print(
            f"{a.agent_id:16} {a.agent_type.value:12} {a.role[:22]:22} {a.pas:6.2f} {a.age:5d} "
            f"{a.metrics.tasks_completed:6d} {a.metrics.ideas_generated:6d} {a.metrics.decisions_made:6d}"
        )

    by_type = {}
    for a in model.roster:
        by_type.setdefault(a.agent_type.value, []).append(a.pas)
    print("\n-- PAS by type --")
    for kind, scores in sorted(by_type.items()):
        print(f"{kind:12} n={len(scores):3d} mean={np.mean(scores):.3f} min={np.min(scores):.3f}")

    print(f"\nPolicy: {json.dumps(model.policy.to_dict())}")
    print(
        f"Proposals passed={model.stats['proposals_passed']} "
        f"failed={model.stats['proposals_failed']} "
        f"rejected={model.stats['proposals_rejected']} "
        f"pending={len(model.proposals)}"
    )
    print(f"Threats reported={len(model.threats)} | Comms={len(model.comms)}")

    os.makedirs(args.results, exist_ok=True)
    history = model.datacollector.get_model_vars_dataframe()
    history.to_csv(os.path.join(args.results, "colony_history.csv"), index_label="step")
    with open(os.path.join(args.results, "final_state.json"), "w", encoding="utf-8") as f:
        json.dump(model.to_state().to_dict(), f, ensure_ascii=False, indent=2)
    print(
        f"Data saved to {args.results}/colony_history.csv and "
        f"{args.results}/final_state.json"
    )

    if args.save:
        persistence.save(model)
        print(f"State saved to {args.storage}")


if __name__ == "__main__":
    main()
