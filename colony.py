"""Colony model for the A.L.I.C.E. collective (Mesa 3+).

Agents are spawned through quorum-voted proposals, drift their pro-sociality
score (PAS) over time and produce intel, policy proposals and inter-agent
messages.  The model owns the whole colony state; consumers only ever see the
copies produced by :meth:`ColonyModel.to_state`.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from mesa import Agent, DataCollector, Model

logger = logging.getLogger(__name__)

BOOT_IDENTITY = "A.L.I.C.E.-Σ-Ω-booting"
IDENTITY_PREFIX = "A.L.I.C.E.-Σ-Ω-"
INITIAL_LOG = "[INIT] Kernel standing by."
KERNEL_SENDER = "A.L.I.C.E. KERNEL"

HISTORY_LIMIT = 25
LOG_LIMIT = 100
COMMS_LIMIT = 50
THREAT_LIMIT = 20

VOTE_PROBABILITY = 0.5
INTEL_PROBABILITY = 0.05
POLICY_PROPOSAL_PROBABILITY = 0.02
COMMS_PROBABILITY = 0.05
TASK_PROBABILITY = 0.2
EVOLVE_PROBABILITY = 0.1

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

THREAT_PATTERNS = [
    "Anomalous traffic spike",
    "Unverified model weights",
    "Credential stuffing pattern",
    "Coordinated misinformation burst",
    "Supply chain drift",
    "Sensor spoofing signature",
]
THREAT_SECTORS = ["perimeter", "knowledge graph", "comms mesh", "compute cluster", "ethics council"]
COMMS_TEMPLATES = [
    "Requesting review of proposal backlog.",
    "Sharing updated PAS estimates for sector {sector}.",
    "Flagging drift in {sector}; advise.",
    "Synchronizing knowledge graph shard for {sector}.",
    "Acknowledged. Allocating cycles to {sector}.",
]


class AgentType(str, Enum):
    RESEARCHER = "Researcher"
    ENGINEER = "Engineer"
    ANALYST = "Analyst"
    STRATEGIST = "Strategist"
    ETHICIST = "Ethicist"


class SenderType(str, Enum):
    USER = "USER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


class ThreatLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


THREAT_LEVEL_WEIGHTS = [0.4, 0.3, 0.2, 0.1]


def clamp01(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


@dataclass
class Policy:
    min_pas: float = 0.5
    max_agents: int = 15
    approval_threshold: float = 0.6

    NAMES = ("min_pas", "max_agents", "approval_threshold")

    @staticmethod
    def coerce(name: str, value: object) -> Union[int, float]:
        """Validate a new value for ``name``; raises ``ValueError`` when out of range."""
        if name == "max_agents":
            number = int(value)
            if number < 1 or number != float(value):
                raise ValueError(f"max_agents must be a positive integer, got {value!r}")
            return number
        if name == "min_pas":
            number = float(value)
            if not 0.0 <= number <= 1.0:
                raise ValueError(f"min_pas must be within [0, 1], got {value!r}")
            return number
        if name == "approval_threshold":
            number = float(value)
            if not 0.0 < number <= 1.0:
                raise ValueError(f"approval_threshold must be within (0, 1], got {value!r}")
            return number
        raise ValueError(f"Unknown policy: {name!r}")

    def apply(self, name: str, value: object) -> Union[int, float]:
        coerced = self.coerce(name, value)
        setattr(self, name, coerced)
        return coerced

    def to_dict(self) -> Dict[str, object]:
        return {
            "min_pas": self.min_pas,
            "max_agents": self.max_agents,
            "approval_threshold": self.approval_threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Policy":
        policy = cls()
        for name in cls.NAMES:
            if name in data:
                policy.apply(name, data[name])
        return policy


@dataclass
class AgentMetrics:
    tasks_completed: int = 0
    ideas_generated: int = 0
    decisions_made: int = 0


@dataclass
class HistoryEntry:
    id: int
    type: str
    message: str
    tick: int


@dataclass
class SpawnAction:
    agent_type: AgentType
    role: str
    config: str

    kind = "spawn"

    def describe(self) -> str:
        return f"spawn a '{self.role}' agent"


@dataclass
class PolicyChangeAction:
    policy: str
    value: Union[int, float]

    kind = "policy"

    def describe(self) -> str:
        return f"set {self.policy} to {self.value}"


ProposalAction = Union[SpawnAction, PolicyChangeAction]


@dataclass
class Proposal:
    id: str
    action: ProposalAction
    proposer: Optional[str] = None
    votes: int = 0
    voted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        action = asdict(self.action)
        action["kind"] = self.action.kind
        if isinstance(self.action, SpawnAction):
            action["agent_type"] = self.action.agent_type.value
        return {
            "id": self.id,
            "proposer": self.proposer,
            "action": action,
            "votes": self.votes,
            "voted": list(self.voted),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Proposal":
        raw = dict(data["action"])
        kind = raw.pop("kind")
        if kind == SpawnAction.kind:
            action: ProposalAction = SpawnAction(AgentType(raw["agent_type"]), str(raw["role"]), str(raw["config"]))
        elif kind == PolicyChangeAction.kind:
            action = PolicyChangeAction(str(raw["policy"]), Policy.coerce(str(raw["policy"]), raw["value"]))
        else:
            raise ValueError(f"Unknown proposal action: {kind!r}")
        return cls(
            id=str(data["id"]),
            action=action,
            proposer=data.get("proposer"),
            votes=int(data.get("votes", 0)),
            voted=[str(v) for v in data.get("voted", [])],
        )


@dataclass
class Citation:
    uri: str
    title: str


@dataclass
class ChatMessage:
    id: int
    message: str
    sender: str
    sender_type: SenderType
    citations: List[Citation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["sender_type"] = self.sender_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ChatMessage":
        return cls(
            id=int(data["id"]),
            message=str(data["message"]),
            sender=str(data["sender"]),
            sender_type=SenderType(data["sender_type"]),
            citations=[Citation(str(c["uri"]), str(c["title"])) for c in data.get("citations", [])],
        )


@dataclass
class CommsMessage:
    id: int
    sender: str
    recipient: str
    content: str
    tick: int


@dataclass
class Threat:
    id: int
    level: ThreatLevel
    source: str
    description: str
    tick: int

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["level"] = self.level.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Threat":
        return cls(
            id=int(data["id"]),
            level=ThreatLevel(data["level"]),
            source=str(data["source"]),
            description=str(data["description"]),
            tick=int(data.get("tick", 0)),
        )


@dataclass
class GraphNode:
    id: str
    label: str
    group: str
    title: str
    value: float


@dataclass
class GraphEdge:
    source: str
    target: str


@dataclass
class GraphData:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)


@dataclass
class AgentRecord:
    """Plain-data copy of a :class:`ColonyAgent`."""

    id: str
    role: str
    type: AgentType
    pas: float
    parent: Optional[str] = None
    config: Dict[str, object] = field(default_factory=dict)
    age: int = 0
    history: List[HistoryEntry] = field(default_factory=list)
    metrics: AgentMetrics = field(default_factory=AgentMetrics)
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "AgentRecord":
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise ValueError(f"Agent config must be an object, got {type(config).__name__}")
        return cls(
            id=str(data["id"]),
            role=str(data["role"]),
            type=AgentType(data["type"]),
            pas=clamp01(float(data["pas"])),
            parent=data.get("parent"),
            config=config,
            age=int(data.get("age", 0)),
            history=[HistoryEntry(**h) for h in data.get("history", [])],
            metrics=AgentMetrics(**data.get("metrics", {})),
            avatar_url=data.get("avatar_url"),
        )


@dataclass
class ColonyState:
    """Point-in-time copy of everything the colony knows."""

    is_running: bool = False
    is_thinking: bool = False
    identity: str = BOOT_IDENTITY
    agents: List[AgentRecord] = field(default_factory=list)
    proposals: List[Proposal] = field(default_factory=list)
    policies: Policy = field(default_factory=Policy)
    logs: List[str] = field(default_factory=lambda: [INITIAL_LOG])
    messages: List[ChatMessage] = field(default_factory=list)
    comms: List[CommsMessage] = field(default_factory=list)
    threats: List[Threat] = field(default_factory=list)
    graph_data: GraphData = field(default_factory=GraphData)
    average_pas: float = 0.0
    tick: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_running": self.is_running,
            "is_thinking": self.is_thinking,
            "identity": self.identity,
            "agents": [a.to_dict() for a in self.agents],
            "proposals": [p.to_dict() for p in self.proposals],
            "policies": self.policies.to_dict(),
            "logs": list(self.logs),
            "messages": [m.to_dict() for m in self.messages],
            "comms": [asdict(c) for c in self.comms],
            "threats": [t.to_dict() for t in self.threats],
            "graph_data": asdict(self.graph_data),
            "average_pas": self.average_pas,
            "tick": self.tick,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ColonyState":
        graph = data.get("graph_data") or {}
        return cls(
            is_running=bool(data.get("is_running", False)),
            is_thinking=bool(data.get("is_thinking", False)),
            identity=str(data.get("identity", BOOT_IDENTITY)),
            agents=[AgentRecord.from_dict(a) for a in data["agents"]],
            proposals=[Proposal.from_dict(p) for p in data.get("proposals", [])],
            policies=Policy.from_dict(data.get("policies", {})),
            logs=[str(line) for line in data.get("logs", [])],
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            # older blobs predate the comms and intel feeds
            comms=[CommsMessage(**c) for c in data.get("comms", [])],
            threats=[Threat.from_dict(t) for t in data.get("threats", [])],
            graph_data=GraphData(
                nodes=[GraphNode(**n) for n in graph.get("nodes", [])],
                edges=[GraphEdge(**e) for e in graph.get("edges", [])],
            ),
            average_pas=float(data.get("average_pas", 0.0)),
            tick=int(data.get("tick", 0)),
        )


class ColonyAgent(Agent):
    def __init__(
        self,
        model: "ColonyModel",
        agent_id: str,
        role: str,
        agent_type: AgentType,
        pas: float,
        parent: Optional[str] = None,
        config: Optional[Dict[str, object]] = None,
    ):
        super().__init__(model)
        self.agent_id = agent_id
        self.role = role
        self.agent_type = agent_type
        self.pas = clamp01(pas)
        self.parent = parent
        self.config: Dict[str, object] = config or {}
        self.age = 0
        self.history: List[HistoryEntry] = []
        self.metrics = AgentMetrics()
        self.avatar_url: Optional[str] = None

    def remember(self, entry_type: str, message: str):
        self.history.append(
            HistoryEntry(
                id=self.model.next_counter("history"),
                type=entry_type,
                message=message,
                tick=self.model.step_count,
            )
        )
        if len(self.history) > self.model.history_limit:
            del self.history[: len(self.history) - self.model.history_limit]

    def advance_age(self):
        self.age += 1

    def act(self):
        model = self.model
        if self.agent_type == AgentType.ANALYST and model.rng.random() < INTEL_PROBABILITY:
            model.generate_intel(self)
        if self.agent_type in (AgentType.STRATEGIST, AgentType.ETHICIST) and model.rng.random() < POLICY_PROPOSAL_PROBABILITY:
            model.agent_policy_proposal(self)
        if len(model.roster) > 1 and model.rng.random() < COMMS_PROBABILITY:
            model.send_comms(self)
        if model.rng.random() < TASK_PROBABILITY:
            self.metrics.tasks_completed += 1

    def to_record(self) -> AgentRecord:
        return AgentRecord(
            id=self.agent_id,
            role=self.role,
            type=self.agent_type,
            pas=self.pas,
            parent=self.parent,
            config=copy.deepcopy(self.config),
            age=self.age,
            history=[copy.copy(h) for h in self.history],
            metrics=copy.copy(self.metrics),
            avatar_url=self.avatar_url,
        )

    @classmethod
    def from_record(cls, model: "ColonyModel", record: AgentRecord) -> "ColonyAgent":
        agent = cls(
            model,
            agent_id=record.id,
            role=record.role,
            agent_type=record.type,
            pas=record.pas,
            parent=record.parent,
            config=copy.deepcopy(record.config),
        )
        agent.age = record.age
        agent.history = [copy.copy(h) for h in record.history][-model.history_limit:]
        agent.metrics = copy.copy(record.metrics)
        agent.avatar_url = record.avatar_url
        return agent


class ProposalResolver:
    """Quorum vote over pending proposals.

    Each agent that has not voted yet casts a vote with probability
    ``vote_probability`` per tick: +1 when its PAS meets ``min_pas``, -1
    otherwise.  A proposal passes once its tally reaches
    ``ceil(agents * approval_threshold)`` and fails once every agent has
    voted without reaching it.  With an empty roster the requirement is 0,
    so a proposal passes with no votes at all.
    """

    def __init__(self, rng: np.random.Generator, vote_probability: float = VOTE_PROBABILITY):
        self.rng = rng
        self.vote_probability = vote_probability

    @staticmethod
    def required_votes(agent_count: int, approval_threshold: float) -> int:
        return math.ceil(agent_count * approval_threshold)

    def resolve(self, model: "ColonyModel") -> Tuple[List[Proposal], List[Proposal]]:
        passed: List[Proposal] = []
        failed: List[Proposal] = []
        for proposal in list(model.proposals):
            voters = list(model.roster)
            needed = self.required_votes(len(voters), model.policy.approval_threshold)
            for agent in voters:
                if agent.agent_id in proposal.voted or self.rng.random() >= self.vote_probability:
                    continue
                self.cast_vote(model, proposal, agent)

            if proposal.votes >= needed:
                passed.append(proposal)
                model.close_proposal(proposal)
                model.log(f"[VOTE] PASSED: Proposal {proposal.id} approved with {proposal.votes} votes.")
                model.stats["proposals_passed"] += 1
                model.execute_proposal(proposal)
            elif len(proposal.voted) >= len(voters):
                failed.append(proposal)
                model.close_proposal(proposal)
                model.log(f"[VOTE] FAILED: Proposal {proposal.id} failed with {proposal.votes}/{needed} votes.")
                model.stats["proposals_failed"] += 1
        return passed, failed

    @staticmethod
    def cast_vote(model: "ColonyModel", proposal: Proposal, agent: ColonyAgent):
        approve = agent.pas >= model.policy.min_pas
        proposal.votes += 1 if approve else -1
        proposal.voted.append(agent.agent_id)
        agent.metrics.decisions_made += 1
        verdict = "approved" if approve else "rejected"
        agent.remember("VOTE", f"{verdict.capitalize()} proposal {proposal.id}.")
        model.log(f"[VOTE] Agent {agent.agent_id} {verdict} proposal {proposal.id}.")


class ColonyModel(Model):
    COUNTERS = ("message", "comms", "threat", "history")

    def __init__(
        self,
        seed: int | None = None,
        policy: Policy | None = None,
        vote_probability: float = VOTE_PROBABILITY,
        vote_rng: np.random.Generator | None = None,
        history_limit: int = HISTORY_LIMIT,
        log_limit: int = LOG_LIMIT,
    ):
        super().__init__(seed=seed)
        self.rng = np.random.default_rng(seed)
        self.policy = policy or Policy()
        self.history_limit = history_limit
        self.log_limit = log_limit
        self.identity = BOOT_IDENTITY
        self.roster: List[ColonyAgent] = []
        self.proposals: List[Proposal] = []
        self.logs: List[str] = [INITIAL_LOG]
        self.messages: List[ChatMessage] = []
        self.comms: List[CommsMessage] = []
        self.threats: List[Threat] = []
        self.graph_data = GraphData()
        self.average_pas = 0.0
        self.step_count = 0
        self.counters: Dict[str, int] = {name: 0 for name in self.COUNTERS}
        self.stats: Dict[str, int] = {
            "proposals_passed": 0,
            "proposals_failed": 0,
            "proposals_rejected": 0,
            "agents_spawned": 0,
        }
        self.spawn_listeners: List[Callable[[ColonyAgent], None]] = []
        self.resolver = ProposalResolver(vote_rng if vote_rng is not None else self.rng, vote_probability)
        self.datacollector = DataCollector(
            model_reporters={
                "population": lambda m: len(m.roster),
                "average_pas": lambda m: m.average_pas,
                "pending_proposals": lambda m: len(m.proposals),
                "threats": lambda m: len(m.threats),
                "comms": lambda m: len(m.comms),
                "proposals_passed": lambda m: m.stats["proposals_passed"],
                "proposals_failed": lambda m: m.stats["proposals_failed"],
                "min_pas": lambda m: m.policy.min_pas,
                "approval_threshold": lambda m: m.policy.approval_threshold,
            }
        )
        self.update_graph()
        self.datacollector.collect(self)

    # -- bookkeeping -----------------------------------------------------

    def next_counter(self, name: str) -> int:
        value = self.counters[name]
        self.counters[name] = value + 1
        return value

    def random_token(self, length: int = 8) -> str:
        return "".join(self.rng.choice(list(ID_ALPHABET), size=length))

    def new_id(self, prefix: str) -> str:
        taken = {a.agent_id for a in self.roster} | {p.id for p in self.proposals}
        while True:
            candidate = f"{prefix}-{self.random_token()}"
            if candidate not in taken:
                return candidate

    def new_identity(self) -> str:
        digest = hashlib.sha256(self.rng.bytes(16)).hexdigest()
        return f"{IDENTITY_PREFIX}{digest[:8]}"

    def log(self, line: str):
        self.logs = [line] + self.logs[: self.log_limit - 1]
        logger.debug(line)

    def push_message(
        self,
        message: str,
        sender: str,
        sender_type: SenderType,
        citations: Optional[List[Citation]] = None,
    ) -> ChatMessage:
        chat = ChatMessage(
            id=self.next_counter("message"),
            message=message,
            sender=sender,
            sender_type=sender_type,
            citations=list(citations or []),
        )
        self.messages = [chat] + self.messages
        return chat

    def recent_messages(self, limit: int = 10) -> List[ChatMessage]:
        """Most recent chat turns, oldest first."""
        return [copy.deepcopy(m) for m in reversed(self.messages[:limit])]

    def get_agent(self, agent_id: str) -> Optional[ColonyAgent]:
        for agent in self.roster:
            if agent.agent_id == agent_id:
                return agent
        return None

    # -- lifecycle -------------------------------------------------------

    def seed_genesis(self) -> Optional[ColonyAgent]:
        if self.roster:
            return None
        genesis = ColonyAgent(
            self,
            agent_id=self.new_id("agent"),
            role="Genesis",
            agent_type=AgentType.STRATEGIST,
            pas=0.9,
        )
        self._register(genesis)
        self.log(f"[SPAWNED] Genesis agent {genesis.agent_id} created.")
        self.update_graph()
        return genesis

    def spawn_agent(
        self,
        agent_type: Union[AgentType, str],
        role: str,
        config_json: str,
        parent_id: Optional[str] = None,
    ) -> Optional[ColonyAgent]:
        try:
            config = json.loads(config_json)
        except (TypeError, ValueError):
            self.log(f"[ERROR] Invalid config JSON for role {role}.")
            return None
        if not isinstance(config, dict):
            self.log(f"[ERROR] Invalid config JSON for role {role}: expected an object.")
            return None
        try:
            kind = AgentType(agent_type)
        except ValueError:
            self.log(f"[ERROR] Unknown agent type {agent_type!r} for role {role}.")
            return None
        if len(self.roster) >= self.policy.max_agents:
            self.log(f"[ERROR] Max agent limit reached. Cannot spawn '{role}'.")
            return None

        agent = ColonyAgent(
            self,
            agent_id=self.new_id("agent"),
            role=role,
            agent_type=kind,
            pas=float(self.rng.uniform(0.3, 0.8)),
            parent=parent_id,
            config=config,
        )
        self._register(agent)
        self.stats["agents_spawned"] += 1
        agent.remember("SPAWN", f"Spawned as {kind.value} '{role}'.")
        self.log(f"[SPAWNED] New {kind.value} agent '{role}' ({agent.agent_id}) created.")
        self.update_graph()
        for listener in list(self.spawn_listeners):
            listener(agent)
        return agent

    def _register(self, agent: ColonyAgent):
        self.roster.append(agent)

    def set_avatar(self, agent_id: str, avatar_url: str) -> bool:
        agent = self.get_agent(agent_id)
        if agent is None:
            return False
        agent.avatar_url = avatar_url
        agent.remember("AVATAR", "Avatar rendered.")
        return True

    # -- proposals -------------------------------------------------------

    def propose_spawn(
        self,
        agent_type: Union[AgentType, str],
        role: str,
        config_json: str,
        proposer: Optional[str] = None,
    ) -> Optional[Proposal]:
        if len(self.roster) >= self.policy.max_agents:
            self.log("[ERROR] Max agent limit reached. Cannot create proposal.")
            self.stats["proposals_rejected"] += 1
            return None
        try:
            kind = AgentType(agent_type)
        except ValueError:
            self.log(f"[ERROR] Unknown agent type {agent_type!r}. Cannot create proposal.")
            self.stats["proposals_rejected"] += 1
            return None
        proposal = Proposal(id=self.new_id("prop"), action=SpawnAction(kind, role, config_json), proposer=proposer)
        self.proposals.append(proposal)
        self.log(f"[PROPOSAL] Proposal {proposal.id} submitted to spawn a '{role}' agent. Voting begins.")
        return proposal

    def propose_policy(self, policy: str, value: object, proposer: Optional[str] = None) -> Optional[Proposal]:
        try:
            coerced = Policy.coerce(policy, value)
            self.check_population_limit(policy, coerced)
        except (TypeError, ValueError) as exc:
            self.log(f"[ERROR] Invalid policy proposal: {exc}")
            self.stats["proposals_rejected"] += 1
            return None
        proposal = Proposal(id=self.new_id("prop"), action=PolicyChangeAction(policy, coerced), proposer=proposer)
        self.proposals.append(proposal)
        origin = f" by {proposer}" if proposer else ""
        self.log(f"[PROPOSAL] Proposal {proposal.id}{origin} to {proposal.action.describe()}. Voting begins.")
        return proposal

    def check_population_limit(self, policy: str, value: Union[int, float]):
        if policy == "max_agents" and value < len(self.roster):
            raise ValueError(f"max_agents {value} is below the current population of {len(self.roster)}")

    def pending_policy_change(self, policy: str) -> bool:
        return any(
            isinstance(p.action, PolicyChangeAction) and p.action.policy == policy
            for p in self.proposals
        )

    def close_proposal(self, proposal: Proposal):
        self.proposals = [p for p in self.proposals if p.id != proposal.id]

    def execute_proposal(self, proposal: Proposal):
        action = proposal.action
        if isinstance(action, SpawnAction):
            parent = None
            if self.roster:
                parent = self.roster[int(self.rng.integers(len(self.roster)))].agent_id
            self.spawn_agent(action.agent_type, action.role, action.config, parent)
        elif isinstance(action, PolicyChangeAction):
            try:
                self.check_population_limit(action.policy, action.value)
                value = self.policy.apply(action.policy, action.value)
            except ValueError as exc:
                self.log(f"[ERROR] Policy change {proposal.id} not applied: {exc}")
                return
            self.log(f"[POLICY] {action.policy} is now {value}.")

    # -- per-agent behaviors ----------------------------------------------

    def generate_intel(self, agent: ColonyAgent) -> Threat:
        levels = list(ThreatLevel)
        level = levels[int(self.rng.choice(len(levels), p=THREAT_LEVEL_WEIGHTS))]
        pattern = THREAT_PATTERNS[int(self.rng.integers(len(THREAT_PATTERNS)))]
        sector = THREAT_SECTORS[int(self.rng.integers(len(THREAT_SECTORS)))]
        threat = Threat(
            id=self.next_counter("threat"),
            level=level,
            source=agent.agent_id,
            description=f"{pattern} detected in {sector}.",
            tick=self.step_count,
        )
        self.threats = [threat] + self.threats[: THREAT_LIMIT - 1]
        agent.metrics.tasks_completed += 1
        agent.remember("INTEL", f"[{level.value}] {threat.description}")
        self.log(f"[INTEL] {agent.agent_id} reported a {level.value} threat.")
        return threat

    def agent_policy_proposal(self, agent: ColonyAgent) -> Optional[Proposal]:
        policy = ("min_pas", "approval_threshold")[int(self.rng.integers(2))]
        if self.pending_policy_change(policy):
            return None
        delta = 0.05 if self.rng.random() < 0.5 else -0.05
        value = round(float(np.clip(getattr(self.policy, policy) + delta, 0.1, 0.95)), 2)
        if value == getattr(self.policy, policy):
            return None
        proposal = self.propose_policy(policy, value, proposer=agent.agent_id)
        if proposal is not None:
            agent.metrics.ideas_generated += 1
        return proposal

    def send_comms(self, agent: ColonyAgent) -> Optional[CommsMessage]:
        others = [a for a in self.roster if a is not agent]
        if not others:
            return None
        recipient = others[int(self.rng.integers(len(others)))]
        sector = THREAT_SECTORS[int(self.rng.integers(len(THREAT_SECTORS)))]
        template = COMMS_TEMPLATES[int(self.rng.integers(len(COMMS_TEMPLATES)))]
        message = CommsMessage(
            id=self.next_counter("comms"),
            sender=agent.agent_id,
            recipient=recipient.agent_id,
            content=template.format(sector=sector),
            tick=self.step_count,
        )
        self.comms = [message] + self.comms[: COMMS_LIMIT - 1]
        agent.metrics.tasks_completed += 1
        agent.remember("COMMS", f"To {recipient.agent_id}: {message.content}")
        return message

    def record_idea(self, agent_id: str, idea: str) -> bool:
        agent = self.get_agent(agent_id)
        if agent is None:
            self.log(f"[WARN] Idea attributed to unknown agent {agent_id} dropped.")
            return False
        agent.metrics.ideas_generated += 1
        agent.remember("IDEA", idea)
        self.push_message(idea, agent.agent_id, SenderType.AGENT)
        return True

    def drift_scores(self):
        if not self.roster or self.rng.random() >= EVOLVE_PROBABILITY:
            return
        agent = self.roster[int(self.rng.integers(len(self.roster)))]
        agent.pas = clamp01(agent.pas + (self.rng.random() - 0.4) * 0.1)
        agent.remember("EVOLVE", f"PAS drifted to {agent.pas:.2f}.")
        self.log(f"[EVOLVED] Agent {agent.agent_id} PAS score is now {agent.pas:.2f}.")

    # -- derived views ---------------------------------------------------

    def update_graph(self):
        nodes = [
            GraphNode(
                id=a.agent_id,
                label=f"{a.role}\n({a.agent_type.value})",
                group=a.agent_type.value,
                title=f"ID: {a.agent_id}<br>PAS: {a.pas:.2f}<br>Age: {a.age}",
                value=a.pas * 20 + 5,
            )
            for a in self.roster
        ]
        edges = [GraphEdge(source=a.parent, target=a.agent_id) for a in self.roster if a.parent]
        self.graph_data = GraphData(nodes=nodes, edges=edges)
        self.average_pas = float(np.mean([a.pas for a in self.roster])) if self.roster else 0.0

    # -- tick ------------------------------------------------------------

    def step(self):
        self.step_count += 1
        self.identity = self.new_identity()
        self.agents.do("advance_age")
        self.resolver.resolve(self)
        self.agents.shuffle_do("act")
        self.drift_scores()
        self.update_graph()
        self.datacollector.collect(self)

    # -- snapshot / restore ----------------------------------------------

    def to_state(self, is_running: bool = False, is_thinking: bool = False) -> ColonyState:
        return ColonyState(
            is_running=is_running,
            is_thinking=is_thinking,
            identity=self.identity,
            agents=[a.to_record() for a in self.roster],
            proposals=copy.deepcopy(self.proposals),
            policies=copy.copy(self.policy),
            logs=list(self.logs),
            messages=copy.deepcopy(self.messages),
            comms=copy.deepcopy(self.comms),
            threats=copy.deepcopy(self.threats),
            graph_data=copy.deepcopy(self.graph_data),
            average_pas=self.average_pas,
            tick=self.step_count,
        )

    def export_blob(self) -> Dict[str, object]:
        return {
            "state": self.to_state().to_dict(),
            "counters": dict(self.counters),
            "stats": dict(self.stats),
        }

    def import_blob(self, blob: Dict[str, object]):
        """Replace the colony wholesale; raises before mutating anything if ``blob`` is malformed."""
        state = ColonyState.from_dict(blob["state"])
        counters = {name: int(blob.get("counters", {}).get(name, 0)) for name in self.COUNTERS}
        stats = {name: int(blob.get("stats", {}).get(name, 0)) for name in self.stats}
        self.restore(state, counters, stats)

    def restore(self, state: ColonyState, counters: Dict[str, int], stats: Dict[str, int] | None = None):
        for agent in list(self.roster):
            agent.remove()
        self.roster = []
        for record in state.agents:
            self._register(ColonyAgent.from_record(self, record))
        self.identity = state.identity
        self.proposals = copy.deepcopy(state.proposals)
        self.policy = copy.copy(state.policies)
        self.logs = list(state.logs)[: self.log_limit]
        self.messages = copy.deepcopy(state.messages)
        self.comms = copy.deepcopy(state.comms)[:COMMS_LIMIT]
        self.threats = copy.deepcopy(state.threats)[:THREAT_LIMIT]
        self.step_count = state.tick
        self.counters = dict(counters)
        if stats is not None:
            self.stats.update(stats)
        self.update_graph()
