from __future__ import annotations

import threading
from typing import Dict

from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
import networkx as nx
import pandas as pd
import solara
import solara.lab

from ai_service import GeminiService
from colony import AgentType, ColonyState, SenderType, ThreatLevel
from config import ConfigLoader, setup_logging
from kernel import KernelService

CONFIG = ConfigLoader.load_from_env()
setup_logging(CONFIG.log_level, CONFIG.log_file)

TYPECOLORS: Dict[str, str] = {
    AgentType.RESEARCHER.value: "#22d3ee",
    AgentType.ENGINEER.value: "#a3e635",
    AgentType.ANALYST.value: "#facc15",
    AgentType.STRATEGIST.value: "#ec4899",
    AgentType.ETHICIST.value: "#a78bfa",
}
THREATICONS: Dict[ThreatLevel, str] = {
    ThreatLevel.LOW: "🔵",
    ThreatLevel.MEDIUM: "🟡",
    ThreatLevel.HIGH: "🟠",
    ThreatLevel.CRITICAL: "🔴",
}


def buildkernel() -> KernelService:
    service = None
    if CONFIG.gemini_api_key:
        service = GeminiService(
            api_key=CONFIG.gemini_api_key,
            text_model=CONFIG.text_model,
            image_model=CONFIG.image_model,
            video_model=CONFIG.video_model,
            video_poll_seconds=CONFIG.video_poll_seconds,
        )
    return KernelService(
        CONFIG,
        language_model=service,
        image_generator=service,
        video_generator=service,
    )


def makegraphfigure(state: ColonyState) -> Figure:
    fig = Figure(figsize=(6, 5))
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(1, 1, 1)
    graph = nx.DiGraph()
    for node in state.graph_data.nodes:
        graph.add_node(node.id, label=node.label, group=node.group, value=node.value)
    for edge in state.graph_data.edges:
        if edge.source in graph and edge.target in graph:
            graph.add_edge(edge.source, edge.target)
    if graph.number_of_nodes():
        pos = nx.spring_layout(graph, seed=7)
        colors = [TYPECOLORS.get(graph.nodes[n]["group"], "#9ca3af") for n in graph.nodes]
        sizes = [graph.nodes[n]["value"] * 40 for n in graph.nodes]
        labels = {n: graph.nodes[n]["label"] for n in graph.nodes}
        nx.draw_networkx_edges(graph, pos, ax=ax, edge_color="#67e8f9", alpha=0.5, arrows=True)
        nx.draw_networkx_nodes(graph, pos, ax=ax, node_color=colors, node_size=sizes, edgecolors="k", linewidths=0.4)
        nx.draw_networkx_labels(graph, pos, labels=labels, ax=ax, font_size=7)
    else:
        ax.text(0.5, 0.5, "no agents yet", ha="center", va="center")
    ax.set_title("Colony lineage (color=type, size=PAS)")
    ax.set_axis_off()
    return fig


def makelinefigure(history: pd.DataFrame, column: str, title: str, color: str) -> Figure:
    fig = Figure(figsize=(4.5, 3))
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(1, 1, 1)
    if column in history and len(history):
        ax.plot(history.index, history[column], color=color, linewidth=2)
        ax.set_ylabel(column)
    else:
        ax.text(0.5, 0.5, "no data", ha="center", va="center")
    ax.set_title(title)
    ax.set_xlabel("tick")
    ax.grid(True, linestyle="--", alpha=0.3)
    return fig


@solara.component
def Header(kernel: KernelService, state: ColonyState):
    with solara.Row(gap="0.5rem"):
        solara.Markdown(f"## {state.identity}")
        solara.Button("Init", on_click=kernel.init, disabled=state.is_running, color="primary")
        solara.Button("Stop", on_click=kernel.stop, disabled=not state.is_running, color="warning")
        solara.Button("Step", on_click=kernel.step, disabled=state.is_running, text=True)
        solara.Button("Save", on_click=kernel.save, icon_name="mdi-content-save", text=True)
        solara.Button("Load", on_click=kernel.load, icon_name="mdi-folder-open", text=True)


@solara.component
def SpawnPanel(kernel: KernelService, state: ColonyState):
    agenttype = solara.use_reactive(AgentType.RESEARCHER.value)
    role = solara.use_reactive("")
    configjson = solara.use_reactive("{}")
    full = len(state.agents) >= state.policies.max_agents

    def submit():
        kernel.propose_spawn_agent(agenttype.value, role.value.strip() or agenttype.value, configjson.value)
        role.set("")

    with solara.Card(title="Propose agent"):
        solara.Select("Type", value=agenttype, values=[t.value for t in AgentType])
        solara.InputText("Role", value=role)
        solara.InputText("Config (JSON)", value=configjson)
        solara.Button("Submit proposal", on_click=submit, disabled=full, color="primary")
        solara.Markdown(f"Agents {len(state.agents)}/{state.policies.max_agents}")


@solara.component
def StatusPanel(state: ColonyState):
    p = state.policies
    return solara.Card(
        title="Status",
        children=[
            solara.Markdown(f"**Running:** {'yes' if state.is_running else 'no'} | **Tick:** {state.tick}"),
            solara.Markdown(f"Agents={len(state.agents)} | Avg PAS={state.average_pas:.3f}"),
            solara.Markdown(
                f"min_pas={p.min_pas:.2f} | max_agents={p.max_agents} | "
                f"approval_threshold={p.approval_threshold:.2f}"
            ),
            solara.Markdown(f"Pending proposals={len(state.proposals)}"),
        ],
    )


@solara.component
def LogsPanel(state: ColonyState):
    with solara.Card(title="Kernel log"):
        solara.Markdown("\n".join(f"- `{line}`" for line in state.logs[:30]) or "empty")


@solara.component
def IntelPanel(state: ColonyState):
    with solara.Card(title="Intel feed"):
        if not state.threats:
            solara.Markdown("No intel from Analyst agents yet...")
        for threat in state.threats:
            solara.Markdown(f"{THREATICONS[threat.level]} **{threat.level.value}** `{threat.source}`: {threat.description}")


@solara.component
def CommsPanel(state: ColonyState):
    with solara.Card(title="Agent comms"):
        if not state.comms:
            solara.Markdown("No inter-agent traffic yet.")
        for msg in state.comms[:20]:
            solara.Markdown(f"`{msg.sender}` → `{msg.recipient}`: {msg.content}")


@solara.component
def ChatPanel(kernel: KernelService, state: ColonyState):
    draft = solara.use_reactive("")
    available = kernel.language_model is not None

    def send():
        text = draft.value
        draft.set("")
        threading.Thread(target=kernel.handle_user_message, args=(text,), daemon=True).start()

    with solara.Card(title="Chat with the collective"):
        if not available:
            solara.Markdown("*Set GEMINI_API_KEY to enable chat.*")
        solara.InputText("Message", value=draft, disabled=state.is_thinking or not available)
        solara.Button("Send", on_click=send, disabled=state.is_thinking or not available, color="primary")
        if state.is_thinking:
            solara.Markdown("*The collective is thinking...*")
        for msg in state.messages[:20]:
            who = "You" if msg.sender_type == SenderType.USER else msg.sender
            text = f"**{who}:** {msg.message}"
            if msg.citations:
                text += "\n\n" + "\n".join(f"- [{c.title}]({c.uri})" for c in msg.citations)
            solara.Markdown(text)


@solara.component
def ForesightPanel(kernel: KernelService):
    result = solara.use_reactive(dict(loading=False, url=None, error=None))

    def run():
        outcome = kernel.generate_foresight()
        result.set(dict(loading=False, url=outcome.video_url, error=outcome.error))

    def start():
        result.set(dict(loading=True, url=None, error=None))
        threading.Thread(target=run, daemon=True).start()

    with solara.Card(title="Simulation foresight"):
        solara.Button(
            "Generate foresight",
            on_click=start,
            disabled=result.value["loading"] or kernel.video_generator is None,
        )
        if result.value["loading"]:
            solara.Markdown("Extrapolating potential futures... (this may take a few minutes)")
        if result.value["error"]:
            solara.Error(result.value["error"])
        if result.value["url"]:
            solara.Markdown(f"[Open foresight video]({result.value['url']})")


@solara.component
def Page():
    kernel = solara.use_memo(buildkernel, [])
    state = solara.use_reactive(kernel.snapshot())

    def connect():
        return kernel.subscribe(state.set)

    solara.use_effect(connect, [])

    history = kernel.metrics_frame()
    current = state.value

    with solara.Column(gap="1rem"):
        Header(kernel=kernel, state=current)
        with solara.Row(gap="1rem"):
            with solara.Column(gap="0.8rem", style={"minWidth": "300px"}):
                SpawnPanel(kernel=kernel, state=current)
                LogsPanel(state=current)
            with solara.Column(gap="0.8rem", style={"alignItems": "stretch"}):
                StatusPanel(state=current)
                solara.FigureMatplotlib(makegraphfigure(current))
                with solara.lab.Tabs():
                    with solara.lab.Tab("Population"):
                        solara.FigureMatplotlib(makelinefigure(history, "population", "Population", "#2563eb"))
                    with solara.lab.Tab("PAS"):
                        solara.FigureMatplotlib(makelinefigure(history, "average_pas", "Average PAS", "#16a34a"))
                    with solara.lab.Tab("Proposals"):
                        solara.FigureMatplotlib(makelinefigure(history, "pending_proposals", "Pending proposals", "#f59e0b"))
            with solara.Column(gap="0.8rem", style={"minWidth": "320px"}):
                ChatPanel(kernel=kernel, state=current)
                IntelPanel(state=current)
                CommsPanel(state=current)
                ForesightPanel(kernel=kernel)


if __name__ == "__main__":
    print("Run: python -m solara run server:Page")
