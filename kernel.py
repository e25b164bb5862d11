"""
Kernel Module

Drives a :class:`ColonyModel` on a fixed-period timer and is the only entry
point the presentation layer uses.  Every mutation happens under one lock and
is followed by a fresh snapshot pushed to subscribers.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

import pandas as pd

from ai_service import AIServiceError, ImageGenerator, Intent, LanguageModel, VideoGenerator
from colony import AgentType, ColonyAgent, ColonyModel, ColonyState, KERNEL_SENDER, Proposal, SenderType
from config import KernelConfig
from persistence import LocalStorage, StatePersistence

logger = logging.getLogger(__name__)

Subscriber = Callable[[ColonyState], None]


@dataclass
class ForesightResult:
    video_url: Optional[str] = None
    error: Optional[str] = None


class KernelService:
    """
    Stopped/Running state machine around the colony model.

    ``init`` starts the periodic tick, ``stop`` cancels it and ``step`` runs
    a single tick while stopped.  External services are optional; when one is
    missing the related operation reports an error instead of running.
    """

    def __init__(
        self,
        config: Optional[KernelConfig] = None,
        language_model: Optional[LanguageModel] = None,
        image_generator: Optional[ImageGenerator] = None,
        video_generator: Optional[VideoGenerator] = None,
        persistence: Optional[StatePersistence] = None,
        model: Optional[ColonyModel] = None,
        executor: Optional[Executor] = None,
    ):
        self.config = config or KernelConfig()
        self.model = model or ColonyModel(seed=self.config.seed, policy=self.config.policy())
        self.language_model = language_model
        self.image_generator = image_generator
        self.video_generator = video_generator
        self.persistence = persistence or StatePersistence(
            LocalStorage(self.config.storage_dir), key=self.config.storage_key
        )
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="kernel-bg")
        self._owns_executor = executor is None
        self._pending: Set[Future] = set()
        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []
        self._running = False
        self._thinking = False
        self._foresight_busy = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self.model.spawn_listeners.append(self._on_spawn)

    # -- observation -----------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_thinking(self) -> bool:
        return self._thinking

    def snapshot(self) -> ColonyState:
        with self._lock:
            return self.model.to_state(is_running=self._running, is_thinking=self._thinking)

    def metrics_frame(self) -> pd.DataFrame:
        """Copy of the per-tick metrics collected so far."""
        with self._lock:
            return self.model.datacollector.get_model_vars_dataframe().copy()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every published snapshot; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self):
        with self._lock:
            subscribers = list(self._subscribers)
            if not subscribers:
                return
            state = self.snapshot()
        for callback in subscribers:
            try:
                callback(state)
            except Exception:
                logger.exception("Snapshot subscriber failed")

    # -- loop ------------------------------------------------------------

    def init(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self.model.seed_genesis()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="kernel-loop",
                daemon=True,
            )
            self._thread.start()
            self.model.log("[INIT] Kernel activated. Simulation running.")
            logger.info("Kernel started")
        self._publish()
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._running:
                return False
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
            self.model.log("[STOP] Kernel deactivated. Simulation paused.")
            logger.info("Kernel stopped")
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.tick_seconds + 1.0)
        self._publish()
        return True

    def step(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self.model.step()
            self.model.log("[STEP] Manual simulation step executed.")
        self._publish()
        return True

    def _run_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.config.tick_seconds):
            with self._lock:
                if stop_event.is_set():
                    break
                try:
                    self.model.step()
                except Exception as e:
                    logger.exception("Simulation tick failed")
                    self.model.log(f"[ERROR] Simulation tick failed: {e}")
            self._publish()

    # -- proposals -------------------------------------------------------

    def propose_spawn_agent(self, agent_type: AgentType | str, role: str, config_json: str) -> Optional[Proposal]:
        with self._lock:
            proposal = self.model.propose_spawn(agent_type, role, config_json)
        self._publish()
        return proposal

    def propose_policy_change(self, policy: str, value: object) -> Optional[Proposal]:
        with self._lock:
            proposal = self.model.propose_policy(policy, value)
        self._publish()
        return proposal

    # -- avatars ---------------------------------------------------------

    def _on_spawn(self, agent: ColonyAgent):
        if self.image_generator is None:
            return
        prompt = (
            f"Minimal futuristic avatar icon for an AI {agent.agent_type.value.lower()} "
            f"agent named '{agent.role}', neon cyan on dark background."
        )
        future = self._executor.submit(self._fetch_avatar, agent.agent_id, prompt)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _fetch_avatar(self, agent_id: str, prompt: str):
        try:
            avatar = self.image_generator.generate_image(prompt)
        except AIServiceError as e:
            logger.warning(f"Avatar for {agent_id} not generated: {e}")
            return
        if not avatar:
            return
        with self._lock:
            patched = self.model.set_avatar(agent_id, avatar)
        if patched:
            self._publish()

    def drain(self, timeout: Optional[float] = None):
        """Wait for outstanding background avatar requests."""
        for future in list(self._pending):
            future.result(timeout=timeout)

    def close(self):
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # -- chat ------------------------------------------------------------

    def handle_user_message(self, message: str) -> bool:
        text = message.strip()
        if not text:
            return False
        with self._lock:
            if self._thinking:
                self.model.log("[WARN] The collective is still answering; message ignored.")
                refused = True
            else:
                refused = False
                self.model.push_message(text, "User", SenderType.USER)
                self._thinking = True
                history = self.model.recent_messages(10)
                roster = [a.to_record() for a in self.model.roster]
        self._publish()
        if refused:
            return False

        try:
            self._relay(text, history, roster)
        except AIServiceError as e:
            with self._lock:
                self.model.push_message(f"Error from collective: {e}", KERNEL_SENDER, SenderType.SYSTEM)
        finally:
            with self._lock:
                self._thinking = False
            self._publish()
        return True

    def _relay(self, text: str, history, roster):
        if self.language_model is None:
            raise AIServiceError("No language model is configured.")
        intent = self.language_model.classify_intent(text)
        logger.info(f"Chat message classified as {intent.value}")

        if intent == Intent.BRAINSTORM and roster:
            ideas = self.language_model.brainstorm(roster, text)
            with self._lock:
                recorded = sum(1 for agent_id, idea in ideas if self.model.record_idea(agent_id, idea))
                if not recorded:
                    self.model.push_message("The collective produced no ideas.", KERNEL_SENDER, SenderType.SYSTEM)
        elif intent == Intent.RESEARCH:
            answer, citations = self.language_model.answer(history, text)
            with self._lock:
                self.model.push_message(answer, KERNEL_SENDER, SenderType.SYSTEM, citations)
        else:
            reply = self.language_model.reflect(history, text)
            with self._lock:
                self.model.push_message(reply, KERNEL_SENDER, SenderType.SYSTEM)

    # -- foresight -------------------------------------------------------

    def generate_foresight(self) -> ForesightResult:
        if self.video_generator is None:
            return ForesightResult(error="No video generator is configured.")
        with self._lock:
            if self._foresight_busy:
                return ForesightResult(error="Foresight generation already in progress.")
            self._foresight_busy = True
            prompt = foresight_prompt(self.model.to_state())
            self.model.log("[FORESIGHT] Foresight generation started.")
        self._publish()

        try:
            url = self.video_generator.generate_video(prompt)
        except AIServiceError as e:
            with self._lock:
                self.model.log(f"[ERROR] Foresight generation failed: {e}")
            return ForesightResult(error=str(e))
        finally:
            with self._lock:
                self._foresight_busy = False
            self._publish()

        with self._lock:
            self.model.log("[FORESIGHT] Foresight video ready.")
        self._publish()
        return ForesightResult(video_url=url)

    # -- persistence -----------------------------------------------------

    def save(self) -> bool:
        with self._lock:
            saved = self.persistence.save(self.model)
        self._publish()
        return saved

    def load(self) -> bool:
        self.stop()
        with self._lock:
            loaded = self.persistence.load(self.model)
        self._publish()
        return loaded


def foresight_prompt(state: ColonyState) -> str:
    kinds = sorted({a.type.value for a in state.agents})
    critical = [t for t in state.threats if t.level.value in ("High", "Critical")]
    return (
        "A cinematic visualization of an AI collective's possible future: "
        f"{len(state.agents)} agents ({', '.join(kinds) or 'none yet'}) linked in a glowing network, "
        f"average pro-sociality {state.average_pas:.2f}, "
        f"{len(state.proposals)} proposals under vote, "
        f"{len(critical)} severe threats on the horizon. Neon cyan and magenta, abstract, hopeful."
    )
