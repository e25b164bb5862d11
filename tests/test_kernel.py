"""Tests for the kernel service: loop control, chat relay, avatars and foresight."""
import sys
import os
import threading
from concurrent.futures import Executor, Future

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from ai_service import AIServiceError, ImageGenerator, Intent, LanguageModel, VideoGenerator
from colony import AgentType, Citation, ColonyModel, KERNEL_SENDER, SenderType
from config import KernelConfig
from kernel import KernelService, foresight_prompt


class ImmediateExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ScriptedModel(LanguageModel):
    def __init__(self, intent=Intent.REFLECT, reply="We are many.", ideas=None, error=None):
        self.intent = intent
        self.reply = reply
        self.ideas = ideas or []
        self.error = error
        self.on_reply = None
        self.histories = []

    def classify_intent(self, message):
        if self.error:
            raise self.error
        return self.intent

    def reflect(self, history, message):
        self.histories.append(list(history))
        if self.on_reply:
            self.on_reply()
        return self.reply

    def answer(self, history, question):
        return "Forty-two.", [Citation("https://example.org/a", "Source A")]

    def brainstorm(self, agents, topic):
        return list(self.ideas)


class StaticImages(ImageGenerator):
    def __init__(self, fail=False):
        self.fail = fail
        self.prompts = []

    def generate_image(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise AIServiceError("Image generation failed.")
        return "data:image/png;base64,AA=="


class StaticVideos(VideoGenerator):
    def __init__(self, fail=False):
        self.fail = fail
        self.prompts = []

    def generate_video(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise AIServiceError("quota exhausted")
        return "https://example.org/video.mp4"


@pytest.fixture
def config(tmp_path):
    return KernelConfig(tick_seconds=60, seed=1, storage_dir=str(tmp_path))


def make_kernel(config, **kwargs):
    kwargs.setdefault("executor", ImmediateExecutor())
    return KernelService(config, **kwargs)


def test_init_and_stop_are_idempotent(config):
    kernel = make_kernel(config)
    assert kernel.init()
    assert kernel.is_running
    assert not kernel.init()
    assert len(kernel.model.roster) == 1
    assert kernel.model.logs[0] == "[INIT] Kernel activated. Simulation running."
    assert kernel.stop()
    assert not kernel.is_running
    assert not kernel.stop()
    assert kernel.model.logs[0] == "[STOP] Kernel deactivated. Simulation paused."


def test_restart_keeps_genesis_single(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    kernel.init()
    kernel.stop()
    assert len(kernel.model.roster) == 1


def test_manual_step_only_while_stopped(config):
    kernel = make_kernel(config)
    kernel.init()
    assert not kernel.step()
    kernel.stop()
    tick = kernel.snapshot().tick
    assert kernel.step()
    assert kernel.snapshot().tick == tick + 1
    assert kernel.model.logs[0] == "[STEP] Manual simulation step executed."


def test_loop_ticks_and_publishes(tmp_path):
    kernel = make_kernel(KernelConfig(tick_seconds=0.01, seed=2, storage_dir=str(tmp_path)))
    reached = threading.Event()

    def watch(state):
        if state.tick >= 3:
            reached.set()

    kernel.subscribe(watch)
    kernel.init()
    try:
        assert reached.wait(5)
    finally:
        kernel.stop()
    ticks = kernel.snapshot().tick
    assert ticks >= 3
    assert kernel.snapshot().tick == ticks


def test_loop_survives_failing_tick(tmp_path):
    model = ColonyModel(seed=2, vote_probability=1.0)
    kernel = make_kernel(KernelConfig(tick_seconds=0.01, seed=2, storage_dir=str(tmp_path)), model=model)

    def broken_listener(agent):
        raise RuntimeError("listener exploded")

    model.spawn_listeners.append(broken_listener)
    failed_at = []
    recovered = threading.Event()

    def watch(state):
        if not failed_at and any(line.startswith("[ERROR] Simulation tick failed") for line in state.logs):
            failed_at.append(state.tick)
        if failed_at and state.tick >= failed_at[0] + 2:
            recovered.set()

    kernel.subscribe(watch)
    kernel.propose_spawn_agent(AgentType.ANALYST, "Trigger", "{}")
    kernel.init()
    try:
        assert recovered.wait(5)
        assert kernel.is_running
    finally:
        assert kernel.stop()
    assert "[ERROR] Simulation tick failed: listener exploded" in kernel.model.logs
    assert kernel.step()


def test_snapshots_are_copies(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    state = kernel.snapshot()
    state.agents[0].pas = 0.0
    state.logs.clear()
    state.policies.max_agents = 1
    assert kernel.model.roster[0].pas == 0.9
    assert kernel.model.logs
    assert kernel.model.policy.max_agents == 15


def test_subscribe_and_unsubscribe(config):
    kernel = make_kernel(config)
    seen = []
    unsubscribe = kernel.subscribe(seen.append)
    kernel.step()
    assert len(seen) == 1
    assert seen[0].tick == 1
    unsubscribe()
    kernel.step()
    assert len(seen) == 1


def test_failing_subscriber_does_not_block_others(config):
    kernel = make_kernel(config)
    seen = []

    def broken(state):
        raise RuntimeError("boom")

    kernel.subscribe(broken)
    kernel.subscribe(seen.append)
    assert kernel.step()
    assert len(seen) == 1


def test_proposals_through_kernel(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    proposal = kernel.propose_spawn_agent(AgentType.ANALYST, "Watcher", "{}")
    assert proposal is not None
    assert kernel.snapshot().proposals[0].id == proposal.id
    assert kernel.propose_policy_change("min_pas", 0.4) is not None
    assert kernel.propose_policy_change("min_pas", 4) is None


def test_reflect_reply(config):
    model = ScriptedModel(reply="We remember.")
    kernel = make_kernel(config, language_model=model)
    assert kernel.handle_user_message("  Who are you?  ")
    messages = kernel.snapshot().messages
    assert [m.message for m in messages] == ["We remember.", "Who are you?"]
    assert messages[1].sender == "User"
    assert messages[1].sender_type == SenderType.USER
    assert messages[0].sender == KERNEL_SENDER
    assert messages[0].sender_type == SenderType.SYSTEM
    assert [m.message for m in model.histories[0]] == ["Who are you?"]
    assert not kernel.is_thinking


def test_research_reply_has_citations(config):
    kernel = make_kernel(config, language_model=ScriptedModel(intent=Intent.RESEARCH))
    kernel.handle_user_message("What is the answer?")
    reply = kernel.snapshot().messages[0]
    assert reply.message == "Forty-two."
    assert reply.citations == [Citation("https://example.org/a", "Source A")]


def test_brainstorm_records_ideas(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    genesis = kernel.model.roster[0]
    kernel.language_model = ScriptedModel(
        intent=Intent.BRAINSTORM,
        ideas=[(genesis.agent_id, "Map the perimeter."), ("agent-ghost", "Haunt.")],
    )
    kernel.handle_user_message("Ideas for defense?")
    messages = kernel.snapshot().messages
    assert messages[0].message == "Map the perimeter."
    assert messages[0].sender == genesis.agent_id
    assert messages[0].sender_type == SenderType.AGENT
    assert genesis.metrics.ideas_generated == 1
    assert any(line.startswith("[WARN] Idea attributed to unknown agent agent-ghost") for line in kernel.model.logs)


def test_brainstorm_without_ideas(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    kernel.language_model = ScriptedModel(intent=Intent.BRAINSTORM, ideas=[])
    kernel.handle_user_message("Anything?")
    assert kernel.snapshot().messages[0].message == "The collective produced no ideas."


def test_service_error_becomes_chat_message(config):
    kernel = make_kernel(config, language_model=ScriptedModel(error=AIServiceError("service unavailable")))
    assert kernel.handle_user_message("Hello")
    reply = kernel.snapshot().messages[0]
    assert reply.message == "Error from collective: service unavailable"
    assert reply.sender_type == SenderType.SYSTEM
    assert not kernel.is_thinking


def test_missing_language_model_is_reported(config):
    kernel = make_kernel(config)
    kernel.handle_user_message("Hello")
    assert kernel.snapshot().messages[0].message == "Error from collective: No language model is configured."


def test_second_message_refused_while_thinking(config):
    model = ScriptedModel()
    kernel = make_kernel(config, language_model=model)
    results = []
    model.on_reply = lambda: results.append((kernel.is_thinking, kernel.handle_user_message("Me too")))
    assert kernel.handle_user_message("First")
    assert results == [(True, False)]
    assert [m.message for m in kernel.snapshot().messages] == ["We are many.", "First"]
    assert "[WARN] The collective is still answering; message ignored." in kernel.model.logs


def test_blank_message_ignored(config):
    kernel = make_kernel(config, language_model=ScriptedModel())
    assert not kernel.handle_user_message("   ")
    assert kernel.snapshot().messages == []


def test_reply_after_stop_is_still_shown(config):
    model = ScriptedModel(reply="Late answer.")
    kernel = make_kernel(config, language_model=model)
    kernel.init()
    model.on_reply = kernel.stop
    kernel.handle_user_message("Are you there?")
    assert not kernel.is_running
    assert kernel.snapshot().messages[0].message == "Late answer."


def test_spawned_agent_gets_avatar(config):
    images = StaticImages()
    kernel = make_kernel(config, image_generator=images)
    kernel.propose_spawn_agent(AgentType.ENGINEER, "Builder", "{}")
    kernel.step()
    kernel.drain()
    agent = kernel.model.roster[0]
    assert agent.role == "Builder"
    assert agent.avatar_url == "data:image/png;base64,AA=="
    assert "Builder" in images.prompts[0]


def test_avatar_failure_leaves_agent_alone(config):
    kernel = make_kernel(config, image_generator=StaticImages(fail=True))
    kernel.propose_spawn_agent(AgentType.ENGINEER, "Builder", "{}")
    kernel.step()
    kernel.drain()
    assert kernel.model.roster[0].avatar_url is None


def test_foresight_success(config):
    videos = StaticVideos()
    kernel = make_kernel(config, video_generator=videos)
    kernel.init()
    kernel.stop()
    result = kernel.generate_foresight()
    assert result.video_url == "https://example.org/video.mp4"
    assert result.error is None
    assert kernel.model.logs[0] == "[FORESIGHT] Foresight video ready."
    assert "1 agents" in videos.prompts[0]


def test_foresight_failure(config):
    kernel = make_kernel(config, video_generator=StaticVideos(fail=True))
    result = kernel.generate_foresight()
    assert result.video_url is None
    assert result.error == "quota exhausted"
    assert kernel.model.logs[0] == "[ERROR] Foresight generation failed: quota exhausted"
    assert kernel.generate_foresight().error == "quota exhausted"


def test_foresight_without_generator(config):
    result = make_kernel(config).generate_foresight()
    assert result.error == "No video generator is configured."


def test_foresight_refused_while_busy(config):
    videos = StaticVideos()
    kernel = make_kernel(config, video_generator=videos)
    nested = []
    original = videos.generate_video

    def reentrant(prompt):
        nested.append(kernel.generate_foresight())
        return original(prompt)

    videos.generate_video = reentrant
    assert kernel.generate_foresight().video_url == "https://example.org/video.mp4"
    assert nested[0].error == "Foresight generation already in progress."


def test_foresight_prompt_describes_colony(config):
    kernel = make_kernel(config)
    kernel.init()
    kernel.stop()
    prompt = foresight_prompt(kernel.snapshot())
    assert "1 agents (Strategist)" in prompt
    assert "0.90" in prompt


def test_save_and_load_leave_kernel_stopped(config):
    kernel = make_kernel(config)
    kernel.init()
    assert kernel.save()
    kernel.propose_spawn_agent(AgentType.ANALYST, "Later", "{}")
    assert kernel.load()
    assert not kernel.is_running
    state = kernel.snapshot()
    assert not state.is_running
    assert state.proposals == []
    assert state.logs[0].startswith("[LOAD]")


def test_load_without_save(config):
    kernel = make_kernel(config)
    assert not kernel.load()
    assert kernel.snapshot().logs[0] == "[WARN] No saved state found."


def test_close_shuts_down_owned_executor(config):
    kernel = KernelService(config, image_generator=StaticImages())
    kernel.init()
    kernel.propose_spawn_agent(AgentType.ANALYST, "Watcher", "{}")
    kernel.close()
    assert not kernel.is_running
