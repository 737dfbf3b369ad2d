from types import SimpleNamespace

from relay.services.prompt_service import build_messages, build_system_prompt, estimate_tokens, trim_history


def msg(role, content):
    return SimpleNamespace(role=role, content=content)


def make_agent(**overrides):
    fields = {"system_prompt": "You are Ava.", "routing_policy": None, "support_email": None}
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0


class TestTrimHistory:
    def test_keeps_last_eight(self):
        history = [msg("USER", f"m{i}") for i in range(12)]
        kept = trim_history(history)
        assert [m.content for m in kept] == [f"m{i}" for i in range(4, 12)]

    def test_stops_at_first_overflow(self):
        history = [msg("USER", "a" * 400), msg("ASSISTANT", "b" * 40), msg("USER", "c" * 40)]
        # 100 + 10 + 10 tokens; budget 30 fits the last two only
        kept = trim_history(history, max_tokens=30)
        assert [m.content[0] for m in kept] == ["b", "c"]

    def test_older_small_message_not_pulled_in_after_overflow(self):
        history = [msg("USER", "x"), msg("USER", "a" * 400), msg("USER", "c" * 40)]
        kept = trim_history(history, max_tokens=30)
        assert [m.content[0] for m in kept] == ["c"]


class TestBuildSystemPrompt:
    def test_sections(self):
        agent = make_agent(routing_policy="Escalate refunds.", support_email="help@acme.test")
        prompt = build_system_prompt(agent, ["Opening hours are 9-5."], is_voice_call=True)
        assert prompt.startswith("You are Ava.")
        assert "## Core Behaviour" in prompt
        assert "## Voice Call Mode" in prompt
        assert "## Human Escalation Policy\nEscalate refunds." in prompt
        assert "help@acme.test" in prompt
        assert "## Relevant Knowledge Base" in prompt
        assert "[1] Opening hours are 9-5." in prompt

    def test_no_knowledge_section_without_passages(self):
        assert "Relevant Knowledge Base" not in build_system_prompt(make_agent(), [])


class TestBuildMessages:
    def test_order_and_roles(self):
        history = [msg("USER", "hi"), msg("ASSISTANT", "hello"), msg("SYSTEM", "handed off")]
        messages = build_messages(make_agent(), [], history, "where is my order?")
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "system", "user"]
        assert messages[-1]["content"] == "where is my order?"
