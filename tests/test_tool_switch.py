from unittest.mock import AsyncMock, Mock

import pytest

from toolchat.schemas.session import AwaitingConfirmation, IdleSwitch
from toolchat.services.cost_governor import CostCeilingExceededError
from toolchat.services.tool_catalog import load_default_tools
from toolchat.services.tool_switch import (
    MSG_UNCLEAR_CONFIRMATION,
    ToolInference,
    build_classifier_prompt,
    build_help_message,
    build_switch_prompt,
    is_help_request,
    parse_classifier_answer,
    parse_confirmation,
    parse_tool_selection,
)
from toolchat.services.whatsapp_service import MSG_AI_UNAVAILABLE, context_before_deferred

PHONE = "whatsapp:+15551234567"
TOOLS = load_default_tools()


class TestCommandParsing:
    @pytest.mark.parametrize("text", ["help", "MENU", " tools ", "hi", "What can you do?", "list your features"])
    def test_help_requests(self, text):
        assert is_help_request(text)

    @pytest.mark.parametrize("text", ["help me with fractions", "this is a poem", ""])
    def test_not_help(self, text):
        assert not is_help_request(text)

    def test_tool_selection_by_digit(self):
        assert parse_tool_selection("5", TOOLS).id == "math-tutor"
        assert parse_tool_selection(" 1 ", TOOLS).id == "creative-writing"
        assert parse_tool_selection("0", TOOLS) is None
        assert parse_tool_selection("10", TOOLS) is None
        assert parse_tool_selection("5 apples", TOOLS) is None
        assert parse_tool_selection("3", TOOLS[:2]) is None

    @pytest.mark.parametrize(
        "text,expected",
        [("yes", "yes"), ("Y", "yes"), ("yes please", "yes"), ("No", "no"), ("n", "no"), ("nope", "no"), ("maybe", None)],
    )
    def test_confirmation(self, text, expected):
        assert parse_confirmation(text) == expected


class TestMessages:
    def test_help_lists_every_tool_with_number(self):
        message = build_help_message(TOOLS)

        assert message.startswith("🤖 *ToolChat Assistant* 🤖")
        assert "*5. Math Tutor*" in message
        assert "🧮" in message
        assert "(1-9)" in message

    def test_switch_prompt_names_both_tools(self):
        prompt = build_switch_prompt(TOOLS[4], "Creative Writing Assistant")

        assert "*Math Tutor*" in prompt
        assert "Reply *YES*" in prompt
        assert "continue with Creative Writing Assistant" in prompt

    def test_classifier_prompt_lists_tools(self):
        prompt = build_classifier_prompt(TOOLS, "creative-writing")

        assert prompt.startswith("You are a tool classifier")
        assert "math-tutor: Math Tutor - " in prompt
        assert "Current tool: creative-writing" in prompt

    @pytest.mark.parametrize(
        "raw,expected",
        [("math-tutor", "math-tutor"), ('"Math-Tutor".', "math-tutor"), ("none", None), ("", None), ("quantum-bot", None)],
    )
    def test_classifier_answer(self, raw, expected):
        assert parse_classifier_answer(raw, TOOLS) == expected


class TestReplayContext:
    def test_cuts_at_last_deferred_message(self):
        context = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "solve x"},
            {"role": "assistant", "content": "🤔 Switch tools?"},
            {"role": "user", "content": "maybe"},
            {"role": "assistant", "content": "Please reply YES or NO"},
        ]

        assert context_before_deferred(context, "solve x") == context[:2]

    def test_message_outside_window_drops_everything(self):
        context = [{"role": "assistant", "content": "🤔 Switch tools?"}, {"role": "user", "content": "maybe"}]
        assert context_before_deferred(context, "solve x") == []


def _gateway(answer=None, error=None):
    gateway = Mock()
    gateway.classify = AsyncMock(return_value=answer, side_effect=error)
    return gateway


class TestToolInference:
    @pytest.mark.asyncio
    async def test_suggests_better_tool(self):
        gateway = _gateway("math-tutor")

        suggestion = await ToolInference(gateway).suggest("solve 2x + 3 = 7", "creative-writing", TOOLS)

        assert suggestion == "math-tutor"
        system_prompt, user_text = gateway.classify.call_args.args
        assert "Current tool: creative-writing" in system_prompt
        assert user_text == 'Message: "solve 2x + 3 = 7"'

    @pytest.mark.asyncio
    async def test_current_tool_is_not_a_suggestion(self):
        assert await ToolInference(_gateway("math-tutor")).suggest("more algebra", "math-tutor", TOOLS) is None

    @pytest.mark.asyncio
    async def test_classifier_failure_keeps_current_tool(self):
        gateway = _gateway(error=RuntimeError("timeout"))
        assert await ToolInference(gateway).suggest("solve", "creative-writing", TOOLS) is None


async def _session(container):
    return await container.sessions.get_or_create(PHONE)


class TestWhatsAppSwitchProtocol:
    @pytest.mark.asyncio
    async def test_help_and_number_selection(self, container, provider):
        handler = container.whatsapp

        help_result = await handler.handle_message(PHONE, "menu")
        selection = await handler.handle_message(PHONE, "7")

        assert help_result.reply.startswith("🤖 *ToolChat Assistant* 🤖")
        assert "Code Helper" in selection.reply
        assert (await _session(container)).current_tool == "code-helper"
        assert provider.calls == []
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_suggest_confirm_and_replay(self, container, provider, transport):
        handler = container.whatsapp
        provider.classifier_reply = "math-tutor"
        provider.chat_reply = "x = 2"

        prompt = await handler.handle_message(PHONE, "solve 2x + 3 = 7")

        assert "*Math Tutor*" in prompt.reply
        assert "continue with Creative Writing Assistant" in prompt.reply
        assert provider.calls_of("chat") == []
        pending = (await _session(container)).switch_state
        assert isinstance(pending, AwaitingConfirmation)
        assert pending.to == "math-tutor"
        assert pending.original_message == "solve 2x + 3 = 7"

        confirmed = await handler.handle_message(PHONE, "yes")

        assert confirmed.reply == "✅ *Switched to Math Tutor*\n\nx = 2"
        assert confirmed.delivered is True
        chat_call = provider.calls_of("chat")[0]
        assert chat_call["messages"][0]["content"].startswith("You are a patient math tutor")
        assert chat_call["messages"][-1] == {"role": "user", "content": "solve 2x + 3 = 7"}
        assert [m["role"] for m in chat_call["messages"]] == ["system", "user"]
        assert [m["content"] for m in chat_call["messages"]].count("solve 2x + 3 = 7") == 1
        assert all(m["content"] != "yes" for m in chat_call["messages"])
        assert len(provider.calls_of("classify")) == 1

        session = await _session(container)
        assert session.current_tool == "math-tutor"
        assert isinstance(session.switch_state, IdleSwitch)
        assert session.usage.tokens == 60
        assert [text for _, text in transport.sent][-1] == confirmed.reply
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_replay_keeps_earlier_turns_but_not_confirmation_turns(self, container, provider):
        handler = container.whatsapp
        await handler.handle_message(PHONE, "tell me a story")
        provider.classifier_reply = "math-tutor"
        await handler.handle_message(PHONE, "solve 2x + 3 = 7")
        await handler.handle_message(PHONE, "maybe later")

        await handler.handle_message(PHONE, "yes")

        replay = provider.calls_of("chat")[-1]["messages"]
        assert [(m["role"], m["content"]) for m in replay[1:]] == [
            ("user", "tell me a story"),
            ("assistant", "Here is my answer."),
            ("user", "solve 2x + 3 = 7"),
        ]
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_poem_request_from_math_tutor(self, container, provider):
        handler = container.whatsapp
        await handler.handle_message(PHONE, "5")
        provider.classifier_reply = "creative-writing"

        await handler.handle_message(PHONE, "write me a poem about autumn")
        pending = (await _session(container)).pending_switch
        assert pending.to == "creative-writing"

        confirmed = await handler.handle_message(PHONE, "yes")

        session = await _session(container)
        assert session.current_tool == "creative-writing"
        assert session.pending_switch is None
        assert confirmed.reply.startswith("✅ *Switched to Creative Writing Assistant*")
        chat_call = provider.calls_of("chat")[-1]
        assert chat_call["messages"][0]["content"].startswith("You are a creative writing assistant")
        assert chat_call["messages"][-1]["content"] == "write me a poem about autumn"
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_decline_keeps_current_tool(self, container, provider):
        handler = container.whatsapp
        await handler.handle_message(PHONE, "5")
        provider.classifier_reply = "creative-writing"

        await handler.handle_message(PHONE, "write me a poem about triangles")
        declined = await handler.handle_message(PHONE, "no")

        assert declined.reply == "👍 Staying with Math Tutor. How can I help?"
        session = await _session(container)
        assert session.current_tool == "math-tutor"
        assert isinstance(session.switch_state, IdleSwitch)
        assert provider.calls_of("chat") == []
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_unclear_reply_keeps_waiting(self, container, provider):
        handler = container.whatsapp
        provider.classifier_reply = "math-tutor"
        await handler.handle_message(PHONE, "solve 2x + 3 = 7")

        unclear = await handler.handle_message(PHONE, "maybe later")

        assert unclear.reply == MSG_UNCLEAR_CONFIRMATION
        assert isinstance((await _session(container)).switch_state, AwaitingConfirmation)
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_no_suggestion_answers_directly(self, container, provider):
        provider.classifier_reply = "none"

        result = await container.whatsapp.handle_message(PHONE, "tell me a story")

        assert result.reply == "Here is my answer."
        session = await _session(container)
        assert [m.role for m in session.conversation_history] == ["user", "assistant"]
        assert session.current_tool == "creative-writing"
        stats = await container.ledger.stats("creative-writing", days=1)
        assert stats["bySource"]["whatsapp"]["requests"] == 1
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_classifier_failure_answers_with_current_tool(self, container, provider):
        provider.fail_classifier = True

        result = await container.whatsapp.handle_message(PHONE, "tell me a story")

        assert result.reply == "Here is my answer."
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_provider_failure_returns_apology(self, container, provider):
        provider.fail_chat = True

        result = await container.whatsapp.handle_message(PHONE, "tell me a story")

        assert result.reply == MSG_AI_UNAVAILABLE
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_cost_ceiling_reply(self, container, provider):
        container.governor.select_model = AsyncMock(side_effect=CostCeilingExceededError("creative-writing", 5.0))

        result = await container.whatsapp.handle_message(PHONE, "tell me a story")

        assert "unavailable today" in result.reply
        assert "Creative Writing Assistant" in result.reply
        await container.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_linked_exchange_is_mirrored_to_web(self, container, provider, transport):
        record = await container.links.request_link("+15551234567", "web_abc", None)
        await container.links.verify("+15551234567", record.code, "web_abc")
        provider.classifier_reply = "none"

        await container.whatsapp.handle_message(PHONE, "tell me a story")
        exchanges = await container.mirror.poll("web_abc")

        assert [(e.user_message, e.ai_response) for e in exchanges] == [("tell me a story", "Here is my answer.")]
        await container.scheduler.shutdown()
