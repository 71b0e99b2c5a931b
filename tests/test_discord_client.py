from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("discord")

import companion_pilot.discord.client as client_mod  # noqa: E402
from companion_pilot.config import Settings  # noqa: E402
from companion_pilot.memory.in_memory import InMemoryMemoryStore  # noqa: E402
from companion_pilot.runtime import build_runtime  # noqa: E402
from companion_pilot.services.mock_model import MockModelClient  # noqa: E402
from companion_pilot.tools.current_datetime import CurrentDateTimeTool  # noqa: E402
from companion_pilot.tools.registry import ToolRegistry  # noqa: E402
from companion_pilot.types import InboundMessage, TurnReply  # noqa: E402


Bot = client_mod.CompanionDiscordBot


class _Typing:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def __aenter__(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        return None

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class _FakeChannel:
    def __init__(self, channel_id: int = 30, typing_delay: float = 0.0) -> None:
        self.id = channel_id
        self.typing_delay = typing_delay
        self.sent: list[tuple[str, dict]] = []

    def typing(self) -> _Typing:
        return _Typing(self.typing_delay)

    async def send(self, content: str, **kwargs: object) -> None:
        self.sent.append((content, kwargs))


class _FakeMessage:
    def __init__(
        self,
        content: str,
        *,
        guild: object | None = SimpleNamespace(id=20),
        bot: bool = False,
        message_id: int = 40,
        typing_delay: float = 0.0,
    ) -> None:
        self.content = content
        self.guild = guild
        self.author = SimpleNamespace(id=10, bot=bot)
        self.channel = _FakeChannel(typing_delay=typing_delay)
        self.id = message_id
        self.created_at = datetime(2025, 3, 1, tzinfo=timezone.utc)
        self.replies: list[str] = []

    async def reply(self, content: str) -> None:
        self.replies.append(content)


class _FakeRuntime:
    def __init__(self, reply: TurnReply | Exception) -> None:
        self.reply = reply
        self.messages: list[InboundMessage] = []

    def enqueue(self, message: InboundMessage) -> asyncio.Future[TurnReply]:
        self.messages.append(message)
        future = asyncio.get_running_loop().create_future()
        if isinstance(self.reply, Exception):
            future.set_exception(self.reply)
        else:
            future.set_result(self.reply)
        return future


def _fake_bot(runtime: _FakeRuntime, *, mention_only: bool = False, mentioned: bool = False) -> SimpleNamespace:
    bot = SimpleNamespace(
        settings=SimpleNamespace(mention_only=mention_only),
        runtime=runtime,
        user=SimpleNamespace(id=99, mentioned_in=lambda message: mentioned),
    )
    bot._should_auto_reply = lambda message: Bot._should_auto_reply(bot, message)
    bot._strip_bot_mention = lambda text: Bot._strip_bot_mention(bot, text)
    bot._to_inbound = Bot._to_inbound
    bot._send_chunks = lambda channel, text, reference=None: Bot._send_chunks(bot, channel, text, reference)
    return bot


def test_should_auto_reply_respects_mention_only() -> None:
    runtime = _FakeRuntime(TurnReply(text="ok"))
    guild_message = _FakeMessage("hi")
    dm_message = _FakeMessage("hi", guild=None)

    assert Bot._should_auto_reply(_fake_bot(runtime), guild_message) is True
    assert Bot._should_auto_reply(_fake_bot(runtime, mention_only=True), guild_message) is False
    assert Bot._should_auto_reply(_fake_bot(runtime, mention_only=True, mentioned=True), guild_message) is True
    assert Bot._should_auto_reply(_fake_bot(runtime, mention_only=True), dm_message) is True


def test_strip_bot_mention_removes_both_mention_forms() -> None:
    bot = _fake_bot(_FakeRuntime(TurnReply(text="ok")))
    assert Bot._strip_bot_mention(bot, "<@99>  hello   <@!99> there") == "hello there"
    assert Bot._strip_bot_mention(bot, "<@12> hi") == "<@12> hi"


def test_on_message_builds_inbound_turn_and_sends_reply() -> None:
    runtime = _FakeRuntime(TurnReply(text="hello back"))
    bot = _fake_bot(runtime)
    message = _FakeMessage("<@99> hello")

    asyncio.run(Bot.on_message(bot, message))

    assert runtime.messages == [
        InboundMessage(
            user_id="10",
            guild_id="20",
            channel_id="30",
            content="hello",
            received_at=message.created_at,
            message_id="40",
        )
    ]
    assert message.channel.sent == [("hello back", {"reference": message})]


def test_on_message_uses_dm_guild_id_for_direct_messages() -> None:
    runtime = _FakeRuntime(TurnReply(text="hey"))
    asyncio.run(Bot.on_message(_fake_bot(runtime), _FakeMessage("yo", guild=None)))
    assert runtime.messages[0].guild_id == client_mod.DIRECT_MESSAGE_GUILD_ID


def test_on_message_ignores_bots_and_empty_mentions() -> None:
    runtime = _FakeRuntime(TurnReply(text="ok"))
    bot = _fake_bot(runtime)
    asyncio.run(Bot.on_message(bot, _FakeMessage("hi", bot=True)))
    asyncio.run(Bot.on_message(bot, _FakeMessage("<@99>")))
    assert runtime.messages == []


def test_on_message_replies_with_failure_notice() -> None:
    runtime = _FakeRuntime(RuntimeError("model down"))
    message = _FakeMessage("hello")

    asyncio.run(Bot.on_message(_fake_bot(runtime), message))

    assert message.replies == [client_mod.FAILURE_REPLY]
    assert message.channel.sent == []


def test_send_chunks_splits_long_replies_and_references_first_chunk() -> None:
    channel = _FakeChannel()
    reference = object()
    text = ("x" * 1500 + "\n") * 3

    asyncio.run(Bot._send_chunks(SimpleNamespace(), channel, text, reference))

    assert len(channel.sent) == 3
    assert channel.sent[0][1] == {"reference": reference}
    assert all(kwargs == {} for _, kwargs in channel.sent[1:])


def test_slow_typing_indicator_does_not_reorder_same_channel_turns() -> None:
    runtime = build_runtime(
        Settings(summary_enabled=False, model_timeout_seconds=5),
        memory=InMemoryMemoryStore(),
        model=MockModelClient(),
        tools=ToolRegistry([CurrentDateTimeTool()]),
    )
    bot = _fake_bot(runtime)
    first = _FakeMessage("first message", message_id=41, typing_delay=0.05)
    second = _FakeMessage("second message", message_id=42)

    async def scenario():
        await runtime.start()
        try:
            first_task = asyncio.create_task(Bot.on_message(bot, first))
            second_task = asyncio.create_task(Bot.on_message(bot, second))
            await asyncio.gather(first_task, second_task)
            return await runtime.memory.get_recent_turns("20", "30", 10)
        finally:
            await runtime.close()

    turns = asyncio.run(scenario())

    assert [turn.content for turn in turns if turn.role == "user"] == ["first message", "second message"]
    assert len(first.channel.sent) == 1
    assert len(second.channel.sent) == 1
