from __future__ import annotations

import gc
import random

import pytest

from solsmith.core.display import DisplayTracker
from solsmith.errors import SendError, TransportError
from solsmith.messenger.models import OutgoingMessage


def _msg(text: str) -> OutgoingMessage:
    return OutgoingMessage(text=text)


async def test_replace_removes_previous_message(gateway) -> None:
    tracker = DisplayTracker(gateway)

    first = await tracker.replace("1", _msg("one"))
    second = await tracker.replace("1", _msg("two"))

    assert ("1", first) in gateway.deleted
    assert list(gateway.visible["1"]) == [second]
    assert tracker.current("1") == second


async def test_replace_swallows_already_deleted_message(gateway) -> None:
    tracker = DisplayTracker(gateway)
    first = await tracker.replace("1", _msg("one"))
    del gateway.visible["1"][first]  # user deleted it

    second = await tracker.replace("1", _msg("two"))

    assert tracker.current("1") == second


async def test_replace_ignores_other_delete_failures(gateway) -> None:
    tracker = DisplayTracker(gateway)
    first = await tracker.replace("1", _msg("one"))
    gateway.delete_errors[first] = TransportError("too old to delete")

    second = await tracker.replace("1", _msg("two"))

    assert tracker.current("1") == second


async def test_failed_send_leaves_no_tracked_message(gateway) -> None:
    tracker = DisplayTracker(gateway)
    await tracker.replace("1", _msg("one"))
    gateway.fail_send = True

    with pytest.raises(SendError):
        await tracker.replace("1", _msg("two"))

    assert tracker.current("1") is None
    assert gateway.visible["1"] == {}


async def test_clear_forgets_without_deleting(gateway) -> None:
    tracker = DisplayTracker(gateway)
    ref = await tracker.replace("1", _msg("keep me"))

    tracker.clear("1")
    await tracker.replace("1", _msg("next"))

    assert ref in gateway.visible["1"]
    assert gateway.deleted == []


async def test_consume_inbound_echo_registers_direct_send(gateway) -> None:
    tracker = DisplayTracker(gateway)
    menu = await tracker.replace("1", _msg("menu"))
    placeholder = await gateway.send_message("1", _msg("generating"))

    await tracker.consume_inbound_echo("1", placeholder)
    assert tracker.current("1") == placeholder
    assert menu not in gateway.visible["1"]

    result = await tracker.replace("1", _msg("result"))
    assert list(gateway.visible["1"]) == [result]


async def test_chats_are_tracked_independently(gateway) -> None:
    tracker = DisplayTracker(gateway)
    a = await tracker.replace("a", _msg("a"))
    b = await tracker.replace("b", _msg("b"))

    assert tracker.current("a") == a
    assert tracker.current("b") == b
    assert gateway.deleted == []


async def test_at_most_one_tracked_message_after_random_sequence(gateway) -> None:
    tracker = DisplayTracker(gateway)
    rng = random.Random(1234)
    chats = ["a", "b", "c"]

    for step in range(200):
        chat = rng.choice(chats)
        op = rng.random()
        if op < 0.6:
            gateway.fail_send = rng.random() < 0.1
            try:
                await tracker.replace(chat, _msg(f"step {step}"))
            except SendError:
                pass
            gateway.fail_send = False
        elif op < 0.8:
            ref = await gateway.send_message(chat, _msg("direct"))
            await tracker.consume_inbound_echo(chat, ref)
        else:
            current = tracker.current(chat)
            if current is not None:
                gateway.visible[chat].pop(current, None)

    for chat in chats:
        visible = set(gateway.visible.get(chat, {}))
        current = tracker.current(chat)
        assert len(visible) <= 1
        assert visible <= ({current} if current else set())


async def test_per_chat_locks_are_released_after_use(gateway) -> None:
    tracker = DisplayTracker(gateway)

    for chat in range(50):
        await tracker.replace(str(chat), _msg("hello"))
    gc.collect()

    assert len(tracker._locks) == 0
    assert tracker.current("49") is not None
