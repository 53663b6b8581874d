"""Tests for the ResponseMonitor polling engine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from antigravity_relay.automation.actions import AssistantResponse
from antigravity_relay.errors import ConnectionClosedError
from antigravity_relay.monitor.approvals import APPROVE_ACTION, REJECT_ACTION, ApprovalBridge
from antigravity_relay.monitor.engine import (
    APPROVAL_BUTTONS,
    RESPONSE_MARKER,
    MonitorState,
    ResponseMonitor,
    chunk_text,
)


def _sequence(*values, then=None):
    """side_effect that plays *values* once and then keeps returning *then*."""
    items = iter(values)

    async def next_value(*args, **kwargs):
        return next(items, then)

    return next_value


def _actions(prompts=None, busy=None, response="All done."):
    actions = MagicMock()
    actions.approval_prompt = AsyncMock(side_effect=prompts or _sequence())
    actions.is_generating = AsyncMock(side_effect=busy or _sequence(then=False))
    actions.last_response = AsyncMock(
        return_value=AssistantResponse(text=response) if response is not None else None
    )
    actions.resolve_approval = AsyncMock(return_value=True)
    actions.connection = MagicMock()
    return actions


@pytest.fixture
def channel():
    ch = MagicMock()
    ch.send_message = AsyncMock(return_value="500")
    ch.edit_message = AsyncMock()
    return ch


@pytest.fixture
async def approvals():
    bridge = ApprovalBridge(default_timeout=60)
    yield bridge
    bridge.cancel_all()


@pytest.fixture
def monitor(channel, approvals):
    return ResponseMonitor(
        channel,
        approvals,
        poll_interval=0,
        initial_delay=0,
        approval_grace=0,
        clear_interval=0,
    )


async def _wait_for(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


class TestChunkText:
    def test_9000_characters(self):
        """A 9000-character response becomes chunks of 3900, 3900 and 1200 in order."""
        text = "a" * 3900 + "b" * 3900 + "c" * 1200

        chunks = chunk_text(text, 3900)

        assert [len(c) for c in chunks] == [3900, 3900, 1200]
        assert chunks[0] == "a" * 3900 and chunks[2] == "c" * 1200

    def test_short_text(self):
        assert chunk_text("hi") == ["hi"]


class TestCompletion:
    async def test_busy_busy_then_three_idle(self, monitor, channel):
        """Busy true,true,false,false,false ends the cycle on the fifth tick and delivers."""
        actions = _actions(busy=_sequence(True, True, False, False, False, then=True))

        assert await monitor.run("111", "7", actions) is True

        assert actions.is_generating.await_count == 5
        channel.send_message.assert_awaited_once_with(
            "111", f"{RESPONSE_MARKER}\nAll done.", reply_to="7"
        )
        assert monitor.state is MonitorState.IDLE
        assert not monitor.busy

    async def test_busy_reading_resets_idle_counter(self, monitor, channel):
        actions = _actions(busy=_sequence(False, False, True, False, False, False))

        await monitor.run("111", "7", actions)

        assert actions.is_generating.await_count == 6
        channel.send_message.assert_awaited_once()

    async def test_long_response_is_chunked(self, monitor, channel):
        actions = _actions(response="x" * 9000)

        await monitor.run("111", "7", actions)

        texts = [c.args[1] for c in channel.send_message.await_args_list]
        assert len(texts) == 3
        assert texts[0] == f"{RESPONSE_MARKER}\n" + "x" * 3900
        assert texts[1] == "x" * 3900
        assert texts[2] == "x" * 1200

    async def test_empty_response_is_not_sent(self, monitor, channel):
        await monitor.run("111", "7", _actions(response=None))
        channel.send_message.assert_not_awaited()


class TestLifecycle:
    async def test_second_start_is_rejected(self, monitor):
        actions = _actions(busy=_sequence(then=True))

        assert monitor.start("111", "7", actions) is True
        assert monitor.start("222", "8", actions) is False

        monitor.stop()
        await monitor.task
        assert not monitor.busy

    async def test_stop_ends_cycle_without_delivery(self, monitor, channel):
        actions = _actions(busy=_sequence(then=True))
        monitor.start("111", "7", actions)
        await _wait_for(lambda: actions.is_generating.await_count >= 2)

        monitor.stop()
        await monitor.task

        channel.send_message.assert_not_awaited()
        assert monitor.state is MonitorState.IDLE

    async def test_error_aborts_cycle_and_resets_busy(self, monitor, channel):
        actions = _actions()
        actions.is_generating.side_effect = ConnectionClosedError("socket gone")

        await monitor.run("111", "7", actions)

        assert not monitor.busy
        assert monitor.state is MonitorState.IDLE
        channel.send_message.assert_not_awaited()
        # A fresh cycle can start afterwards
        assert monitor.start("111", "8", _actions()) is True
        await monitor.task

    async def test_cycle_started_during_delivery_keeps_its_state(self, monitor, channel):
        """A prompt sent while the previous reply is being delivered gets the only active cycle."""
        delivering = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(chat_id, text, **kwargs):
            if not delivering.is_set():
                delivering.set()
                await release.wait()
            return "500"

        channel.send_message.side_effect = slow_send
        assert monitor.start("111", "7", _actions()) is True
        first = monitor.task
        await asyncio.wait_for(delivering.wait(), 1.0)

        second_actions = _actions(busy=_sequence(then=True))
        assert monitor.start("111", "8", second_actions) is True
        second = monitor.task
        release.set()
        await first

        assert not second.done()
        assert monitor.busy
        assert monitor.state is MonitorState.BUSY
        assert monitor.start("111", "9", _actions()) is False

        monitor.stop()
        await second
        assert not monitor.busy
        assert monitor.state is MonitorState.IDLE


class TestApprovals:
    async def test_reject_before_deadline(self, monitor, channel, approvals):
        """A persisting prompt is posted; rejecting it clicks reject and updates the message."""
        actions = _actions(prompts=_sequence("Run rm -rf build?", "Run rm -rf build?"))
        monitor.start("111", "7", actions)

        await _wait_for(lambda: approvals.pending_ids == ["111:500"])
        assert monitor.state is MonitorState.APPROVAL_PENDING
        approvals.resolve_action(REJECT_ACTION, "111:500")
        await monitor.task

        first = channel.send_message.await_args_list[0]
        assert "Run rm -rf build?" in first.args[1]
        assert first.kwargs["buttons"] == APPROVAL_BUTTONS
        assert first.kwargs["reply_to"] == "7"
        actions.resolve_approval.assert_awaited_once_with(False)
        edited = channel.edit_message.await_args.args
        assert edited[:2] == ("111", "500")
        assert "Rejected" in edited[2]
        # Polling resumed and the cycle completed normally
        assert channel.send_message.await_args_list[-1].args[1].startswith(RESPONSE_MARKER)

    async def test_approve_clicks_allow(self, monitor, channel, approvals):
        actions = _actions(prompts=_sequence("Allow edit?", "Allow edit?", "Allow edit?"))
        monitor.start("111", "7", actions)

        await _wait_for(lambda: approvals.pending_ids == ["111:500"])
        approvals.resolve_action(APPROVE_ACTION, "111:500")
        await monitor.task

        actions.resolve_approval.assert_awaited_once_with(True)
        assert "Approved" in channel.edit_message.await_args.args[2]

    async def test_flicker_is_not_reported(self, monitor, channel, approvals):
        """A prompt gone after the grace period produces no notification."""
        actions = _actions(prompts=_sequence("Run tests?", None))

        await monitor.run("111", "7", actions)

        texts = [c.args[1] for c in channel.send_message.await_args_list]
        assert texts == [f"{RESPONSE_MARKER}\nAll done."]
        assert approvals.pending_ids == []

    async def test_unchanged_prompt_is_posted_once(self, channel):
        """After a timeout, the same prompt text is not re-posted while it stays up."""
        approvals = ApprovalBridge(default_timeout=0.02)
        monitor = ResponseMonitor(
            channel,
            approvals,
            poll_interval=0.005,
            initial_delay=0,
            approval_grace=0,
            approval_timeout=0.02,
        )
        actions = _actions(prompts=_sequence(then="Run npm install?"))

        monitor.start("111", "7", actions)
        await _wait_for(lambda: channel.edit_message.await_count == 1)
        await asyncio.sleep(0.05)
        monitor.stop()
        await monitor.task

        assert channel.send_message.await_count == 1
        assert "timed out" in channel.edit_message.await_args.args[2]
        actions.resolve_approval.assert_not_awaited()

    async def test_prompt_posted_again_after_it_clears(self, channel):
        """The same text is notified again once a tick has seen the prompt gone."""
        approvals = ApprovalBridge(default_timeout=0.02)
        monitor = ResponseMonitor(
            channel,
            approvals,
            poll_interval=0.005,
            initial_delay=0,
            approval_grace=0,
            approval_timeout=0.02,
        )
        actions = _actions(
            prompts=_sequence("Run A?", "Run A?", None, "Run A?", "Run A?"),
            busy=_sequence(then=True),
        )
        channel.send_message.side_effect = ["500", "501"]

        monitor.start("111", "7", actions)
        await _wait_for(lambda: channel.edit_message.await_count == 2)
        monitor.stop()
        await monitor.task

        posted = [c.args[1] for c in channel.send_message.await_args_list]
        assert len(posted) == 2
        assert all("Run A?" in text for text in posted)
        assert [c.args[1] for c in channel.edit_message.await_args_list] == ["500", "501"]

    async def test_new_prompt_text_is_posted(self, channel):
        approvals = ApprovalBridge(default_timeout=0.02)
        monitor = ResponseMonitor(
            channel,
            approvals,
            poll_interval=0.005,
            initial_delay=0,
            approval_grace=0,
            approval_timeout=0.02,
        )
        actions = _actions(prompts=_sequence("Run A?", "Run A?", then="Run B?"))
        channel.send_message.side_effect = ["500", "501", "502"]

        monitor.start("111", "7", actions)
        await _wait_for(lambda: channel.edit_message.await_count == 2)
        monitor.stop()
        await monitor.task

        posted = [c.args[1] for c in channel.send_message.await_args_list]
        assert len(posted) == 2
        assert "Run A?" in posted[0]
        assert "Run B?" in posted[1]

    async def test_failed_click_does_not_abort(self, monitor, channel, approvals):
        actions = _actions(prompts=_sequence("Allow?", "Allow?"))
        actions.resolve_approval.side_effect = RuntimeError("click failed")
        monitor.start("111", "7", actions)

        await _wait_for(lambda: approvals.pending_ids == ["111:500"])
        approvals.resolve_action(APPROVE_ACTION, "111:500")
        await monitor.task

        assert "Approved" in channel.edit_message.await_args.args[2]
        assert channel.send_message.await_args_list[-1].args[1].startswith(RESPONSE_MARKER)
