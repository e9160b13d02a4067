import asyncio
import unittest

from checkpoint_chat.checkpoint_builder import build_checkpoint
from checkpoint_chat.memory import (
    ActivityLog,
    CheckpointStore,
    CheckpointStoreError,
    InvalidCheckpointTransitionError,
    MemoryStore,
)
from checkpoint_chat.memory.activity import CHECKPOINT_ACTIVITY
from checkpoint_chat.models import CheckpointStatus, Role, SessionState, SessionStatus
from checkpoint_chat.provider import StreamError, TextDelta, UsageDelta, UsageStart
from checkpoint_chat.services.session_controller import (
    CheckpointPrompt,
    SendInProgressError,
    SessionController,
)
from checkpoint_chat.token_monitor import calculate_token_usage
from checkpoint_chat.turn_engine import TurnEngine

MODEL = "claude-sonnet-4-20250514"


class _ScriptedProvider:
    """Replays one scripted event list per call and records each request."""

    def __init__(self, *scripts: list[object]):
        self._scripts = list(scripts)
        self.requests: list[list[dict]] = []

    async def stream_reply(self, model, max_tokens, temperature, system_prompt, messages):
        self.requests.append([dict(m) for m in messages])
        script = self._scripts.pop(0) if self._scripts else [TextDelta("ok"), UsageDelta(1)]
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event


class _BlockingProvider:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def stream_reply(self, model, max_tokens, temperature, system_prompt, messages):
        self.started.set()
        await self.release.wait()
        yield TextDelta("done")
        yield UsageDelta(1)


class _FailingActivityLog:
    def record_checkpoint(self, checkpoint) -> str:
        raise RuntimeError("activity backend down")


class _FailingCheckpointStore:
    def insert(self, checkpoint):
        raise CheckpointStoreError("disk full")

    def update_status(self, checkpoint_id, status):
        raise CheckpointStoreError("disk full")


def _reply(text: str, input_tokens: int, output_tokens: int) -> list[object]:
    return [UsageStart(input_tokens), TextDelta(text), UsageDelta(output_tokens)]


class SessionControllerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._store = MemoryStore(":memory:")
        self._checkpoints = CheckpointStore(self._store)
        self._activities = ActivityLog(self._store)

    def tearDown(self) -> None:
        self._store.close()

    def _controller(self, provider, *, checkpoint_store=None, activity_log=None, model_limits=None) -> SessionController:
        engine = TurnEngine(
            provider=provider,
            model=MODEL,
            max_tokens=1024,
            temperature=0.0,
            system_prompt="system",
        )
        return SessionController(
            turn_engine=engine,
            checkpoint_store=checkpoint_store or self._checkpoints,
            activity_log=activity_log if activity_log is not None else self._activities,
            model_limits=model_limits,
        )

    def test_send_appends_exchange_and_accumulates_usage(self) -> None:
        provider = _ScriptedProvider(_reply("Hello ", 999, 0) + [TextDelta("world"), UsageDelta(12)])
        controller = self._controller(provider)
        deltas: list[str] = []

        result = asyncio.run(controller.send("a" * 40, on_text_delta=deltas.append))

        self.assertEqual(["Hello ", "world"], deltas)
        self.assertEqual("Hello world", result.assistant_message.content)
        self.assertEqual(10, result.user_message.tokens)
        self.assertEqual(12, result.assistant_message.tokens)
        self.assertEqual(999, result.reported_input_tokens)
        usage = controller.state.token_usage
        self.assertEqual((10, 12, 22), (usage.input_tokens, usage.output_tokens, usage.total_tokens))
        self.assertEqual([Role.USER, Role.ASSISTANT], [m.role for m in controller.state.messages])
        self.assertEqual([{"role": "user", "content": "a" * 40}], provider.requests[0])

    def test_missing_usage_report_falls_back_to_estimate(self) -> None:
        controller = self._controller(_ScriptedProvider([TextDelta("x" * 21)]))

        result = asyncio.run(controller.send("hi"))

        self.assertEqual(6, result.assistant_message.tokens)
        self.assertEqual(7, controller.state.token_usage.total_tokens)

    def test_blank_message_rejected(self) -> None:
        controller = self._controller(_ScriptedProvider())

        with self.assertRaises(ValueError):
            asyncio.run(controller.send("   "))
        self.assertEqual([], controller.state.messages)

    def test_stream_error_keeps_partial_and_leaves_counters(self) -> None:
        provider = _ScriptedProvider(
            _reply("first", 5, 3),
            [UsageStart(10), TextDelta("partial"), StreamError("overloaded")],
        )
        controller = self._controller(provider)
        asyncio.run(controller.send("one"))
        before = controller.state.token_usage

        result = asyncio.run(controller.send("two"))

        self.assertTrue(result.failed)
        self.assertEqual("partial\n\n[Error: overloaded]", result.assistant_message.content)
        self.assertTrue(result.user_message.failed)
        self.assertIsNone(result.assistant_message.tokens)
        self.assertEqual(before, controller.state.token_usage)
        self.assertEqual(4, len(controller.state.messages))
        self.assertEqual(
            controller.state.token_usage,
            calculate_token_usage(controller.state.messages, MODEL),
        )

    def test_transport_exception_becomes_failed_exchange(self) -> None:
        controller = self._controller(_ScriptedProvider([ConnectionError("reset by peer")]))

        result = asyncio.run(controller.send("hello"))

        self.assertTrue(result.failed)
        self.assertEqual("[Error: reset by peer]", result.assistant_message.content)
        self.assertEqual(0, controller.state.token_usage.total_tokens)

    def test_failed_turns_are_not_sent_again_and_retry_resends(self) -> None:
        provider = _ScriptedProvider(
            [StreamError("boom")],
            _reply("recovered", 4, 2),
        )
        controller = self._controller(provider)
        asyncio.run(controller.send("please work"))

        result = asyncio.run(controller.retry_last())

        self.assertFalse(result.failed)
        self.assertEqual("please work", result.user_message.content)
        self.assertEqual([{"role": "user", "content": "please work"}], provider.requests[1])
        self.assertEqual(4, len(controller.state.messages))

    def test_retry_without_failure_rejected(self) -> None:
        controller = self._controller(_ScriptedProvider())
        asyncio.run(controller.send("fine"))

        with self.assertRaises(ValueError):
            asyncio.run(controller.retry_last())

    def test_second_send_while_streaming_rejected(self) -> None:
        provider = _BlockingProvider()
        controller = self._controller(provider)

        async def scenario():
            first = asyncio.create_task(controller.send("first"))
            await provider.started.wait()
            self.assertTrue(controller.is_streaming)
            with self.assertRaises(SendInProgressError):
                await controller.send("second")
            with self.assertRaises(SendInProgressError):
                controller.save_checkpoint("task")
            provider.release.set()
            return await first

        result = asyncio.run(scenario())

        self.assertEqual("done", result.assistant_message.content)
        self.assertFalse(controller.is_streaming)
        self.assertEqual(2, len(controller.state.messages))

    def test_checkpoint_prompt_escalates_with_usage(self) -> None:
        controller = self._controller(
            _ScriptedProvider(_reply("a", 0, 30), _reply("b", 0, 20), _reply("c", 0, 20)),
            model_limits={MODEL: 100},
        )

        first = asyncio.run(controller.send("x" * 100))
        self.assertEqual(SessionStatus.ACTIVE, first.status)
        self.assertEqual(CheckpointPrompt.NONE, first.checkpoint_prompt)

        second = asyncio.run(controller.send("y" * 4))
        self.assertEqual(SessionStatus.WARNING, second.status)
        self.assertEqual(CheckpointPrompt.SUGGESTED, second.checkpoint_prompt)

        controller.dismiss_checkpoint_suggestion()
        self.assertEqual(CheckpointPrompt.NONE, controller.checkpoint_prompt)

        third = asyncio.run(controller.send("z" * 4))
        self.assertEqual(SessionStatus.CRITICAL, third.status)
        self.assertEqual(CheckpointPrompt.REQUIRED, third.checkpoint_prompt)

    def test_dismiss_below_warning_zone_does_not_hide_later_nudge(self) -> None:
        controller = self._controller(
            _ScriptedProvider(_reply("a", 0, 30), _reply("b", 0, 40)),
            model_limits={MODEL: 100},
        )
        asyncio.run(controller.send("x" * 4))

        self.assertFalse(controller.dismiss_checkpoint_suggestion())

        result = asyncio.run(controller.send("y" * 4))
        self.assertEqual(SessionStatus.WARNING, result.status)
        self.assertEqual(CheckpointPrompt.SUGGESTED, result.checkpoint_prompt)
        self.assertTrue(controller.dismiss_checkpoint_suggestion())
        self.assertEqual(CheckpointPrompt.NONE, controller.checkpoint_prompt)

    def test_resume_of_terminal_checkpoint_leaves_session_untouched(self) -> None:
        provider = _ScriptedProvider()
        controller = self._controller(provider)
        asyncio.run(controller.send("old work"))
        saved = controller.save_checkpoint("task")
        controller.abandon(saved)
        asyncio.run(controller.send("new work"))
        session_id = controller.state.session_id
        messages = list(controller.state.messages)
        usage = controller.state.token_usage
        request_count = len(provider.requests)

        with self.assertRaises(InvalidCheckpointTransitionError):
            asyncio.run(controller.resume(saved))

        self.assertEqual(session_id, controller.state.session_id)
        self.assertEqual(messages, controller.state.messages)
        self.assertEqual(usage, controller.state.token_usage)
        self.assertEqual(request_count, len(provider.requests))
        self.assertEqual(CheckpointStatus.ABANDONED, self._checkpoints.get(saved.id).status)

    def test_resume_store_failure_leaves_session_untouched(self) -> None:
        provider = _ScriptedProvider()
        controller = self._controller(provider, checkpoint_store=_FailingCheckpointStore())
        asyncio.run(controller.send("current work"))
        session_id = controller.state.session_id
        messages = list(controller.state.messages)
        checkpoint = build_checkpoint(SessionState.fresh(MODEL), "task", [], "step", [])

        with self.assertRaises(CheckpointStoreError):
            asyncio.run(controller.resume(checkpoint))

        self.assertEqual(session_id, controller.state.session_id)
        self.assertEqual(messages, controller.state.messages)
        self.assertEqual(1, len(provider.requests))

    def test_save_persists_logs_activity_and_resets(self) -> None:
        controller = self._controller(_ScriptedProvider(_reply("answer", 4, 6)))
        asyncio.run(controller.send("question"))
        old_session = controller.state.session_id

        saved = controller.save_checkpoint(
            "Fix billing bug",
            current_step="Debugging invoice calc",
            next_steps=["Write test", "Deploy"],
        )

        self.assertEqual(CheckpointStatus.ACTIVE, saved.status)
        self.assertEqual(old_session, saved.session_id)
        self.assertEqual(["answer"], saved.completed_steps)
        self.assertEqual(2, len(saved.messages))
        self.assertEqual(saved.id, self._checkpoints.get_active().id)
        activity = self._activities.list_recent(CHECKPOINT_ACTIVITY)
        self.assertEqual(saved.id, activity[0]["payload"]["checkpoint_id"])
        self.assertNotEqual(old_session, controller.state.session_id)
        self.assertEqual([], controller.state.messages)
        self.assertEqual(0, controller.state.token_usage.total_tokens)

    def test_save_failure_leaves_session_untouched(self) -> None:
        controller = self._controller(_ScriptedProvider(), checkpoint_store=_FailingCheckpointStore())
        asyncio.run(controller.send("keep me"))
        session_id = controller.state.session_id
        usage = controller.state.token_usage

        with self.assertRaises(CheckpointStoreError):
            controller.save_checkpoint("task")

        self.assertEqual(session_id, controller.state.session_id)
        self.assertEqual(usage, controller.state.token_usage)
        self.assertEqual(2, len(controller.state.messages))

    def test_activity_failure_does_not_block_save(self) -> None:
        controller = self._controller(_ScriptedProvider(), activity_log=_FailingActivityLog())
        asyncio.run(controller.send("hello"))

        saved = controller.save_checkpoint("task")

        self.assertEqual(saved.id, self._checkpoints.get(saved.id).id)
        self.assertEqual([], controller.state.messages)

    def test_resume_rehydrates_and_submits_continuation_prompt(self) -> None:
        provider = _ScriptedProvider(_reply("found it", 5, 5), _reply("continuing", 50, 7))
        controller = self._controller(provider)
        asyncio.run(controller.send("why is the invoice total wrong?"))
        saved = controller.save_checkpoint(
            "Fix billing bug",
            current_step="Debugging invoice calc",
            next_steps=["Write test", "Deploy"],
        )

        checkpoint = controller.find_resumable()
        result = asyncio.run(controller.resume(checkpoint))

        messages = controller.state.messages
        self.assertEqual(saved.session_id, controller.state.session_id)
        self.assertEqual(saved.messages, messages[: len(saved.messages)])
        added_user = [m for m in messages[len(saved.messages):] if m.role == Role.USER]
        self.assertEqual(1, len(added_user))
        self.assertEqual(saved.continuation_prompt, added_user[0].content)
        self.assertEqual("continuing", result.assistant_message.content)
        self.assertEqual(CheckpointStatus.RESUMED, self._checkpoints.get(saved.id).status)
        self.assertIsNone(controller.find_resumable())
        self.assertEqual(saved.continuation_prompt, provider.requests[1][-1]["content"])
        self.assertEqual(3, len(provider.requests[1]))

    def test_resume_without_submit_only_rehydrates(self) -> None:
        controller = self._controller(_ScriptedProvider())
        asyncio.run(controller.send("hi"))
        saved = controller.save_checkpoint("task")

        result = asyncio.run(controller.resume(saved, submit=False))

        self.assertIsNone(result)
        self.assertEqual(saved.messages, controller.state.messages)
        self.assertEqual(saved.token_usage, controller.state.token_usage)

    def test_rehydrated_messages_are_independent_of_record(self) -> None:
        controller = self._controller(_ScriptedProvider())
        asyncio.run(controller.send("hi"))
        saved = controller.save_checkpoint("task")

        asyncio.run(controller.resume(saved, submit=False))
        controller.state.messages[0].content = "changed"

        self.assertEqual("hi", self._checkpoints.get(saved.id).messages[0].content)

    def test_abandon_changes_only_status(self) -> None:
        controller = self._controller(_ScriptedProvider())
        asyncio.run(controller.send("hi"))
        saved = controller.save_checkpoint("task")

        abandoned = controller.abandon(saved)

        self.assertEqual(CheckpointStatus.ABANDONED, abandoned.status)
        self.assertEqual(saved.messages, abandoned.messages)
        self.assertEqual(saved.token_usage, abandoned.token_usage)
        self.assertEqual(saved.continuation_prompt, abandoned.continuation_prompt)
        self.assertIsNone(controller.find_resumable())

    def test_start_new_session_resets_state(self) -> None:
        controller = self._controller(_ScriptedProvider())
        asyncio.run(controller.send("hi"))
        old = controller.state.session_id

        state = controller.start_new_session()

        self.assertNotEqual(old, state.session_id)
        self.assertEqual([], state.messages)
        self.assertEqual(0, state.token_usage.total_tokens)
        self.assertEqual(MODEL, state.model)
