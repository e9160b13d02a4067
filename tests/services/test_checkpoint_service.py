import unittest

from checkpoint_chat.models import CheckpointStatus, Message, Role, SessionCheckpoint, SessionStatus, TokenUsage
from checkpoint_chat.services.checkpoint_service import CheckpointService

SONNET = "claude-sonnet-4-20250514"


def _usage(total: int, limit: int = 180_000) -> TokenUsage:
    return TokenUsage(input_tokens=total, output_tokens=0, total_tokens=total, percent_used=total / limit, model=SONNET)


def _checkpoint(**overrides) -> SessionCheckpoint:
    fields = dict(
        id="0123456789abcdef",
        session_id="session-1",
        timestamp="2026-03-01T10:00:00+00:00",
        task_description="Fix billing bug",
        completed_steps=[],
        current_step="Debugging invoice calc",
        next_steps=[],
        messages=[Message(role=Role.USER, content="hi"), Message(role=Role.ASSISTANT, content="hello")],
        token_usage=_usage(126_000),
        context_variables={},
        continuation_prompt="## SESSION RESUME - 0123456789abcdef\nline two",
        status=CheckpointStatus.ACTIVE,
        updated_at="2026-03-01T10:00:01+00:00",
    )
    fields.update(overrides)
    return SessionCheckpoint(**fields)


class CheckpointServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._service = CheckpointService(line_prefix="> ")

    def test_short_id(self) -> None:
        self.assertEqual("01234567", self._service.short_id("0123456789abcdef"))
        self.assertEqual("abc", self._service.short_id("abc"))

    def test_list_entry(self) -> None:
        line = self._service.format_checkpoint_list_entry(_checkpoint())

        self.assertTrue(line.startswith("> - [01234567] Fix billing bug"))
        self.assertIn("status=active", line)
        self.assertIn("messages=2", line)
        self.assertIn("context=70%", line)

    def test_resume_offer_lines(self) -> None:
        lines = self._service.format_resume_offer_lines(_checkpoint())

        self.assertEqual(
            [
                "> Found an active checkpoint from a previous session:",
                "> - Task: Fix billing bug",
                "> - Current step: Debugging invoice calc",
                "> - Saved: 2026-03-01T10:00:00+00:00 | 2 messages | 70% context used",
            ],
            lines,
        )

    def test_detail_lines_include_prompt(self) -> None:
        lines = self._service.format_checkpoint_detail_lines(_checkpoint(status=CheckpointStatus.RESUMED))

        self.assertEqual("> Checkpoint 0123456789abcdef (resumed)", lines[0])
        self.assertIn("> - Usage: 126,000 / 180,000 (70%)", lines)
        self.assertEqual(["## SESSION RESUME - 0123456789abcdef", "line two"], lines[-2:])

    def test_usage_line_bar(self) -> None:
        line = self._service.format_usage_line(_usage(63_000), SessionStatus.ACTIVE)

        self.assertEqual("> [#######.............] context 63,000 / 180,000 (35%) - active", line)

    def test_usage_line_full_bar(self) -> None:
        line = self._service.format_usage_line(_usage(180_000), SessionStatus.CRITICAL)

        self.assertTrue(line.startswith("> [##############!!!XXX] context 180,000 / 180,000 (100%)"))
        self.assertTrue(line.endswith("- critical"))

    def test_model_limit_overrides_used_for_display(self) -> None:
        service = CheckpointService(line_prefix="", model_limits={SONNET: 200_000})
        usage = TokenUsage(input_tokens=50_000, output_tokens=0, total_tokens=50_000, percent_used=0.25, model=SONNET)

        self.assertIn("50,000 / 200,000 (25%)", service.format_usage_line(usage, SessionStatus.ACTIVE))
