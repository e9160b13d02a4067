from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from checkpoint_chat.commands.router import CommandRouter
from checkpoint_chat.memory.checkpoints import (
    CheckpointNotFoundError,
    CheckpointStoreError,
    InvalidCheckpointTransitionError,
)
from checkpoint_chat.services.checkpoint_service import CheckpointService
from checkpoint_chat.services.session_controller import (
    CheckpointPrompt,
    ExchangeResult,
    SendInProgressError,
    SessionController,
)
from checkpoint_chat.spinner import Spinner


class ChatApp:
    _LINE_PREFIX = "assistant> "

    def __init__(
        self,
        controller: SessionController,
        *,
        show_spinner: bool = True,
        input_func: Callable[[str], str] = input,
    ):
        self._controller = controller
        self._show_spinner = show_spinner
        self._input = input_func
        self._checkpoint_service = CheckpointService(
            line_prefix=self._LINE_PREFIX,
            model_limits=controller.model_limits,
        )
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_checkpoint=self._handle_checkpoint_command,
            on_usage=self._on_usage,
            on_new=self._on_new,
            on_retry=self._on_retry,
            on_unknown=self._on_unknown_command,
        )

    @property
    def controller(self) -> SessionController:
        return self._controller

    async def offer_resume(self) -> None:
        """At startup, offer to continue from the most recent active checkpoint."""
        try:
            checkpoint = self._controller.find_resumable()
        except CheckpointStoreError as ex:
            logger.error(f"Active checkpoint lookup failed: {ex}")
            print(f"{self._LINE_PREFIX}Could not check for saved checkpoints: {ex}")
            return
        if checkpoint is None:
            return

        for line in self._checkpoint_service.format_resume_offer_lines(checkpoint):
            print(line)
        try:
            answer = self._input(f"{self._LINE_PREFIX}Resume it? [y/N] ")
        except (EOFError, KeyboardInterrupt):
            print()
            print(f"{self._LINE_PREFIX}No answer given; checkpoint kept for next time.")
            return

        try:
            if answer.strip().lower() in {"y", "yes"}:
                print()
                print_delta, finish = self._stream_printer()
                try:
                    result = await self._controller.resume(checkpoint, on_text_delta=print_delta)
                finally:
                    finish()
                if result is not None:
                    self._report_exchange(result)
            else:
                self._controller.abandon(checkpoint)
                print(f"{self._LINE_PREFIX}Checkpoint abandoned. Starting fresh.")
        except (CheckpointStoreError, CheckpointNotFoundError, InvalidCheckpointTransitionError) as ex:
            print(f"{self._LINE_PREFIX}Could not update checkpoint: {ex}")

    async def run(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return
        await self._send(user_message)

    async def _send(self, text: str) -> None:
        print_delta, finish = self._stream_printer()
        try:
            result = await self._controller.send(text, on_text_delta=print_delta)
        except SendInProgressError as ex:
            finish()
            print(f"{self._LINE_PREFIX}{ex}")
            return
        finally:
            finish()
        self._report_exchange(result)

    def _stream_printer(self) -> tuple[Callable[[str], None], Callable[[], None]]:
        spinner = Spinner(prefix=self._LINE_PREFIX) if self._show_spinner else None
        if spinner is not None:
            spinner.start()
        else:
            print(self._LINE_PREFIX, end="", flush=True)

        def print_delta(delta: str) -> None:
            if spinner is not None:
                spinner.stop()
            print(delta, end="", flush=True)

        finished = False

        def finish() -> None:
            nonlocal finished
            if finished:
                return
            finished = True
            if spinner is not None:
                spinner.stop()
            print()

        return print_delta, finish

    def _report_exchange(self, result: ExchangeResult) -> None:
        if result.failed:
            print(f"{self._LINE_PREFIX}{result.assistant_message.content}")
            print(f"{self._LINE_PREFIX}Send failed. Use /retry to send it again.")
            return

        print(self._checkpoint_service.format_usage_line(result.token_usage, result.status))
        percent = round(result.token_usage.percent_used * 100)
        if result.checkpoint_prompt == CheckpointPrompt.REQUIRED:
            print(
                f"{self._LINE_PREFIX}Context at {percent}%. Save now to continue fresh: "
                "/checkpoint save [task]"
            )
        elif result.checkpoint_prompt == CheckpointPrompt.SUGGESTED:
            print(
                f"{self._LINE_PREFIX}Context at {percent}%. Consider /checkpoint save [task] "
                "(or /checkpoint dismiss)"
            )

    async def _on_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /usage")
        print(f"{self._LINE_PREFIX}- /new")
        print(f"{self._LINE_PREFIX}- /retry")
        print(f"{self._LINE_PREFIX}- /checkpoint save [task] [| current step | next; steps]")
        print(f"{self._LINE_PREFIX}- /checkpoint list [limit]")
        print(f"{self._LINE_PREFIX}- /checkpoint show <checkpoint_id>")
        print(f"{self._LINE_PREFIX}- /checkpoint dismiss")

    async def _on_usage(self) -> None:
        usage = self._controller.state.token_usage
        print(self._checkpoint_service.format_usage_line(usage, self._controller.status))
        print(
            f"{self._LINE_PREFIX}input={usage.input_tokens:,} output={usage.output_tokens:,} "
            f"model={usage.model} session={self._controller.state.session_id}"
        )

    async def _on_new(self) -> None:
        try:
            state = self._controller.start_new_session()
        except SendInProgressError as ex:
            print(f"{self._LINE_PREFIX}{ex}")
            return
        print(f"{self._LINE_PREFIX}Started new session [{self._checkpoint_service.short_id(state.session_id)}]")

    async def _on_retry(self) -> None:
        print_delta, finish = self._stream_printer()
        try:
            result = await self._controller.retry_last(on_text_delta=print_delta)
        except (ValueError, SendInProgressError) as ex:
            finish()
            print(f"{self._LINE_PREFIX}{ex}")
            return
        finally:
            finish()
        self._report_exchange(result)

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    async def _handle_checkpoint_command(self, command: str) -> None:
        parts = command.split()
        action = parts[1] if len(parts) >= 2 else "save"

        if action == "save":
            self._save_checkpoint(command.partition("save")[2].strip() if len(parts) >= 2 else "")
            return

        if action == "list":
            limit = 20
            if len(parts) >= 3:
                try:
                    limit = int(parts[2])
                except ValueError:
                    print(f"{self._LINE_PREFIX}Usage: /checkpoint list [limit]")
                    return
            try:
                checkpoints = self._controller.list_checkpoints(limit)
            except CheckpointStoreError as ex:
                print(f"{self._LINE_PREFIX}Could not list checkpoints: {ex}")
                return
            if not checkpoints:
                print(f"{self._LINE_PREFIX}No checkpoints found.")
                return
            print(f"{self._LINE_PREFIX}Recent checkpoints:")
            for cp in checkpoints:
                print(self._checkpoint_service.format_checkpoint_list_entry(cp))
            return

        if action == "show" and len(parts) == 3:
            try:
                checkpoint = self._controller.get_checkpoint(parts[2])
            except CheckpointNotFoundError as ex:
                print(f"{self._LINE_PREFIX}{ex}")
                return
            except CheckpointStoreError as ex:
                print(f"{self._LINE_PREFIX}Could not load checkpoint: {ex}")
                return
            for line in self._checkpoint_service.format_checkpoint_detail_lines(checkpoint):
                print(line)
            return

        if action == "dismiss" and len(parts) == 2:
            if self._controller.dismiss_checkpoint_suggestion():
                print(f"{self._LINE_PREFIX}Checkpoint suggestion dismissed.")
            else:
                print(f"{self._LINE_PREFIX}No checkpoint suggestion to dismiss.")
            return

        print(
            f"{self._LINE_PREFIX}Usage: /checkpoint save [task] | /checkpoint list [limit] | "
            "/checkpoint show <checkpoint_id> | /checkpoint dismiss"
        )

    def _save_checkpoint(self, args: str) -> None:
        fields = [f.strip() for f in args.split("|")]
        task = fields[0] if fields and fields[0] else None
        current_step = fields[1] if len(fields) >= 2 and fields[1] else None
        next_steps = None
        if len(fields) >= 3:
            next_steps = [s.strip() for s in fields[2].split(";") if s.strip()] or None

        if not self._controller.state.messages:
            print(f"{self._LINE_PREFIX}Nothing to checkpoint yet.")
            return
        try:
            saved = self._controller.save_checkpoint(
                task_description=task,
                current_step=current_step,
                next_steps=next_steps,
            )
        except (CheckpointStoreError, SendInProgressError) as ex:
            logger.error(f"Checkpoint save failed: {ex}")
            print(f"{self._LINE_PREFIX}Checkpoint save failed: {ex}. Your conversation is unchanged; try again.")
            return
        print(
            f"{self._LINE_PREFIX}Checkpoint saved [{self._checkpoint_service.short_id(saved.id)}] "
            f"(id={saved.id}). Started a fresh session."
        )
