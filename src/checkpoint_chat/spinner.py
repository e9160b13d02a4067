import sys
import threading
import time

_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
_INTERVAL_SECONDS = 0.1


class Spinner:
    """Animates "waiting for reply" on the current line until the first delta arrives.

    Elapsed seconds are shown after the label. Nothing is drawn when stdout is
    not a terminal.
    """

    def __init__(self, prefix: str = "", label: str = "waiting for reply"):
        self._prefix = prefix
        self._label = label
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self._drawn_width = 0
        self._enabled = sys.stdout.isatty()

    def start(self) -> None:
        if not self._enabled:
            sys.stdout.write(self._prefix)
            sys.stdout.flush()
            return
        self._thread = threading.Thread(target=self._animate, name="reply-spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._done.is_set():
            return
        self._done.set()
        if self._thread is None:
            return
        self._thread.join()
        sys.stdout.write("\r" + " " * self._drawn_width + "\r" + self._prefix)
        sys.stdout.flush()

    def _animate(self) -> None:
        started = time.monotonic()
        tick = 0
        try:
            while not self._done.is_set():
                elapsed = time.monotonic() - started
                line = f"{self._prefix}{_FRAMES[tick % len(_FRAMES)]} {self._label} ({elapsed:.0f}s)"
                self._drawn_width = max(self._drawn_width, len(line))
                sys.stdout.write("\r" + line)
                sys.stdout.flush()
                self._done.wait(_INTERVAL_SECONDS)
                tick += 1
        except (UnicodeEncodeError, OSError):
            pass  # terminal can't render the frames
