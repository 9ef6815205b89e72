import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from speech_relay.errors import RecognizerError, RecognizerUnavailableError

ResultCallback = Callable[[str, bool], None]
NoMatchCallback = Callable[[], None]
ErrorCallback = Callable[[Exception], None]


class SpeechRecognizer:
    """
    Contract for the upstream speech recognizer.

    `on_result(text, is_final_hint)` receives the most complete partial of
    the current utterance every time it changes. The recognizer may restart
    on its own without saying so, and reports a recognition window with no
    speech through `on_no_match()`. Callbacks may come from any thread.
    """

    def start(self, on_result: ResultCallback, on_no_match: NoMatchCallback, on_error: ErrorCallback):
        raise NotImplementedError

    def pause(self):
        raise NotImplementedError

    def resume(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError


class ScriptedRecognizer(SpeechRecognizer):
    """
    Replays a transcript script, one step per `step_interval_s`.

    Script lines:
      plain text      replaces the current partial
      +words          appends to the current partial (cumulative partials)
      !final          re-sends the current partial as final, starts a new utterance
      !nomatch        reports a window without speech
      !restart        silently drops the current utterance context
      !error          reports a transient recognizer error
      !unavailable    reports that the recognizer is unavailable
      @1.5            waits 1.5 seconds
      # comment       ignored
    """

    def __init__(self, lines: List[str], step_interval_s: float = 0.3, sleep: Callable[[float], None] = time.sleep):
        self.lines = [line.rstrip("\n") for line in lines]
        self.step_interval_s = step_interval_s
        self.sleep = sleep
        self.position = 0
        self.partial = ""
        self.thread: Optional[threading.Thread] = None
        self.running = threading.Event()
        self.resumed = threading.Event()
        self.finished = threading.Event()
        self.on_result: Optional[ResultCallback] = None
        self.on_no_match: Optional[NoMatchCallback] = None
        self.on_error: Optional[ErrorCallback] = None

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "ScriptedRecognizer":
        return cls(Path(path).read_text(encoding="utf-8").splitlines(), **kwargs)

    def start(self, on_result: ResultCallback, on_no_match: NoMatchCallback, on_error: ErrorCallback):
        self.on_result = on_result
        self.on_no_match = on_no_match
        self.on_error = on_error
        if self.thread and self.thread.is_alive():
            self.resume()
            return
        self.running.set()
        self.resumed.set()
        self.thread = threading.Thread(target=self._run, name="scripted-recognizer", daemon=True)
        self.thread.start()

    def pause(self):
        self.resumed.clear()

    def resume(self):
        self.resumed.set()

    def stop(self):
        self.running.clear()
        self.resumed.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=2.0)
        self.thread = None

    def _run(self):
        while self.running.is_set() and self.position < len(self.lines):
            self.resumed.wait()
            if not self.running.is_set():
                break
            line = self.lines[self.position].strip()
            self.position += 1
            if not line or line.startswith("#"):
                continue
            if line.startswith("@"):
                self.sleep(float(line[1:]))
                continue
            self._step(line)
            self.sleep(self.step_interval_s)
        self.finished.set()

    def _step(self, line: str):
        if line == "!final":
            if self.partial:
                self.on_result(self.partial, True)
            self.partial = ""
        elif line == "!nomatch":
            self.on_no_match()
        elif line == "!restart":
            self.partial = ""
        elif line == "!error":
            self.on_error(RecognizerError("Scripted recognizer error"))
        elif line == "!unavailable":
            self.on_error(RecognizerUnavailableError("Speech recognizer is not available"))
        elif line.startswith("+"):
            addition = line[1:].strip()
            self.partial = f"{self.partial} {addition}".strip()
            self.on_result(self.partial, False)
        else:
            self.partial = line
            self.on_result(self.partial, False)
