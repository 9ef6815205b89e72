import threading
from typing import Callable, Optional


class PeriodicTimer:
    """Calls `callback` every `interval_s` seconds on its own thread until stopped."""

    def __init__(self, interval_s: float, callback: Callable[[], None], name: str = "ticker"):
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def _run(self):
        while not self.stop_event.wait(self.interval_s):
            try:
                self.callback()
            except Exception as e:
                print(f"[Ticker] {self.name} callback error: {e}")

    def start(self):
        if self.running:
            return
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self.thread.start()

    def stop(self):
        self.stop_event.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=1.0)
        self.thread = None
