import threading
import queue
from typing import Callable, Optional

from speech_relay.models import BroadcastResult, ProcessedUnit


class BroadcastWorker:
    """
    Sends on its own thread so a slow channel never holds up the next
    processing cycle. `send()` only queues and returns None; each result
    is handed to `on_result` from the worker thread.
    """

    name = "worker"

    def __init__(self, channel, on_result: Optional[Callable[[BroadcastResult], None]] = None):
        self.channel = channel
        self.on_result = on_result
        self.queue: queue.Queue = queue.Queue()
        self.running = False
        self.thread = None
        self.stop_event = threading.Event()

    def send(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> None:
        self.queue.put((translated_text, target_language, unit))
        return None

    def _run(self, stop_event: threading.Event):
        while not stop_event.is_set():
            try:
                item = self.queue.get(timeout=0.5)
            except queue.Empty:
                continue

            if item is None:
                self.queue.task_done()
                break

            translated_text, target_language, unit = item
            try:
                result = self.channel.send(translated_text, target_language, unit=unit)
            except Exception as e:
                print(f"[Broadcast] Channel raised: {e}")
                result = BroadcastResult(
                    False, translated_text, target_language,
                    channel=getattr(self.channel, "name", ""), error=str(e),
                )

            if self.on_result:
                self.on_result(result)
            self.queue.task_done()

    def wait_idle(self):
        """Block until every queued send has been handed to the channel."""
        self.queue.join()

    def start(self):
        if self.running:
            return
        self.running = True
        self.stop_event = threading.Event()
        self.thread = threading.Thread(
            target=self._run, args=(self.stop_event,), name="broadcast-worker", daemon=True
        )
        self.thread.start()

    def stop(self, timeout: float = 10.0):
        """Finish queued sends, then stop."""
        if not self.running:
            return
        self.queue.put(None)
        if self.thread:
            self.thread.join(timeout)
            if self.thread.is_alive():
                # Stuck in a send: let it exit after that send and drop the rest
                print(f"[Broadcast] Worker still busy after {timeout}s, dropping queued sends")
                self.stop_event.set()
                self._discard_pending()
        self.running = False
        self.thread = None

    def _discard_pending(self):
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break
            self.queue.task_done()
