import threading
import time
import argparse
import keyboard

from speech_relay.config import cfg
from speech_relay.broadcast.fanout import FanoutBroadcastChannel
from speech_relay.broadcast.http_channel import HttpBroadcastChannel
from speech_relay.broadcast.transcript_store import TranscriptStore
from speech_relay.broadcast.vtt_writer import VttBroadcastChannel
from speech_relay.controller import PipelineController
from speech_relay.errors import RelayError
from speech_relay.models import PipelineErrorEvent, PipelineState
from speech_relay.processing.pipeline import TextProcessingPipeline
from speech_relay.recognizer import ScriptedRecognizer
from speech_relay.services.correction import build_correction_service
from speech_relay.services.translation import build_translation_service

# Global stop event
stop_event = threading.Event()
hotkeys_registered = False


def register_hotkeys(controller: PipelineController):
    global hotkeys_registered
    if hotkeys_registered:
        return

    last_trigger: dict[str, float] = {"toggle": 0.0, "stop": 0.0}

    def _debounced(name: str, interval_s: float = 0.35) -> bool:
        now = time.time()
        if now - last_trigger[name] < interval_s:
            return False
        last_trigger[name] = now
        return True

    def on_toggle():
        if not _debounced("toggle"):
            return
        try:
            if controller.state is PipelineState.PAUSED:
                controller.resume_pipeline()
            else:
                controller.pause_pipeline("hotkey")
        except RelayError as e:
            print(f"[HOTKEY] Toggle ignored: {e}")

    def on_stop():
        if not _debounced("stop"):
            return
        print("[HOTKEY] Full stop requested")
        stop_event.set()

    try:
        keyboard.add_hotkey(cfg.hotkey_toggle, on_toggle)
        keyboard.add_hotkey(cfg.hotkey_stop, on_stop)
    except Exception as e:
        # keyboard needs root on Linux and may be missing a backend
        print(f"[HOTKEY] Registration failed: {e}")
        return
    hotkeys_registered = True
    print(f"Hotkeys registered: TOGGLE={cfg.hotkey_toggle.upper()} STOP={cfg.hotkey_stop.upper()}")


def unregister_hotkeys():
    global hotkeys_registered
    if hotkeys_registered:
        keyboard.unhook_all_hotkeys()
        hotkeys_registered = False


def build_broadcaster(store: TranscriptStore):
    channels = [store]
    if cfg.vtt_path:
        vtt = VttBroadcastChannel(cfg)
        vtt.clear()
        channels.append(vtt)
    if cfg.broadcast_url:
        channels.append(HttpBroadcastChannel(cfg))
    return FanoutBroadcastChannel(channels)


def on_event(event):
    if isinstance(event, PipelineErrorEvent) and not event.recoverable:
        print(f"[Controller] {event.component} failed: {event.error}")
        stop_event.set()


def main():
    parser = argparse.ArgumentParser(description="Relay live speech as translated text")
    parser.add_argument("--target-language", default=cfg.target_language, help="Language code to translate into")
    parser.add_argument("--script", required=True, help="Transcript script replayed as recognizer output")
    parser.add_argument("--step-interval", type=float, default=0.3, help="Seconds between script steps")
    parser.add_argument("--no-hotkeys", action="store_true", help="Do not register global hotkeys")
    args = parser.parse_args()

    recognizer = ScriptedRecognizer.from_file(args.script, step_interval_s=args.step_interval)
    pipeline = TextProcessingPipeline(build_correction_service(cfg), build_translation_service(cfg), config=cfg)
    store = TranscriptStore(cfg)
    controller = PipelineController(recognizer, pipeline, build_broadcaster(store), config=cfg)
    controller.add_listener(on_event)

    try:
        controller.initialize_pipeline(args.target_language)
    except RelayError as e:
        print(f"Failed to initialize: {e}")
        pipeline.shutdown()
        return 1

    try:
        store.start_session()
    except OSError as e:
        print(f"[STORE] Failed to start markdown session: {e}")

    try:
        controller.start_pipeline()
    except RelayError as e:
        print(f"Failed to start: {e}")
        stop_event.set()
    if not args.no_hotkeys:
        register_hotkeys(controller)
    print("System started. Use hotkeys to control the relay.")

    try:
        while not stop_event.is_set() and not recognizer.finished.is_set():
            time.sleep(0.5)
    except KeyboardInterrupt:
        stop_event.set()

    # Cleanup
    print("Stopping...")
    unregister_hotkeys()
    try:
        controller.stop_pipeline()
    except RelayError as e:
        print(f"Stop failed: {e}")
    store.stop_session()
    pipeline.shutdown()
    print(f"Statistics: {controller.statistics.snapshot()}")
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
