"""Application entrypoint.

``main serve`` runs the speech/turn server; ``main chat`` runs the
terminal tutor client against it.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO

from auto_submit import HandsOffAutoSubmitTimer
from batch_client import HttpBatchTranscriber
from config import JsonConfigStore
from conversation_store import ConversationStore
from hotkey import GlobalHotkeyAdapter
from models import DIALOGUE_COMPLETE_STATUS, SessionState, StreamStatus
from recorder import SoundDeviceCapture
from session_controller import BatchSessionController, StreamingSessionController
from speech_client import WebSocketSpeechTransport
from turn_client import HttpTurnClient
from turn_pipeline import TurnSubmissionPipeline

log = logging.getLogger("lingua_tutor.main")

HELP = """commands:
  r                          start/stop recording
  s                          submit the turn
  h                          toggle hands-off mode
  lesson LEVEL STORY SECTION CHAPTER
  done                       mark the dialogue reading complete
  new                        start a new conversation
  reset                      clear everything
  q                          quit"""


class ChatApp:
    def __init__(self, config: JsonConfigStore, out: TextIO = sys.stdout) -> None:
        self.config = config
        self.out = out
        server_url = config.get_server_url()
        sample_rate = config.get_sample_rate()
        self.hands_off = config.get_hands_off()

        self.store = ConversationStore(
            path=config.path.parent / "conversations.json",
            learner_id=str(config.get("learner_id")),
        )
        capture = SoundDeviceCapture()
        if config.get_mode() == "batch":
            self.controller = BatchSessionController(
                capture,
                HttpBatchTranscriber(server_url, provider=str(config.get("provider"))),
                sample_rate=sample_rate,
                on_state_change=self._on_state_change,
                on_transcript=self._on_transcript,
                on_error=self._on_error,
            )
        else:
            self.controller = StreamingSessionController(
                capture,
                WebSocketSpeechTransport(server_url),
                sample_rate=sample_rate,
                language=str(config.get("language")),
                on_state_change=self._on_state_change,
                on_partial=self._on_partial,
                on_transcript=self._on_transcript,
                on_error=self._on_error,
            )

        self.pipeline = TurnSubmissionPipeline(
            store=self.store,
            turn_client=HttpTurnClient(server_url),
            recording=self.controller,
            is_hands_off=lambda: self.hands_off,
            on_status=self._on_status,
            on_streaming_text=self._on_streaming_text,
        )
        self.timer = HandsOffAutoSubmitTimer(
            submit=self._submit_in_background,
            get_transcript=lambda: self.controller.transcript,
            is_enabled=lambda: self.hands_off,
            is_recording=lambda: self.controller.is_recording,
            is_submitting=lambda: self.pipeline.in_flight,
            on_countdown=self._on_countdown,
        )
        self.pipeline.attach_timer(self.timer)
        self.hotkey = GlobalHotkeyAdapter(
            hotkey_name=config.get_hotkey(),
            push_to_talk=config.get_mode() == "batch",
        )

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self._print(f"[{to_state.value}]")
        self.timer.update()

    def _on_partial(self, text: str) -> None:
        self._print(f"  ... {text}")

    def _on_transcript(self, text: str) -> None:
        if text:
            self._print(f"  you: {text}")
        self.timer.update()

    def _on_error(self, code: str, message: str) -> None:
        self._print(f"! {code}: {message}")

    def _on_status(self, status: StreamStatus) -> None:
        if status not in (StreamStatus.IDLE, StreamStatus.STREAMING_RESPONSE):
            self._print(f"  <{status.value}>")

    def _on_streaming_text(self, text: str) -> None:
        if text:
            self._print(f"  tutor: {text}", overwrite=True)

    def _on_countdown(self, remaining: Optional[int]) -> None:
        if remaining is not None:
            self._print(f"  sending in {remaining}...")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def toggle_recording(self) -> None:
        if self.controller.state == SessionState.IDLE:
            self.controller.start_session()
        else:
            self.stop_recording()

    def stop_recording(self) -> None:
        # Batch stop blocks while transcribing.
        threading.Thread(target=self.controller.stop_session, daemon=True).start()

    def toggle_hands_off(self) -> None:
        self.hands_off = not self.hands_off
        self.config.set_hands_off(self.hands_off)
        self._print(f"hands-off {'on' if self.hands_off else 'off'}")
        self.timer.update()

    def _submit_in_background(self) -> None:
        threading.Thread(target=self.pipeline.submit, daemon=True).start()

    def handle_command(self, line: str) -> bool:
        """Execute one command line; returns False to quit."""
        parts = line.split()
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]
        if command == "q":
            return False
        if command == "r":
            self.toggle_recording()
        elif command == "s":
            if not self.pipeline.submit():
                self._print("nothing to submit")
            else:
                self._print_last_reply()
        elif command == "h":
            self.toggle_hands_off()
        elif command == "lesson" and len(args) == 4:
            self.store.set_level(args[0])
            self.store.set_story(args[1])
            self.store.set_section(args[2])
            self.store.set_chapter(args[3])
        elif command == "done":
            self.store.set_last_client_status(DIALOGUE_COMPLETE_STATUS)
        elif command == "new":
            self.store.set_conversation_id("")
            self.store.clear_messages()
        elif command == "reset":
            self.pipeline.reset()
        else:
            self._print(HELP)
        return True

    def _print_last_reply(self) -> None:
        messages = self.store.messages()
        if messages and messages[-1].is_agent:
            self._print(f"tutor: {messages[-1].text}")

    def _print(self, text: str, overwrite: bool = False) -> None:
        self.out.write(("\r" if overwrite else "") + text + ("" if overwrite else "\n"))
        self.out.flush()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, stdin: TextIO = sys.stdin) -> int:
        try:
            self.hotkey.start(
                on_start=self.controller.start_session,
                on_stop=self.stop_recording,
                is_recording=lambda: self.controller.state != SessionState.IDLE,
            )
        except Exception as exc:
            log.warning("event=hotkey_disabled error=%s", exc)
            self._print(f"Hotkey disabled: {exc}")
        self._print(HELP)
        try:
            for line in stdin:
                if not self.handle_command(line):
                    break
        finally:
            self.quit()
        return 0

    def quit(self) -> None:
        self.hotkey.stop()
        self.timer.cancel()
        self.controller.reset()


def serve(host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from server import create_app
    from settings import get_settings

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.server_host,
        port=port or settings.server_port,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lingua-tutor")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="run the speech and turn server")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)

    chat_parser = sub.add_parser("chat", help="run the terminal tutor client")
    chat_parser.add_argument("--config", type=Path, help="path to config.json")
    chat_parser.add_argument("--server-url")
    chat_parser.add_argument("--mode", choices=["streaming", "batch"])
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if args.command == "serve":
        return serve(args.host, args.port)

    config = JsonConfigStore(args.config)
    if args.server_url:
        config.set("server_url", args.server_url)
    if args.mode:
        config.set("mode", args.mode)
    return ChatApp(config).run()


if __name__ == "__main__":
    raise SystemExit(main())
