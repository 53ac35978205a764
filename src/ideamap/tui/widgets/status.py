"""save status line: unsaved / saving / saved / failed, plus a busy spinner."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from textual.reactive import reactive
from textual.widgets import Static

SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]


class SaveStatus(Static):
    """one-line status of the autosave synchronizer."""

    DEFAULT_CSS = """
    SaveStatus {
        height: 1;
        padding: 0 1;
        background: $surface;
    }

    SaveStatus.failed {
        color: $error;
    }
    """

    save_state = reactive("saved")
    detail = reactive("")
    busy = reactive("")
    frame_index = reactive(0)

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._timer = None

    def render(self) -> str:
        parts = []
        if self.busy:
            frame = SPINNER_FRAMES[self.frame_index % len(SPINNER_FRAMES)]
            parts.append(f"{frame} {self.busy}")
        parts.append(self.save_state + (f" ({self.detail})" if self.detail else ""))
        return "  |  ".join(parts)

    def update_from(self, is_dirty: bool, is_saving: bool, last_saved_at: Optional[str], error: Optional[str]) -> None:
        """refresh from session state."""
        if error:
            self.save_state, self.detail = "save failed", error
            self.add_class("failed")
            return
        self.remove_class("failed")
        if is_saving:
            self.save_state, self.detail = "saving...", ""
        elif is_dirty:
            self.save_state, self.detail = "unsaved changes", ""
        else:
            self.save_state = "saved"
            self.detail = _clock(last_saved_at) if last_saved_at else ""

    def start(self, operation_name: str) -> None:
        """show the spinner for a long-running operation."""
        self.busy = operation_name
        self.frame_index = 0
        self._timer = self.set_interval(0.1, self._tick)

    def stop(self) -> None:
        if self._timer:
            self._timer.stop()
            self._timer = None
        self.busy = ""

    def _tick(self) -> None:
        self.frame_index += 1


def _clock(iso: str) -> str:
    try:
        return datetime.fromisoformat(iso).strftime("%H:%M:%S")
    except ValueError:
        return iso
