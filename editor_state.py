"""Per-session view state for the editor page.

The page moves through a small tagged state:

    idle -> image_loaded -> requesting -> succeeded | failed

A session only ever has one request outstanding. Submitting, loading or
removing an image while a request is running is rejected, so a late
response can never land on top of newer state.
"""
import base64
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cachetools import LRUCache

from image_intake import edited_filename, split_data_url, to_data_url

MISSING_INPUTS_MESSAGE = "Please upload an image and enter a prompt."
EDIT_IN_PROGRESS_MESSAGE = "An edit is already in progress."
NO_RESULT_MESSAGE = "There is no edited image to download."
NOT_REQUESTING_MESSAGE = "No edit is in progress."


class Status(str, Enum):
    IDLE = "idle"
    IMAGE_LOADED = "image_loaded"
    REQUESTING = "requesting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EditorStateError(Exception):
    pass


class MissingInputs(EditorStateError):
    def __init__(self):
        super().__init__(MISSING_INPUTS_MESSAGE)


class EditInProgress(EditorStateError):
    def __init__(self):
        super().__init__(EDIT_IN_PROGRESS_MESSAGE)


class NoResult(EditorStateError):
    def __init__(self):
        super().__init__(NO_RESULT_MESSAGE)


@dataclass(frozen=True)
class UploadedImage:
    filename: str
    mime_type: str
    data_url: str

    @property
    def base64_data(self):
        return split_data_url(self.data_url)[1]


@dataclass(frozen=True)
class EditRequest:
    image_base64: str
    mime_type: str
    prompt: str


@dataclass(frozen=True)
class EditorState:
    status: Status = Status.IDLE
    image: Optional[UploadedImage] = None
    result_data_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def idle(cls):
        return cls()

    @classmethod
    def image_loaded(cls, image):
        return cls(Status.IMAGE_LOADED, image)

    @classmethod
    def requesting(cls, image):
        return cls(Status.REQUESTING, image)

    @classmethod
    def succeeded(cls, image, result_data_url):
        return cls(Status.SUCCEEDED, image, result_data_url=result_data_url)

    @classmethod
    def failed(cls, image, error):
        return cls(Status.FAILED, image, error=error)


class EditorSession:
    def __init__(self):
        self._lock = threading.Lock()
        self._state = EditorState.idle()

    @property
    def state(self):
        return self._state

    @property
    def busy(self):
        return self._state.status is Status.REQUESTING

    def _ensure_idle_request(self):
        if self.busy:
            raise EditInProgress()

    def _ensure_requesting(self):
        if not self.busy:
            raise EditorStateError(NOT_REQUESTING_MESSAGE)

    def load_image(self, image):
        with self._lock:
            self._ensure_idle_request()
            self._state = EditorState.image_loaded(image)
            return self._state

    def remove_image(self):
        with self._lock:
            self._ensure_idle_request()
            self._state = EditorState.idle()
            return self._state

    def begin_edit(self, prompt):
        """Move to ``requesting`` and hand back the request to send.

        Leaves the state untouched when inputs are missing or a request is
        already running.
        """
        with self._lock:
            self._ensure_idle_request()
            image = self._state.image
            if image is None or not prompt or not prompt.strip():
                raise MissingInputs()
            self._state = EditorState.requesting(image)
            return EditRequest(image.base64_data, image.mime_type, prompt)

    def finish_edit(self, edited_base64):
        with self._lock:
            self._ensure_requesting()
            image = self._state.image
            # The result is labelled with the uploaded image's type.
            result = to_data_url(image.mime_type, edited_base64)
            self._state = EditorState.succeeded(image, result)
            return self._state

    def fail_edit(self, message):
        with self._lock:
            self._ensure_requesting()
            self._state = EditorState.failed(self._state.image, message)
            return self._state

    def download(self):
        """Return (bytes, mime_type, download_name) for the edited image."""
        state = self._state
        if state.status is not Status.SUCCEEDED:
            raise NoResult()
        mime_type, b64 = split_data_url(state.result_data_url)
        return base64.b64decode(b64), mime_type, edited_filename(state.image.filename)

    def snapshot(self):
        state = self._state
        image = state.image
        return {
            "status": state.status.value,
            "image": image.data_url if image else None,
            "filename": image.filename if image else None,
            "result": state.result_data_url,
            "download_name": edited_filename(image.filename) if state.result_data_url else None,
            "error": state.error,
        }


class _EditorCache(LRUCache):
    """LRU of editors that parks evicted editors with a request running."""

    def __init__(self, maxsize):
        super().__init__(maxsize)
        self.in_flight = {}

    def popitem(self):
        session_id, editor = super().popitem()
        if editor.busy:
            self.in_flight[session_id] = editor
        return session_id, editor


class SessionStore:
    """In-memory map of browser session id to EditorSession.

    Past ``max_sessions`` the least recently used editor is dropped, except
    one with a request running: it is kept aside until the request is
    released or its owner comes back.
    """

    def __init__(self, max_sessions=256):
        self.max_sessions = max_sessions
        self._sessions = _EditorCache(maxsize=max_sessions)
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._sessions) + len(self._sessions.in_flight)

    def get(self, session_id, create=True):
        with self._lock:
            editor = self._sessions.get(session_id)
            if editor is None:
                editor = self._sessions.in_flight.pop(session_id, None)
                if editor is None:
                    if not create:
                        return None
                    editor = EditorSession()
                self._sessions[session_id] = editor
            return editor

    def release(self, session_id, editor):
        """Put an editor parked during its request back in the store."""
        with self._lock:
            if self._sessions.in_flight.get(session_id) is editor:
                del self._sessions.in_flight[session_id]
                self._sessions[session_id] = editor
