import io
import os

os.environ.setdefault("GEMINI_API_KEY", "test-key")

import pytest
from google.genai import types
from PIL import Image

import app as app_module


def make_png(width=8, height=8, color="red"):
    img = Image.new("RGB", (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def image_part(data, mime_type="image/png"):
    return types.Part(inline_data=types.Blob(data=data, mime_type=mime_type))


def make_response(*parts):
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=list(parts)))]
    )


class FakeModels:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeGeminiClient:
    def __init__(self, response=None, error=None):
        self.models = FakeModels(response, error)

    @property
    def calls(self):
        return self.models.calls


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def gemini(monkeypatch):
    fake = FakeGeminiClient(make_response(image_part(b"foo")))
    monkeypatch.setattr(app_module, "client", fake)
    return fake


@pytest.fixture
def http(gemini):
    app_module.app.config.update(TESTING=True)
    with app_module.app.test_client() as test_client:
        yield test_client
