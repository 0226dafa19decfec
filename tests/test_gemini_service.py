import base64

import pytest
from google import genai
from google.genai import types

import gemini_service
from conftest import FakeGeminiClient, image_part, make_png, make_response
from gemini_service import (
    DEFAULT_IMAGE_MODEL,
    MissingApiKey,
    NoImagePart,
    TransportFailure,
    create_client,
    edit_image_with_gemini,
    find_image_data,
)

PNG_B64 = base64.b64encode(make_png()).decode()


class TestEditImageWithGemini:
    def test_returns_base64_of_image_part(self):
        client = FakeGeminiClient(make_response(image_part(b"foo")))
        assert edit_image_with_gemini(client, PNG_B64, "image/png", "add a hat") == "Zm9v"

    def test_builds_single_image_and_text_request(self):
        client = FakeGeminiClient(make_response(image_part(b"foo")))
        edit_image_with_gemini(client, PNG_B64, "image/jpeg", "make it blue")

        assert len(client.calls) == 1
        call = client.calls[0]
        assert call["model"] == DEFAULT_IMAGE_MODEL
        image, text = call["contents"]
        assert image.inline_data.data == base64.b64decode(PNG_B64)
        assert image.inline_data.mime_type == "image/jpeg"
        assert text.text == "make it blue"
        assert call["config"].response_modalities == ["IMAGE"]

    def test_uses_requested_model(self):
        client = FakeGeminiClient(make_response(image_part(b"foo")))
        edit_image_with_gemini(client, PNG_B64, "image/png", "x", model="gemini-3-pro-image-preview")
        assert client.calls[0]["model"] == "gemini-3-pro-image-preview"

    def test_first_image_part_wins(self):
        response = make_response(
            types.Part(text="Here is your edit"),
            image_part(b"first"),
            image_part(b"second"),
        )
        client = FakeGeminiClient(response)
        result = edit_image_with_gemini(client, PNG_B64, "image/png", "x")
        assert base64.b64decode(result) == b"first"

    def test_text_only_response_raises_no_image_part(self):
        client = FakeGeminiClient(make_response(types.Part(text="I can't do that")))
        with pytest.raises(NoImagePart) as exc:
            edit_image_with_gemini(client, PNG_B64, "image/png", "x")
        assert str(exc.value) == "No image data found in the API response."

    def test_null_response_raises_no_image_part(self):
        client = FakeGeminiClient(response=None)
        with pytest.raises(NoImagePart):
            edit_image_with_gemini(client, PNG_B64, "image/png", "x")

    def test_empty_response_raises_no_image_part(self):
        client = FakeGeminiClient(types.GenerateContentResponse())
        with pytest.raises(NoImagePart):
            edit_image_with_gemini(client, PNG_B64, "image/png", "x")

    def test_sdk_error_raises_transport_failure(self):
        cause = RuntimeError("quota exceeded")
        client = FakeGeminiClient(error=cause)
        with pytest.raises(TransportFailure) as exc:
            edit_image_with_gemini(client, PNG_B64, "image/png", "x")
        assert str(exc.value) == "Failed to generate image with Gemini API."
        assert exc.value.__cause__ is cause
        assert len(client.calls) == 1

    def test_malformed_base64_raises_transport_failure_without_call(self):
        client = FakeGeminiClient(make_response(image_part(b"foo")))
        with pytest.raises(TransportFailure):
            edit_image_with_gemini(client, "not base64!!", "image/png", "x")
        assert client.calls == []


class TestFindImageData:
    def test_missing_response(self):
        assert find_image_data(None) is None

    def test_skips_parts_without_data(self):
        response = make_response(image_part(b""), image_part(b"real"))
        assert find_image_data(response) == b"real"

    def test_candidate_without_content(self):
        response = types.GenerateContentResponse(candidates=[types.Candidate()])
        assert find_image_data(response) is None


class TestCreateClient:
    def test_missing_key_is_fatal(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("API_KEY", raising=False)
        with pytest.raises(MissingApiKey):
            create_client()

    def test_reads_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        assert isinstance(create_client(), genai.Client)

    def test_falls_back_to_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("API_KEY", "legacy-key")
        assert isinstance(create_client(), genai.Client)

    def test_explicit_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("API_KEY", raising=False)
        assert isinstance(create_client(api_key="k", timeout_ms=1000), genai.Client)


def test_image_models_default():
    assert gemini_service.IMAGE_MODELS[0] == DEFAULT_IMAGE_MODEL == "gemini-2.5-flash-image"
