"""
Tests for RequestBuilder: dialect selection, body shapes, auth header
placement, parameter validation and base URL overrides.
"""

import base64
import math

import pytest

from chatstream.core.ai.base import Dialect
from chatstream.core.ai.factory import ProviderRegistry
from chatstream.core.errors import ConfigurationError, ValidationError
from chatstream.core.models import ASSISTANT, USER, GenerationParams, Message, Target
from chatstream.core.request_builder import RequestBuilder, encode_image_file
from chatstream.services.config_service import ConfigService

from conftest import LOCAL, REMOTE


def msg(role: str, content: str, images=None) -> Message:
    return Message(id=f"m-{content}", conversation_id="c", role=role, content=content,
                   image_refs=list(images or []))


HISTORY = [msg(USER, "hi"), msg(ASSISTANT, "hello"), msg(USER, "how are you?")]


def make_builder(**providers) -> RequestBuilder:
    config = ConfigService(data={"providers": providers})
    return RequestBuilder(ProviderRegistry(), config)


def test_local_request_shape():
    builder = make_builder()
    req = builder.build(HISTORY, LOCAL, GenerationParams(temperature=0.3, max_tokens=256))

    assert req.dialect is Dialect.LOCAL
    assert req.url == "http://localhost:11434/api/chat"
    assert req.method == "POST"
    assert req.stream is True
    assert req.body["model"] == "llama3"
    assert req.body["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "how are you?"},
    ]
    assert req.body["options"] == {"temperature": 0.3, "num_predict": 256}
    assert req.headers == {"Content-Type": "application/json"}


def test_local_alias_resolves_to_local_runtime():
    req = make_builder().build(HISTORY, Target("local", "mistral"))
    assert req.dialect is Dialect.LOCAL
    assert req.provider_id == "ollama"


def test_compatible_request_shape():
    builder = make_builder(openai={"api_key": "sk-abc"})
    req = builder.build(HISTORY, REMOTE, GenerationParams(temperature=1.0, max_tokens=100))

    assert req.dialect is Dialect.COMPATIBLE
    assert req.url == "https://api.openai.com/v1/chat/completions"
    assert req.body == {
        "model": "gpt-4o",
        "messages": [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "how are you?"},
        ],
        "stream": True,
        "temperature": 1.0,
        "max_tokens": 100,
    }
    assert req.headers["Authorization"] == "Bearer sk-abc"


@pytest.mark.parametrize(
    "provider_id, header, value",
    [
        ("openai", "Authorization", "Bearer k-1"),
        ("deepseek", "Authorization", "Bearer k-1"),
        ("xai", "Authorization", "Bearer k-1"),
        ("anthropic", "x-api-key", "k-1"),
        ("google", "x-goog-api-key", "k-1"),
    ],
)
def test_auth_header_placement_per_provider(provider_id, header, value):
    builder = make_builder(**{provider_id: {"api_key": "k-1"}})
    req = builder.build(HISTORY, Target(provider_id, "some-model"))
    assert req.headers[header] == value
    if header != "Authorization":
        assert "Authorization" not in req.headers


def test_missing_api_key_sends_no_auth_header():
    req = make_builder().build(HISTORY, REMOTE)
    assert "Authorization" not in req.headers


def test_images_compatible_use_content_parts():
    payload = base64.b64encode(b"jpeg-bytes").decode("ascii")
    history = [msg(USER, "what is this?", images=[payload])]
    req = make_builder(openai={"api_key": "k"}).build(history, REMOTE)

    content = req.body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "what is this?"}
    assert content[1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/jpeg;base64," + payload},
    }


def test_images_already_data_urls_are_passed_through():
    url = "data:image/png;base64,AAAA"
    req = make_builder().build([msg(USER, "x", images=[url])], REMOTE)
    assert req.body["messages"][0]["content"][1]["image_url"]["url"] == url


def test_images_local_use_images_field():
    req = make_builder().build([msg(USER, "look", images=["QUJD"])], LOCAL)
    assert req.body["messages"][0] == {"role": "user", "content": "look", "images": ["QUJD"]}


def test_non_streaming_request():
    req = make_builder().build(HISTORY, LOCAL, stream=False)
    assert req.body["stream"] is False
    assert req.stream is False


def test_base_url_override_from_config():
    builder = make_builder(ollama={"base_url": "http://10.0.0.2:11434/"})
    req = builder.build(HISTORY, LOCAL)
    assert req.url == "http://10.0.0.2:11434/api/chat"


def test_unknown_provider_is_configuration_error():
    with pytest.raises(ConfigurationError):
        make_builder().build(HISTORY, Target("nope", "model"))


def test_empty_model_is_configuration_error():
    with pytest.raises(ConfigurationError):
        make_builder().build(HISTORY, Target("openai", " "))


@pytest.mark.parametrize("temperature", [-0.1, 2.01, 5, math.nan, True, "0.5", None])
def test_temperature_out_of_range_is_validation_error(temperature):
    with pytest.raises(ValidationError):
        make_builder().build(HISTORY, REMOTE, GenerationParams(temperature=temperature))


@pytest.mark.parametrize("temperature", [0, 0.0, 1, 2.0])
def test_temperature_bounds_are_inclusive(temperature):
    req = make_builder().build(HISTORY, REMOTE, GenerationParams(temperature=temperature))
    assert req.body["temperature"] == temperature


@pytest.mark.parametrize("max_tokens", [0, -5, 1.5, False])
def test_max_tokens_must_be_positive_int(max_tokens):
    with pytest.raises(ValidationError):
        make_builder().build(HISTORY, REMOTE, GenerationParams(max_tokens=max_tokens))


def test_validation_error_is_a_configuration_error():
    assert issubclass(ValidationError, ConfigurationError)


def test_validate_returns_provider_without_building():
    provider = make_builder().validate(Target("claude", "claude-4-sonnet"), GenerationParams())
    assert provider.provider_id == "anthropic"


def test_encode_image_file(tmp_path):
    path = tmp_path / "pic.jpg"
    path.write_bytes(b"\xff\xd8\xff")
    assert encode_image_file(path) == base64.b64encode(b"\xff\xd8\xff").decode("ascii")
