import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from agriassist.errors import ConfigError, ModelOutputError, UpstreamError
from agriassist.services import llm
from agriassist.services.translate import TranslateTextOutput


def test_gemini_keys_split_and_strip_comments(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GEMINI_API_KEYS", "key-one  # primary\n, key-two,,\n")
    assert llm.get_gemini_api_keys() == ["key-one", "key-two"]


def test_gemini_single_key_fallback(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "only-key")
    assert llm.get_gemini_api_keys() == ["only-key"]


def test_parse_data_uri():
    mime, data = llm.parse_data_uri("data:image/PNG;base64,aGVsbG8=")
    assert mime == "image/png"
    assert data == b"hello"


@pytest.mark.parametrize("uri", [
    "",
    "aGVsbG8=",
    "data:image/png,hello",
    "data:image/png;base64",
    "data:image/png;base64,",
    "data:image/png;base64,@@not-base64@@",
])
def test_parse_data_uri_rejects_malformed(uri):
    with pytest.raises(ValueError):
        llm.parse_data_uri(uri)


def test_extract_json_strips_code_fences():
    assert llm.extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}


def test_extract_json_first_object_with_trailing_text():
    text = 'Sure! {"translatedText": "hola {amigo}"} Hope this helps {x}'
    assert llm.extract_json_object(text) == {"translatedText": "hola {amigo}"}


def test_extract_json_without_object():
    with pytest.raises(ModelOutputError):
        llm.extract_json_object("I cannot help with that.")


class _FakeModel:
    def __init__(self, behaviour):
        self.behaviour = behaviour

    def generate_content(self, parts):
        result = self.behaviour()
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(text=result)


def _install_fake_genai(monkeypatch, behaviours):
    configured = []

    def configure(api_key):
        configured.append(api_key)

    def model_factory(name, generation_config=None):
        return _FakeModel(behaviours[configured[-1]])

    monkeypatch.setattr(llm, "genai", SimpleNamespace(configure=configure, GenerativeModel=model_factory))
    return configured


def test_generate_requires_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        llm.generate(["hi"])


def test_generate_rotates_to_next_key_on_quota(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEYS", "k1,k2")
    configured = _install_fake_genai(monkeypatch, {
        "k1": lambda: Exception("429 Resource has been exhausted (e.g. check quota)."),
        "k2": lambda: "hello",
    })
    assert llm.generate(["hi"]) == "hello"
    assert configured == ["k1", "k2"]


def test_generate_all_keys_rate_limited(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEYS", "k1,k2")
    _install_fake_genai(monkeypatch, {
        "k1": lambda: Exception("quota exceeded"),
        "k2": lambda: Exception("quota exceeded"),
    })
    with pytest.raises(UpstreamError) as exc:
        llm.generate(["hi"])
    assert exc.value.status_code == 429


def test_generate_other_failure_is_not_retried(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEYS", "k1,k2")
    configured = _install_fake_genai(monkeypatch, {
        "k1": lambda: Exception("400 invalid argument"),
        "k2": lambda: "never reached",
    })
    with pytest.raises(UpstreamError):
        llm.generate(["hi"])
    assert configured == ["k1"]


def test_generate_empty_reply(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "k1")
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    _install_fake_genai(monkeypatch, {"k1": lambda: "   "})
    with pytest.raises(ModelOutputError):
        llm.generate(["hi"])


def test_generate_structured_validates_schema(fake_llm):
    fake_llm.queue({"translatedText": "Hola"})
    assert llm.generate_structured(["x"], TranslateTextOutput).translatedText == "Hola"
    assert fake_llm.calls[0]["json_output"] is True

    fake_llm.queue({"somethingElse": 1})
    with pytest.raises(ModelOutputError):
        llm.generate_structured(["x"], TranslateTextOutput)


def test_rotated_key_is_not_swapped_by_concurrent_requests(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEYS", "k1,k2")
    state = {"key": None}

    class LazyClientModel:
        # the SDK binds the configured key when the request is sent, not when the model is built
        def generate_content(self, parts):
            time.sleep(0.005)
            if state["key"] == "k1":
                raise Exception("429 quota exceeded")
            return SimpleNamespace(text=f"answered with {state['key']}")

    def configure(api_key):
        state["key"] = api_key

    monkeypatch.setattr(llm, "genai", SimpleNamespace(
        configure=configure,
        GenerativeModel=lambda name, generation_config=None: LazyClientModel(),
    ))
    with ThreadPoolExecutor(max_workers=8) as pool:
        replies = list(pool.map(lambda _: llm.generate(["hi"]), range(16)))
    assert replies == ["answered with k2"] * 16
