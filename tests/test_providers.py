import pytest

from chatrelay.providers import INVALID_PROVIDER_MESSAGE, ProviderRegistry, resolve_token
from chatrelay.storage import MemoryStore


@pytest.mark.parametrize(
    "token, expected",
    [
        ("${API_KEY}", "abc123"),
        ("{API_KEY}", "abc123"),
        ("$API_KEY", "abc123"),
        ("env:API_KEY", "abc123"),
        ("  env:API_KEY  ", "abc123"),
        ("env:TOKEN", ""),
        ("${MISSING}", ""),
        ("sk-literal", "sk-literal"),
        ("  sk-literal  ", "sk-literal"),
        ("prefix-${API_KEY}", "prefix-${API_KEY}"),
        ("", ""),
        (None, ""),
    ],
)
def test_resolve_token(token, expected) -> None:
    assert resolve_token(token, {"API_KEY": "abc123"}) == expected


def test_resolve_token_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_KEY", "from-env")
    monkeypatch.delenv("TOKEN", raising=False)
    assert resolve_token("${API_KEY}") == "from-env"
    assert resolve_token("env:TOKEN") == ""


def test_add_then_list_hides_token(registry: ProviderRegistry, provider_store: MemoryStore) -> None:
    result = registry.add_provider("gpt-test", "https://api.example.com/v1/chat", "sk-secret")
    assert result.ok
    assert result.to_response() == {
        "status": "ok",
        "provider": {"model": "gpt-test", "url": "https://api.example.com/v1/chat"},
    }
    listed = registry.list_valid_providers()
    assert listed == [{"model": "gpt-test", "url": "https://api.example.com/v1/chat"}]
    assert all("token" not in item for item in listed)
    assert provider_store.load()[0]["token"] == "sk-secret"


def test_env_reference_is_stored_unresolved(registry: ProviderRegistry, provider_store: MemoryStore) -> None:
    assert registry.add_provider("gpt-env", "http://localhost:8080/v1", "${API_KEY}").ok
    assert provider_store.load() == [
        {"model": "gpt-env", "url": "http://localhost:8080/v1", "token": "${API_KEY}"}
    ]


@pytest.mark.parametrize(
    "model, url, token",
    [
        ("", "https://api.example.com", "sk"),
        ("   ", "https://api.example.com", "sk"),
        ("gpt", "", "sk"),
        ("gpt", "https://api.example.com", ""),
        ("gpt", "https://api.example.com", "env:TOKEN"),
        ("gpt", "https://api.example.com", "${MISSING}"),
        ("gpt", "ftp://api.example.com", "sk"),
        ("gpt", "api.example.com/v1", "sk"),
        (None, None, None),
        (42, "https://api.example.com", "sk"),
    ],
)
def test_add_rejects_invalid_input(registry: ProviderRegistry, provider_store: MemoryStore, model, url, token) -> None:
    registry.add_provider("keep", "https://keep.example.com", "sk-keep")
    before = provider_store.load()

    result = registry.add_provider(model, url, token)

    assert not result.ok
    assert result.to_response() == {"status": "error", "message": INVALID_PROVIDER_MESSAGE}
    assert provider_store.load() == before


def test_same_model_replaces_existing(registry: ProviderRegistry, provider_store: MemoryStore) -> None:
    registry.add_provider("alpha", "https://one.example.com", "sk-1")
    registry.add_provider("beta", "https://two.example.com", "sk-2")
    registry.add_provider("alpha", "https://three.example.com", "sk-3")

    stored = provider_store.load()
    assert len(stored) == 2
    assert [item["model"] for item in stored] == ["beta", "alpha"]
    alpha = registry.find("alpha")
    assert alpha is not None
    assert alpha.url == "https://three.example.com"
    assert alpha.token == "sk-3"


def test_values_are_trimmed(registry: ProviderRegistry) -> None:
    registry.add_provider("  gpt  ", " https://api.example.com ", " sk ")
    assert registry.list_valid_providers() == [{"model": "gpt", "url": "https://api.example.com"}]


def test_list_filters_invalid_stored_entries() -> None:
    store = MemoryStore(
        [
            {"model": "ok", "url": "https://ok.example.com", "token": "sk"},
            {"model": "unset", "url": "https://unset.example.com", "token": "env:NOPE"},
            {"model": "", "url": "https://blank.example.com", "token": "sk"},
            {"model": "no-url", "token": "sk"},
            "garbage",
        ]
    )
    registry = ProviderRegistry(store, environ={})
    assert registry.list_valid_providers() == [{"model": "ok", "url": "https://ok.example.com"}]
    assert registry.find("unset") is not None
    assert registry.find("missing") is None


def test_list_on_empty_store_creates_it() -> None:
    store = MemoryStore()
    registry = ProviderRegistry(store, environ={})
    assert not store.exists
    assert registry.list_valid_providers() == []
    assert store.exists
    assert registry.list_valid_providers() == []
