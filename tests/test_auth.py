"""Unit tests for API key authentication and owner identity."""

from types import SimpleNamespace

import pytest
from starlette.datastructures import Headers

from app.core.auth import get_owner_id, parse_api_keys, validate_api_key, verify_api_key
from app.core.config import AppSettings
from app.core.errors import AuthorizationAppError, ValidationAppError


def _app_settings(**overrides) -> AppSettings:
    return AppSettings(**overrides)


def _request(headers: dict[str, str] | None = None, **app_overrides) -> SimpleNamespace:
    """Minimal stand-in for a Starlette request carrying app settings."""
    settings = SimpleNamespace(app=_app_settings(**app_overrides))
    return SimpleNamespace(
        headers=Headers(headers=headers or {}),
        app=SimpleNamespace(state=SimpleNamespace(settings=settings)),
    )


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_single_key(self) -> None:
        assert parse_api_keys("my-secret-key") == {"my-secret-key"}

    def test_parse_multiple_keys(self) -> None:
        assert parse_api_keys("key1,key2,key3") == {"key1", "key2", "key3"}

    def test_parse_keys_with_whitespace(self) -> None:
        """Test that whitespace is trimmed from keys."""
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_inputs(self, raw: str | None) -> None:
        assert parse_api_keys(raw) == set()

    def test_parse_removes_duplicate_keys(self) -> None:
        assert parse_api_keys("key1,key2,key1,key3,key2") == {"key1", "key2", "key3"}


class TestValidateAPIKey:
    """Test core API key validation logic."""

    def test_validate_bypassed_when_auth_disabled(self) -> None:
        cfg = _app_settings(api_key_required=False)

        validate_api_key("any-random-key", cfg)
        validate_api_key(None, cfg)

    @pytest.mark.parametrize("keys", [None, ""])
    def test_validate_raises_when_no_keys_configured(self, keys: str | None) -> None:
        cfg = _app_settings(api_key_required=True, api_keys=keys)

        with pytest.raises(AuthorizationAppError) as exc_info:
            validate_api_key("some-key", cfg)

        assert exc_info.value.code == "api_keys_not_configured"
        assert "no valid keys are configured" in exc_info.value.message

    def test_validate_accepts_valid_key(self) -> None:
        cfg = _app_settings(api_key_required=True, api_keys="valid-key-1,valid-key-2")

        validate_api_key("valid-key-1", cfg)
        validate_api_key("valid-key-2", cfg)

    def test_validate_rejects_invalid_key(self) -> None:
        cfg = _app_settings(api_key_required=True, api_keys="valid-key-1,valid-key-2")

        with pytest.raises(AuthorizationAppError) as exc_info:
            validate_api_key("invalid-key", cfg)

        assert exc_info.value.code == "invalid_api_key"

    @pytest.mark.parametrize("provided", [None, ""])
    def test_validate_rejects_missing_key(self, provided: str | None) -> None:
        cfg = _app_settings(api_key_required=True, api_keys="valid-key")

        with pytest.raises(AuthorizationAppError) as exc_info:
            validate_api_key(provided, cfg)

        assert exc_info.value.code == "missing_api_key"

    def test_validate_handles_whitespace_in_configured_keys(self) -> None:
        cfg = _app_settings(api_key_required=True, api_keys=" key1 , key2 , key3 ")

        validate_api_key("key1", cfg)
        validate_api_key("key2", cfg)

        # Configured keys are trimmed, provided keys are not
        with pytest.raises(AuthorizationAppError):
            validate_api_key(" key1 ", cfg)


class TestVerifyAPIKeyDependency:
    """Test FastAPI dependency for API key verification."""

    @pytest.mark.asyncio
    async def test_verify_bypassed_when_auth_disabled(self) -> None:
        await verify_api_key(_request(api_key_required=False), x_api_key=None)

    @pytest.mark.asyncio
    async def test_verify_reads_settings_from_app_state(self) -> None:
        request = _request(api_key_required=True, api_keys="my-valid-key")

        await verify_api_key(request, x_api_key="my-valid-key")
        with pytest.raises(AuthorizationAppError):
            await verify_api_key(request, x_api_key="wrong-key")


class TestGetOwnerId:
    def test_missing_header_is_anonymous(self) -> None:
        assert get_owner_id(_request()) is None

    def test_blank_header_is_anonymous(self) -> None:
        assert get_owner_id(_request({"X-Owner-Id": "   "})) is None

    def test_header_value_is_trimmed(self) -> None:
        assert get_owner_id(_request({"X-Owner-Id": "  user-42 "})) == "user-42"

    def test_custom_owner_header(self) -> None:
        request = _request({"X-User": "user-7"}, owner_header="x-user")

        assert get_owner_id(request) == "user-7"

    def test_overlong_owner_is_rejected(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            get_owner_id(_request({"X-Owner-Id": "u" * 129}))

        assert exc_info.value.code == "invalid_owner_id"

    def test_owner_at_limit_is_accepted(self) -> None:
        assert get_owner_id(_request({"X-Owner-Id": "u" * 128})) == "u" * 128
