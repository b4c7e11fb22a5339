"""
Unit tests for API key authentication.
"""

import pytest
from fastapi import HTTPException

from app import config
from app.auth import require_api_key


class TestRequireApiKey:
    """Test the shared-key check used by every intake router."""

    @pytest.mark.asyncio
    async def test_header_key_accepted(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", "secret")
        assert await require_api_key(x_api_key="secret", api_key=None) is None

    @pytest.mark.asyncio
    async def test_query_key_accepted(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", "secret")
        assert await require_api_key(x_api_key=None, api_key="secret") is None

    @pytest.mark.asyncio
    async def test_missing_key_raises_401(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", "secret")
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(x_api_key=None, api_key=None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "API key required"

    @pytest.mark.asyncio
    async def test_wrong_key_raises_401(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", "secret")
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(x_api_key="guess", api_key=None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid API key"

    @pytest.mark.asyncio
    async def test_unconfigured_key_rejects_everything(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEY", None)
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(x_api_key="anything", api_key=None)
        assert exc_info.value.status_code == 401
