# modules/_integrations/easyverein/credentials.py
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Optional

from dotenv import dotenv_values, set_key

from core.config import settings
from core.errors import NotConfigured, RefreshFailed, RemoteError
from modules._integrations.easyverein.repo import SettingsRepo

logger = logging.getLogger(__name__)

TOKEN_ENV_KEY = "EASYVEREIN_API_TOKEN"
_MANUAL_HINT = "Manueller Token-Eingriff in der .env Datei oder Datenbank (system_settings) notwendig."


class CredentialManager:
    """
    Bearer token for the EasyVerein API.

    Resolution order: in-memory token, then system_settings, then the static
    EASYVEREIN_API_TOKEN setting. The in-memory token is trusted for
    EASYVEREIN_TOKEN_MEMORY_TTL seconds; after that system_settings is read
    again so a rotation done by another worker is picked up. A refresh
    replaces the in-memory token first and then persists it to
    system_settings, falling back to rewriting the EASYVEREIN_API_TOKEN line
    of the env file.
    """

    def __init__(self, repo: Optional[SettingsRepo] = None, static_token: Optional[str] = None,
                 env_file: Optional[str] = None, memory_ttl: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        self.repo = repo or SettingsRepo()
        self.static_token = static_token if static_token is not None else settings.EASYVEREIN_API_TOKEN
        self.env_file = env_file or settings.EASYVEREIN_ENV_FILE
        self.memory_ttl = settings.EASYVEREIN_TOKEN_MEMORY_TTL if memory_ttl is None else memory_ttl
        self.clock = clock
        self._token: Optional[str] = None
        self._token_at = 0.0
        self._lock = threading.Lock()

    def resolve_token(self) -> str:
        with self._lock:
            if self._token and (self.clock() - self._token_at) < self.memory_ttl:
                return self._token
            remembered = self._token

        stored = None
        try:
            stored = self.repo.get_api_token()
        except Exception as e:
            # DB unavailable; the remembered or static token still lets us work
            logger.warning(f"Could not read API token from system_settings: {e}")

        token = stored or remembered or self.static_token
        if not token:
            raise NotConfigured("EasyVerein API token not configured")

        if remembered and token != remembered:
            logger.info("EasyVerein token changed in system_settings, using the stored one")
        self._remember(token)
        return token

    def refresh_token(self, fetch: Callable[[], Dict[str, Any]]) -> str:
        """
        Obtain a new token via ``fetch`` (GET /refresh-token) and persist it.
        Raises RefreshFailed when the call fails or returns no token.
        """
        try:
            data = fetch()
        except RemoteError as e:
            logger.error(f"❌ EasyVerein token refresh failed: {e.message} - {_MANUAL_HINT}")
            raise RefreshFailed(f"EasyVerein token refresh failed: {e.message}") from e

        new_token = data.get("token") if isinstance(data, dict) else None
        if not new_token:
            logger.error(f"❌ EasyVerein token refresh returned no token - {_MANUAL_HINT}")
            raise RefreshFailed("EasyVerein token refresh returned no token")

        self._remember(new_token)

        try:
            self.repo.save_api_token(new_token)
            logger.info("✅ EasyVerein token saved to system_settings")
        except Exception as e:
            logger.error(f"Could not save EasyVerein token to system_settings: {e}")
            self._write_env_token(new_token)

        return new_token

    def _remember(self, token: str):
        with self._lock:
            self._token = token
            self._token_at = self.clock()

    def _write_env_token(self, new_token: str) -> bool:
        """Rewrite an existing EASYVEREIN_API_TOKEN line; never adds one."""
        path = self.env_file
        if not os.path.isfile(path) or not os.access(path, os.W_OK):
            logger.error(f"❌ {path} is not writable - {_MANUAL_HINT}")
            return False

        if TOKEN_ENV_KEY not in dotenv_values(path):
            logger.error(f"❌ {TOKEN_ENV_KEY} not found in {path} - {_MANUAL_HINT}")
            return False

        ok, _, _ = set_key(path, TOKEN_ENV_KEY, new_token, quote_mode="never")
        if not ok:
            logger.error(f"❌ Could not update {TOKEN_ENV_KEY} in {path} - {_MANUAL_HINT}")
            return False

        logger.info(f"✅ EasyVerein token updated in {path}")
        return True

    def clear(self):
        with self._lock:
            self._token = None
            self._token_at = 0.0


_manager: Optional[CredentialManager] = None


def get_credential_manager() -> CredentialManager:
    """Process-wide manager so a refreshed token is shared by every client."""
    global _manager
    if _manager is None:
        _manager = CredentialManager()
    return _manager
