"""
Service: host_directory.py
Rôle:
- Interroger le collaborateur auth/abonnement au moment de chaque action (aucun cache).
- Résoudre un Bearer token en `HostUser` pour les routes.

Implémentations:
- StaticHostDirectory : `DATA_DIR/hosts.json` relu à chaque appel (dev, tests).
    {"hosts": [{"id", "name", "role", "is_active", "subscription_end_date", "token"}]}
- HttpHostDirectory : service externe (`AUTH_ENDPOINT`), GET /me et GET /hosts/{id},
  session requests avec retries et timeouts durs (connect, read).

Erreurs:
- AuthUnavailable si l'annuaire ne répond pas dans les délais ou renvoie une erreur serveur.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import anyio.to_thread
import requests
from pydantic import ValidationError as PydanticValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from tambola.config.settings import settings
from tambola.models.host import HostUser
from .errors import AuthUnavailable
from .io_utils import read_json

logger = logging.getLogger(__name__)

HOSTS_PATH = Path(settings.DATA_DIR) / "hosts.json"


class HostDirectory:
    """Interface de l'annuaire des hôtes."""

    async def fetch_host(self, host_id: str) -> Optional[HostUser]:
        raise NotImplementedError

    async def fetch_by_token(self, token: str) -> Optional[HostUser]:
        raise NotImplementedError


def _to_host(entry: Dict[str, Any]) -> Optional[HostUser]:
    try:
        return HostUser.model_validate(entry)
    except PydanticValidationError:
        logger.warning("Invalid host entry", extra={"host_id": entry.get("id")})
        return None


class StaticHostDirectory(HostDirectory):
    def __init__(self, path: Optional[Path] = None, hosts: Optional[List[Dict[str, Any]]] = None):
        self.path = Path(path or HOSTS_PATH)
        self.hosts = hosts

    def _entries(self) -> List[Dict[str, Any]]:
        if self.hosts is not None:
            return self.hosts
        raw = read_json(self.path) or {"hosts": []}
        return list(raw.get("hosts", []))

    def get_host(self, host_id: str) -> Optional[HostUser]:
        for entry in self._entries():
            if entry.get("id") == host_id:
                return _to_host(entry)
        return None

    def authenticate(self, token: str) -> Optional[HostUser]:
        if not token:
            return None
        for entry in self._entries():
            if entry.get("token") and entry.get("token") == token:
                return _to_host(entry)
        return None

    async def fetch_host(self, host_id: str) -> Optional[HostUser]:
        return self.get_host(host_id)

    async def fetch_by_token(self, token: str) -> Optional[HostUser]:
        return self.authenticate(token)


class HttpHostDirectory(HostDirectory):
    """
    Client HTTP de l'annuaire.
    - Retries avec backoff exponentiel sur les erreurs transitoires (GET uniquement).
    - Timeouts (connect, read) depuis les settings.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[Tuple[float, float]] = None,
    ) -> None:
        self.endpoint = (endpoint or settings.AUTH_ENDPOINT).rstrip("/")
        self.session = session or self._build_session()
        self.timeout = timeout or (settings.AUTH_CONNECT_TIMEOUT, settings.AUTH_READ_TIMEOUT)

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=2,
            backoff_factor=0.3,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _get(self, path: str, headers: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        url = f"{self.endpoint}{path}"
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            logger.warning("Host directory timeout", extra={"auth_url": url})
            raise AuthUnavailable("Host directory timed out") from exc
        except requests.RequestException as exc:
            logger.error("Host directory request failed", exc_info=True, extra={"auth_url": url})
            raise AuthUnavailable("Host directory unavailable") from exc

        if response.status_code in (401, 403, 404):
            return None
        if response.status_code >= 400:
            logger.error(
                "Host directory error",
                extra={"auth_url": url, "status_code": response.status_code},
            )
            raise AuthUnavailable(f"Host directory returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise AuthUnavailable("Invalid payload from host directory") from exc

    def get_host(self, host_id: str) -> Optional[HostUser]:
        data = self._get(f"/hosts/{host_id}")
        return _to_host(data) if isinstance(data, dict) else None

    def authenticate(self, token: str) -> Optional[HostUser]:
        if not token:
            return None
        data = self._get("/me", headers={"Authorization": f"Bearer {token}"})
        return _to_host(data) if isinstance(data, dict) else None

    async def fetch_host(self, host_id: str) -> Optional[HostUser]:
        return await anyio.to_thread.run_sync(self.get_host, host_id)

    async def fetch_by_token(self, token: str) -> Optional[HostUser]:
        return await anyio.to_thread.run_sync(self.authenticate, token)


def build_directory(kind: Optional[str] = None) -> HostDirectory:
    kind = (kind or settings.AUTH_PROVIDER).lower()
    if kind == "http":
        return HttpHostDirectory()
    if kind == "static":
        return StaticHostDirectory()
    raise ValueError(f"unknown AUTH_PROVIDER: {kind}")


_DIRECTORY: Optional[HostDirectory] = None


def get_directory() -> HostDirectory:
    global _DIRECTORY
    if _DIRECTORY is None:
        _DIRECTORY = build_directory()
    return _DIRECTORY


def use_directory(directory: Optional[HostDirectory]) -> None:
    """Remplace l'annuaire courant (tests) ; None revient à la configuration."""
    global _DIRECTORY
    _DIRECTORY = directory
