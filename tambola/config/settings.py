"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres du service (nom, host/port, stockage, cadence de jeu, auth).
- Les valeurs par défaut conviennent pour un environnement de dev local.
- Les variables peuvent être surchargées via un fichier `.env` ou l'environnement.

Intégrations
------------
- `pydantic-settings` charge automatiquement les variables d'env et `.env`.
- Les services/routers importent `from tambola.config.settings import settings`.

Bonnes pratiques
----------------
- `DATA_DIR` calcule un chemin relatif au package : `<repo>/tambola/data`.
- `STORE_BACKEND="memory"` garde les parties en RAM (tests, démo) ; `json` persiste sur disque.
- `AUTH_PROVIDER="http"` délègue la vérification des hôtes à un service externe
  (`AUTH_ENDPOINT`), avec des timeouts durs.

Exemples de `.env`
------------------
APP_NAME="Tambola Live (Staging)"
PORT=8080
STORE_BACKEND="json"
DATA_DIR="/var/opt/tambola/data"
CALL_INTERVAL_SECONDS=8
AUTH_PROVIDER="http"
AUTH_ENDPOINT="https://auth.example.org/api"
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    # Nom du service (apparaît dans /health)
    APP_NAME: str = "Tambola Live Backend"
    # Bind réseau (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Origines front autorisées (CORS)
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Répertoire des fichiers persistés (parties, jeux de tickets, hôtes)
    # Par défaut: <repo>/tambola/data
    DATA_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

    # Stockage des parties : "json" (fichiers) ou "memory"
    STORE_BACKEND: str = "json"
    # Tentatives de commit avant StorageConflict, backoff exponentiel (secondes)
    STORE_MAX_ATTEMPTS: int = 3
    STORE_BACKOFF_BASE: float = 0.1

    # Déroulé de partie
    COUNTDOWN_SECONDS: int = 10
    CALL_INTERVAL_SECONDS: float = 5
    CALL_INTERVAL_MIN: float = 3
    CALL_INTERVAL_MAX: float = 15
    DISPLAY_WINDOW_SECONDS: float = 3.0
    RECENT_GAME_WINDOW_HOURS: int = 4
    # Un bail de pilotage expire après LEASE_TTL_FACTOR * call_interval
    LEASE_TTL_FACTOR: int = 3

    # Limites de configuration
    MAX_TICKETS_LIMIT: int = 600
    MAX_GAME_EVENTS: int = 500
    STRICT_TICKET_LAYOUT: bool = True

    # Annuaire des hôtes : "static" (hosts.json) ou "http"
    AUTH_PROVIDER: str = "static"
    AUTH_ENDPOINT: str = "http://localhost:9000/api"
    AUTH_CONNECT_TIMEOUT: float = 5.0
    AUTH_READ_TIMEOUT: float = 10.0

    # Paramétrage pydantic-settings :
    # - lit le fichier .env (UTF-8) si présent
    # - ignore les clés supplémentaires pour éviter les erreurs
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()
