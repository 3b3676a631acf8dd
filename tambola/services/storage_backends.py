"""
Service: storage_backends.py
Rôle:
- Backends bruts du GameStore : lecture d'un enregistrement et écriture conditionnelle
  (compare-and-set sur `version`).

Backends:
- JsonFileBackend : un fichier par partie `games/<game_id>.json` (orjson, écriture atomique).
- MemoryBackend   : dictionnaire en RAM (tests, démo).

Contrat:
- load(game_id) -> dict | None
- compare_and_set(game_id, expected_version, record) -> bool
  (False si la version stockée a bougé entre-temps : un autre écrivain est passé)
- insert(record) / delete(game_id) / list_records()

Limite:
- Le verrou de JsonFileBackend est local au processus : le service tourne avec UN seul
  worker (uvicorn sans `--workers`). Plusieurs processus sur le même `DATA_DIR` peuvent
  valider deux commits sur la même version.
"""
from __future__ import annotations

import copy
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, Optional

from tambola.config.settings import settings
from .io_utils import read_json, write_json

GAMES_DIRNAME = "games"


class JsonFileBackend:
    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base_dir = Path(base_dir or Path(settings.DATA_DIR) / GAMES_DIRNAME)
        self._lock = RLock()

    def _path(self, game_id: str) -> Path:
        return self.base_dir / f"{game_id}.json"

    def load(self, game_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return read_json(self._path(game_id))

    def insert(self, record: Dict[str, Any]) -> None:
        with self._lock:
            path = self._path(record["id"])
            if path.exists():
                raise KeyError(f"game {record['id']} already exists")
            write_json(path, record)

    def compare_and_set(self, game_id: str, expected_version: int, record: Dict[str, Any]) -> bool:
        with self._lock:
            current = read_json(self._path(game_id))
            if current is None or int(current.get("version", 0)) != expected_version:
                return False
            write_json(self._path(game_id), record)
            return True

    def delete(self, game_id: str) -> bool:
        with self._lock:
            path = self._path(game_id)
            if not path.exists():
                return False
            path.unlink()
            return True

    def list_records(self) -> Iterable[Dict[str, Any]]:
        if not self.base_dir.exists():
            return []
        records = []
        for path in sorted(self.base_dir.glob("*.json")):
            data = read_json(path)
            if isinstance(data, dict):
                records.append(data)
        return records


class MemoryBackend:
    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()

    def load(self, game_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(game_id)
            return copy.deepcopy(record) if record is not None else None

    def insert(self, record: Dict[str, Any]) -> None:
        with self._lock:
            if record["id"] in self._records:
                raise KeyError(f"game {record['id']} already exists")
            self._records[record["id"]] = copy.deepcopy(record)

    def compare_and_set(self, game_id: str, expected_version: int, record: Dict[str, Any]) -> bool:
        with self._lock:
            current = self._records.get(game_id)
            if current is None or int(current.get("version", 0)) != expected_version:
                return False
            self._records[game_id] = copy.deepcopy(record)
            return True

    def delete(self, game_id: str) -> bool:
        with self._lock:
            return self._records.pop(game_id, None) is not None

    def list_records(self) -> Iterable[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]


def build_backend(kind: Optional[str] = None):
    """Instancie le backend configuré (`STORE_BACKEND`)."""
    kind = (kind or settings.STORE_BACKEND).lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "json":
        return JsonFileBackend()
    raise ValueError(f"unknown STORE_BACKEND: {kind}")
