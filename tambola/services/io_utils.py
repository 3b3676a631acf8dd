"""
IO JSON (orjson) pour les enregistrements de parties, jeux de tickets et hôtes.
- read_json(path): contenu décodé, None si le fichier n'existe pas
- write_json(path, data): remplacement atomique, un lecteur concurrent voit
  l'ancien fichier ou le nouveau, jamais un fichier tronqué
- dumps(data): texte JSON (messages WebSocket)

orjson travaille en bytes : fichiers ouverts en binaire, pas d'indentation.
"""
import os
from pathlib import Path
from typing import Any

import orjson


def read_json(path: Path) -> Any:
    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        return None
    return orjson.loads(raw)


def write_json(path: Path, data: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_bytes(orjson.dumps(data))
    os.replace(tmp, path)


def dumps(data: Any) -> str:
    return orjson.dumps(data).decode("utf-8")
