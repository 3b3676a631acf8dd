"""
Service: number_drawer.py
Rôle:
- Produire la séquence de tirage d'une session (permutation de 1..90) et choisir le
  prochain numéro à appeler.

Comportement:
- `shuffle(seed)` est appelé une seule fois, au lancement du compte à rebours ; la
  séquence est ensuite figée dans `game.session_numbers`.
- `next_number(game)` est pur : premier numéro de la séquence absent de `called_numbers`.
  Deux appels sur le même état renvoient le même numéro ; l'unicité est garantie par le
  fait que le tirage et l'ajout ont lieu dans la même mise à jour atomique.
- Les anciennes parties sans séquence retombent sur le pool restant, trié.
"""
import random
from typing import Iterable, List, Optional

from tambola.models.game import Game, NUMBER_MAX, NUMBER_MIN

FULL_POOL = tuple(range(NUMBER_MIN, NUMBER_MAX + 1))


def shuffle(seed: Optional[int] = None) -> List[int]:
    """Permutation uniforme de 1..90 (graine optionnelle pour des tirages rejouables)."""
    rng = random.Random(seed) if seed is not None else random
    pool = list(FULL_POOL)
    rng.shuffle(pool)
    return pool


def validate_sequence(seq: Iterable[int]) -> bool:
    values = list(seq)
    return len(values) == len(FULL_POOL) and sorted(values) == list(FULL_POOL)


def remaining_pool(game: Game) -> List[int]:
    """Numéros encore tirables, dans l'ordre où ils sortiront."""
    called = set(game.called_numbers)
    ordered = list(dict.fromkeys(game.session_numbers))
    # séquence absente ou incomplète : on complète avec le pool trié
    seen = set(ordered)
    ordered.extend(n for n in FULL_POOL if n not in seen)
    return [n for n in ordered if n not in called and NUMBER_MIN <= n <= NUMBER_MAX]


def next_number(game: Game) -> Optional[int]:
    """Prochain numéro à appeler, ou None quand les 90 numéros sont sortis."""
    pool = remaining_pool(game)
    return pool[0] if pool else None


# Annonces traditionnelles (texte transmis au collaborateur audio)
TRADITIONAL_CALLS = {
    1: "Kelly's Eyes",
    2: "One Little Duck",
    3: "Cup of Tea",
    4: "Knock at the Door",
    5: "Man Alive",
    6: "Half a Dozen",
    7: "Lucky Seven",
    8: "Garden Gate",
    9: "Doctor's Orders",
    10: "Uncle Ben",
    11: "Legs Eleven",
    12: "One Dozen",
    13: "Unlucky for Some",
    14: "Valentine's Day",
    15: "Young and Keen",
    16: "Sweet Sixteen",
    17: "Dancing Queen",
    18: "Now You Can Vote",
    19: "Goodbye Teens",
    20: "One Score",
    21: "Key of the Door",
    22: "Two Little Ducks",
    30: "Dirty Thirty",
    44: "Droopy Drawers",
    45: "Halfway There",
    50: "Half a Century",
    55: "Snakes Alive",
    66: "Clickety Click",
    77: "Sunset Strip",
    88: "Two Fat Ladies",
    90: "Top of the Shop",
}


def call_text(number: int) -> str:
    nickname = TRADITIONAL_CALLS.get(number)
    return f"{nickname} - {number}" if nickname else f"Number {number}"
