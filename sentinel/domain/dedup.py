# ============================================================
# Module : sentinel/domain/dedup.py
# Objet  : Empreinte de contenu et filtre de doublons par source.
# Invariants :
#  - Égalité stricte d'empreinte uniquement (pas de quasi-doublons).
#  - Empreinte déterministe pour un contenu brut identique.
# ============================================================

from __future__ import annotations

import hashlib
from collections.abc import Iterable


def content_fingerprint(raw: str) -> str:
    """Retourne l'empreinte SHA-256 hexadécimale du contenu brut."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def is_duplicate(existing_hashes: set[str] | Iterable[str], candidate_hash: str) -> bool:
    """Vrai si l'empreinte du candidat a déjà été vue pour la source."""
    if not isinstance(existing_hashes, (set, frozenset)):
        existing_hashes = set(existing_hashes)
    return candidate_hash in existing_hashes


class DedupFilter:
    """Filtre de doublons alimenté par les empreintes déjà stockées d'une source.

    Les empreintes acceptées sont ajoutées au fur et à mesure, ce qui supprime aussi
    les doublons à l'intérieur d'un même lot collecté.
    """

    def __init__(self, known_hashes: Iterable[str] = ()) -> None:
        self._seen: set[str] = set(known_hashes)

    def accept(self, candidate_hash: str) -> bool:
        """Retourne True (et mémorise l'empreinte) si le candidat est nouveau."""
        if is_duplicate(self._seen, candidate_hash):
            return False
        self._seen.add(candidate_hash)
        return True

    def __len__(self) -> int:
        return len(self._seen)
