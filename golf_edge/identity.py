"""
Player identity resolution.

Every raw name from every source (fields, predictions, odds) is mapped to one
canonical key here. If two paths normalised the same player differently the
simulation output would silently fail to match the odds offers, so all name
handling in the engine goes through `normalize`.
"""

import logging
import re
import threading
import uuid
from typing import Dict, List, Optional, TYPE_CHECKING

from .models import PlayerIdentity

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)

_IDENTITY_NAMESPACE = uuid.UUID("6f1c1b52-7a55-4c1e-9f0e-5d0c2f9a8b31")

# Fixed transliteration table for diacritics seen in tour fields
DIACRITICS = {
    "à": "a", "á": "a", "â": "a", "ã": "a", "ä": "a", "å": "a", "ā": "a", "ą": "a",
    "æ": "ae",
    "ç": "c", "ć": "c", "č": "c",
    "ď": "d", "đ": "d", "ð": "d",
    "è": "e", "é": "e", "ê": "e", "ë": "e", "ē": "e", "ė": "e", "ę": "e", "ě": "e",
    "ğ": "g",
    "ì": "i", "í": "i", "î": "i", "ï": "i", "ī": "i", "ı": "i",
    "ł": "l",
    "ñ": "n", "ń": "n", "ň": "n",
    "ò": "o", "ó": "o", "ô": "o", "õ": "o", "ö": "o", "ø": "o", "ō": "o", "ő": "o",
    "œ": "oe",
    "ř": "r",
    "ś": "s", "š": "s", "ş": "s",
    "ß": "ss",
    "ť": "t", "ţ": "t",
    "þ": "th",
    "ù": "u", "ú": "u", "û": "u", "ü": "u", "ū": "u", "ů": "u", "ű": "u",
    "ý": "y", "ÿ": "y",
    "ź": "z", "ż": "z", "ž": "z",
}
_TRANSLITERATE = str.maketrans(DIACRITICS)
_DROP = re.compile(r"[^a-z0-9\s-]")
_SPACES = re.compile(r"\s+")


def normalize(raw_name) -> str:
    """
    Canonical key for a player name.

    Lowercases, transliterates known diacritics, drops any other non-ASCII
    character and punctuation (hyphens kept), collapses whitespace and trims.
    "Last, First" is reordered to "first last". Idempotent.
    """
    if raw_name is None:
        return ""
    name = str(raw_name).lower().translate(_TRANSLITERATE)
    name = name.encode("ascii", "ignore").decode("ascii")
    if name.count(",") == 1:
        last, first = name.split(",")
        name = f"{first} {last}"
    name = _DROP.sub("", name)
    return _SPACES.sub(" ", name).strip()


class PlayerIdentityResolver:
    """
    Resolves raw names and external ids to canonical player identities.

    One instance per run; when a database is supplied, known identities are
    loaded up front and new or changed identities are written back.
    """

    def __init__(self, db: Optional["Database"] = None):
        self.db = db
        self._lock = threading.Lock()
        self._by_id: Dict[str, PlayerIdentity] = {}
        self._by_name: Dict[str, str] = {}
        self._by_external: Dict[str, str] = {}
        if db is not None:
            for identity in db.get_all_players():
                self._index(identity)

    def __len__(self) -> int:
        return len(self._by_id)

    def _index(self, identity: PlayerIdentity):
        self._by_id[identity.id] = identity
        self._by_name[identity.canonical_name] = identity.id
        for alias in identity.aliases:
            key = normalize(alias)
            if key:
                self._by_name.setdefault(key, identity.id)
        if identity.external_id:
            self._by_external[str(identity.external_id)] = identity.id

    def _persist(self, identity: PlayerIdentity):
        if self.db is not None:
            self.db.save_player(identity)

    def lookup(self, raw_name) -> Optional[PlayerIdentity]:
        """Find an identity by canonical name or alias without creating one."""
        key = normalize(raw_name)
        if not key:
            return None
        identity_id = self._by_name.get(key)
        return self._by_id.get(identity_id) if identity_id else None

    def resolve_or_create(self, raw_name) -> Optional[PlayerIdentity]:
        """Resolve a raw name, creating the identity on first sighting."""
        canonical = normalize(raw_name)
        if not canonical:
            return None
        raw = str(raw_name).strip()

        with self._lock:
            identity_id = self._by_name.get(canonical)
            if identity_id is None:
                identity = PlayerIdentity(
                    id=uuid.uuid5(_IDENTITY_NAMESPACE, canonical).hex,
                    canonical_name=canonical,
                    aliases={raw, canonical},
                )
                self._index(identity)
                self._persist(identity)
                logger.info(f"Created new player: {canonical}")
                return identity

            identity = self._by_id[identity_id]
            new_aliases = {raw, canonical} - identity.aliases
            if new_aliases:
                identity.aliases |= new_aliases
                self._index(identity)
                self._persist(identity)
            return identity

    def resolve_by_external_id(self, name=None, external_id=None) -> Optional[PlayerIdentity]:
        """
        Resolve using an external id first, then the name.

        A name-resolved identity without an external id gets this one attached.
        Returns None only when neither name nor id is supplied.
        """
        ext = str(external_id).strip() if external_id not in (None, "") else None
        if ext:
            with self._lock:
                identity_id = self._by_external.get(ext)
            if identity_id:
                identity = self._by_id[identity_id]
                if name and normalize(name):
                    identity = self.add_alias(identity, name)
                return identity

        if not name or not normalize(name):
            if not ext:
                return None
            # Unknown id with no name: key the player by the id itself
            name = f"player {ext}"

        identity = self.resolve_or_create(name)
        if ext and identity is not None and not identity.external_id:
            with self._lock:
                identity.external_id = ext
                self._by_external[ext] = identity.id
            self._persist(identity)
        return identity

    def add_alias(self, identity: PlayerIdentity, alias: str) -> PlayerIdentity:
        """Attach an alias variant to an existing identity (deduplicated)."""
        raw = str(alias).strip()
        if not raw or raw in identity.aliases:
            return identity
        with self._lock:
            identity.aliases.add(raw)
            key = normalize(raw)
            if key:
                self._by_name.setdefault(key, identity.id)
        self._persist(identity)
        return identity

    def all(self) -> List[PlayerIdentity]:
        return sorted(self._by_id.values(), key=lambda p: p.canonical_name)
