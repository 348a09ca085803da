"""Resolution of external references to internal accounts, tracks and songs."""
from __future__ import annotations

from collections import OrderedDict
from typing import Hashable

from .collaborators import CatalogSource
from .logging_setup import get_logger
from .records import ArtistIdentity, MappingCoverage, TrackRef

LOGGER = get_logger(__name__)

_MISSING = object()


class IdentityCache:
    """Bounded LRU map of external identifiers to internal ids.

    ``None`` is a valid cached value and records a known miss.
    """

    def __init__(self, max_size: int = 1024) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: OrderedDict[Hashable, int | None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable, default: object = _MISSING) -> object:
        if key not in self._entries:
            return default
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key: Hashable, value: int | None) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


class IdentifierResolver:
    """Map external artist and sound references onto catalog identifiers."""

    def __init__(self, catalog: CatalogSource, sound_ids: IdentityCache | None = None) -> None:
        self.catalog = catalog
        self.sound_ids = sound_ids if sound_ids is not None else IdentityCache()

    async def resolve(self, external_id: str) -> ArtistIdentity | None:
        identity = await self.catalog.resolve_external_account(external_id)
        if identity is None:
            LOGGER.info("resolver.account_not_found", external_id=external_id)
        return identity

    async def list_track_refs(self, account_id: int) -> list[TrackRef]:
        return list(await self.catalog.list_track_refs(account_id))

    async def resolve_unified_song_ids(
        self, identity: ArtistIdentity
    ) -> tuple[list[int], MappingCoverage]:
        """Return the distinct mapped song ids for an account and the mapping coverage."""

        refs = await self.list_track_refs(identity.internal_account_id)
        mapped = [ref for ref in refs if ref.is_mapped]
        coverage = MappingCoverage(total=len(refs), mapped=len(mapped))
        song_ids = list(dict.fromkeys(int(ref.unified_song_id) for ref in mapped))

        if coverage.unmapped:
            LOGGER.info(
                "resolver.track_mapping",
                account_id=identity.internal_account_id,
                total=coverage.total,
                mapped=coverage.mapped,
                unmapped=coverage.unmapped,
                unmapped_track_ids=[ref.internal_track_id for ref in refs if not ref.is_mapped],
            )
        else:
            LOGGER.debug(
                "resolver.track_mapping",
                account_id=identity.internal_account_id,
                total=coverage.total,
                mapped=coverage.mapped,
                unmapped=0,
            )
        return song_ids, coverage

    async def resolve_sound_id(self, external_sound_id: str) -> int | None:
        key = str(external_sound_id)
        cached = self.sound_ids.get(key)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        sound_id = await self.catalog.resolve_sound_id(key)
        self.sound_ids.put(key, sound_id)
        if sound_id is None:
            LOGGER.info("resolver.sound_not_found", external_sound_id=key)
        return sound_id


__all__ = ["IdentifierResolver", "IdentityCache"]
