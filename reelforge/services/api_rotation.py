"""
API Key Rotation Service

Spreads outbound calls across several interchangeable API keys for the same
provider. Each key serves `requests_per_key` calls, then the next key takes
over, wrapping around at the end of the list. The position is stored in the
`api_rotation` table, so rotation continues across restarts.

Usage:
    from reelforge.services.api_rotation import ApiRotationManager

    rotation = ApiRotationManager(engine)
    api_key = rotation.get_next_key("fal", ["key-a", "key-b"], requests_per_key=2)

    # Or bind the arguments for a provider client
    next_key = rotation.key_supplier("fal", keys, requests_per_key=2)
    client = FalSeedream45(next_key, http_client)
"""

from collections import defaultdict
import logging
from threading import Lock
from typing import Callable, Dict, Sequence

from sqlalchemy import Engine, delete
from sqlmodel import Session, select

from reelforge.core.exceptions import NoCredentialsError
from reelforge.core.typing import ms_to_datetime, utc_now_ms
from reelforge.models.api_rotation import ApiRotationState

logger = logging.getLogger(__name__)


class ApiRotationManager:
    def __init__(self, engine: Engine):
        self.engine = engine
        # Read-increment-write must not interleave for the same provider
        self._locks: Dict[str, Lock] = defaultdict(Lock)

    def get_next_key(self, provider: str, keys: Sequence[str], requests_per_key: int) -> str:
        """
        Return the key to use for the next call to provider.

        Args:
            provider: Logical provider name; one rotation row per name
            keys: Ordered list of interchangeable keys
            requests_per_key: Calls served by a key before rotating (<= 0 never rotates)

        Raises:
            NoCredentialsError: keys is empty
        """
        if not keys:
            raise NoCredentialsError(provider)

        # Single key: nothing to rotate, no bookkeeping
        if len(keys) == 1:
            return keys[0]

        with self._locks[provider], Session(self.engine) as session:
            state = session.get(ApiRotationState, provider)
            if state is None:
                state = ApiRotationState(provider=provider, current_index=0, current_count=0, updated_at=utc_now_ms())

            # The key list may have shrunk since the state was written
            current_index = state.current_index % len(keys)
            api_key = keys[current_index]
            current_count = state.current_count + 1

            if requests_per_key > 0 and current_count >= requests_per_key:
                current_index = (current_index + 1) % len(keys)
                current_count = 0
                logger.info(f"Rotating {provider} to API key {current_index + 1}/{len(keys)}")

            state.current_index = current_index
            state.current_count = current_count
            state.updated_at = utc_now_ms()
            session.add(state)
            session.commit()

        logger.debug(
            f"Using API key for {provider} (next index {current_index + 1}/{len(keys)}, "
            f"count {current_count}/{requests_per_key})"
        )
        return api_key

    def key_supplier(self, provider: str, keys: Sequence[str], requests_per_key: int) -> Callable[[], str]:
        """Bind provider/keys/requests_per_key into a zero-argument key getter."""
        key_list = tuple(keys)

        def next_key() -> str:
            return self.get_next_key(provider, key_list, requests_per_key)

        return next_key

    def get_stats(self) -> Dict[str, Dict[str, object]]:
        """
        Rotation position per provider.

        Returns:
            {provider: {"current_index": 1-based, "current_count": N, "last_updated": ISO-8601}}
        """
        with Session(self.engine) as session:
            rows = session.exec(select(ApiRotationState)).all()
            return {
                row.provider: {
                    "current_index": row.current_index + 1,
                    "current_count": row.current_count,
                    "last_updated": ms_to_datetime(row.updated_at).isoformat(),
                }
                for row in rows
            }

    def reset(self, provider: str) -> None:
        """Start provider over at its first key."""
        with self._locks[provider], Session(self.engine) as session:
            state = session.get(ApiRotationState, provider)
            if state is not None:
                state.current_index = 0
                state.current_count = 0
                state.updated_at = utc_now_ms()
                session.add(state)
                session.commit()
        logger.info(f"Reset API rotation for {provider}")

    def reset_all(self) -> None:
        with Session(self.engine) as session:
            session.execute(delete(ApiRotationState))
            session.commit()
        logger.info("Reset all API rotations")


__all__ = ["ApiRotationManager"]
