"""Logout cleanup: drop the session and every session-scoped local entry."""
from typing import Callable, Iterable, List, Optional, Sequence
import logging

from booktrack.storage import KeyValueStorage, SessionStore

logger = logging.getLogger(__name__)

# Named cache entries written during a session
DEFAULT_CACHE_KEYS = ("userData", "appSettings", "booksCache", "userProfileCache")

# Ad hoc caches may be created anywhere under these prefixes
DEFAULT_TRANSIENT_PREFIXES = ("temp_", "cache_")

KeyRule = Callable[[str], bool]


def prefix_rule(prefix: str) -> KeyRule:
    """Build a transient-key rule matching keys that start with ``prefix``."""
    def matches(key: str) -> bool:
        return key.startswith(prefix)

    matches.__name__ = f"prefix_{prefix}"
    return matches


class SessionCleanup:
    """Clears session state on logout.

    The sweep over transient keys is driven by a registry of rules evaluated
    against the full key listing, so new ad hoc caches only need a rule.
    In-memory holders (such as an open book collection) register hooks that
    run after storage is clean.
    """

    def __init__(
        self,
        session_store: SessionStore,
        storage: KeyValueStorage,
        cache_keys: Sequence[str] = DEFAULT_CACHE_KEYS,
        transient_rules: Optional[Iterable[KeyRule]] = None
    ):
        self.session_store = session_store
        self.storage = storage
        self.cache_keys = tuple(cache_keys)
        if transient_rules is None:
            transient_rules = [prefix_rule(p) for p in DEFAULT_TRANSIENT_PREFIXES]
        self.transient_rules: List[KeyRule] = list(transient_rules)
        self._hooks: List[Callable[[], None]] = []

    def register_transient_rule(self, rule: KeyRule) -> None:
        self.transient_rules.append(rule)

    def register_hook(self, hook: Callable[[], None]) -> Callable[[], None]:
        """
        Register an in-memory cleanup callback.

        Args:
            hook: Zero-argument callable run on every cleanup

        Returns:
            Callable that unregisters the hook
        """
        self._hooks.append(hook)

        def unregister() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return unregister

    def is_transient(self, key: str) -> bool:
        return any(rule(key) for rule in self.transient_rules)

    def transient_keys(self, keys: Iterable[str]) -> List[str]:
        """Select the keys the sweep would remove."""
        return [key for key in keys if self.is_transient(key)]

    async def cleanup_storage(self) -> List[str]:
        """
        Remove the credential, the named caches and all transient keys.

        Returns:
            Transient keys removed by the sweep
        """
        await self.session_store.clear()
        await self.storage.multi_remove(self.cache_keys)

        swept = self.transient_keys(await self.storage.get_all_keys())
        if swept:
            await self.storage.multi_remove(swept)

        logger.info(f"Storage cleanup completed ({len(swept)} transient keys removed)")
        return swept

    def cleanup_memory(self) -> None:
        for hook in list(self._hooks):
            hook()
        logger.info(f"Memory cache cleanup completed ({len(self._hooks)} hooks)")

    async def perform_cleanup(self) -> None:
        """
        Run the full logout cleanup.

        Idempotent: a second run finds nothing left and succeeds.

        Raises:
            Exception: Any failure is logged and re-raised so a failed
                logout never looks successful
        """
        try:
            await self.cleanup_storage()
            self.cleanup_memory()
        except Exception as e:
            logger.error(f"Error during cleanup process: {e}")
            raise

        logger.info("All cleanup processes completed successfully")
