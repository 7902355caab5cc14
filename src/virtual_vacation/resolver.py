"""Find the mailbox whose vacation answers for a recipient address.

The directory is a graph (aliases pointing at aliases, alias domains, domain
wildcards) that is not guaranteed to be acyclic, so the recursion depth is
tracked and the walk aborts once the configured bound is exceeded. Wide
aliases are fine: siblings share a depth, only chains grow it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from virtual_vacation.exceptions import AliasLoopError
from virtual_vacation.store import DirectoryStore

logger = structlog.get_logger()


def autoreply_address(address: str, vacation_domain: str) -> str:
    """``user@example.org`` -> ``user#example.org@<vacation_domain>``."""
    return address.replace("@", "#") + "@" + vacation_domain


class AliasResolver:
    """Resolve an address to the owner of an eligible vacation.

    Attributes:
        max_depth: Deepest alias chain allowed per :meth:`resolve` call.
        depth: Deepest level reached by the most recent call.
    """

    def __init__(
        self,
        store: DirectoryStore,
        vacation_domain: str,
        max_depth: int = 20,
        strict_autoreply_alias: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._vacation_domain = vacation_domain.lower()
        self._strict = strict_autoreply_alias
        self._clock = clock
        self.max_depth = max_depth
        self.depth = 0

    def resolve(self, address: str) -> tuple[bool, str]:
        """Walk the directory starting at ``address``.

        Returns:
            ``(True, owner)`` for the first address with an eligible vacation,
            ``(False, "")`` if there is none.

        Raises:
            AliasLoopError: If a chain deeper than ``max_depth`` was followed.
        """

        self.depth = 0
        return self._resolve(address.lower(), self._clock(), 1)

    def _resolve(self, address: str, now: datetime, depth: int) -> tuple[bool, str]:
        self.depth = max(self.depth, depth)
        if depth > self.max_depth:
            logger.error(
                "alias_resolution_loop",
                address=address,
                max_depth=self.max_depth,
            )
            raise AliasLoopError(
                f"alias resolution deeper than {self.max_depth} levels at {address}"
            )

        if self._store.has_active_vacation(address, now):
            logger.debug("vacation_active", address=address)
            return True, address

        alias = self._store.get_alias(address)
        if alias is not None and self._accepts(alias.address, alias.goto):
            for destination in alias.goto:
                # Mailboxes carry an alias onto themselves.
                if destination == address or self._is_autoreply(destination):
                    continue
                logger.debug("following_alias", address=address, destination=destination)
                found, owner = self._resolve(destination, now, depth + 1)
                if found:
                    return True, owner
            return False, ""

        user, sep, domain = address.partition("@")
        if not sep or not domain:
            return False, ""

        target = self._store.get_alias_domain_target(domain)
        if target:
            logger.debug("following_alias_domain", domain=domain, target=target)
            return self._resolve(f"{user}@{target.lower()}", now, depth + 1)

        wildcard = self._store.get_alias(f"@{domain}")
        if wildcard is not None and wildcard.goto:
            destination = wildcard.goto[0]
            local, sep, other_domain = destination.partition("@")
            if sep and local:
                logger.debug("following_domain_alias", domain=domain, destination=destination)
                return self._resolve(destination, now, depth + 1)
            if sep and other_domain:
                logger.debug("following_domain_alias", domain=domain, target=other_domain)
                return self._resolve(f"{user}@{other_domain}", now, depth + 1)

        logger.debug("no_vacation_found", address=address, domain=domain, user=user)
        return False, ""

    def _accepts(self, address: str, goto: list[str]) -> bool:
        if not self._strict:
            return True
        return autoreply_address(address, self._vacation_domain) in goto

    def _is_autoreply(self, destination: str) -> bool:
        return destination.endswith("@" + self._vacation_domain)
