"""Launch-at-login capability.

Registering with the operating system is platform specific and lives
outside this package. The CLI's ``config --auto-start`` flag records the
preference in settings and hands it to an :class:`Autostart`; the
registries and scanner never touch it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class Autostart(ABC):
    """Enable or disable launching the cemetery service at login."""

    @abstractmethod
    def enable(self) -> None: ...

    @abstractmethod
    def disable(self) -> None: ...

    def apply(self, enabled: bool) -> None:
        if enabled:
            self.enable()
        else:
            self.disable()


class DisabledAutostart(Autostart):
    """Records nothing with the OS; logs the requested state."""

    def enable(self) -> None:
        log.info("Autostart requested; no platform integration installed")

    def disable(self) -> None:
        log.info("Autostart disabled")
