"""
Shared ADC Ownership
====================

The pH converter and the ORP/EC converter sit on one I2C bus. Exactly one
side may hold the bus at a time: acquiring it yields an AdcHandle, and
releasing revokes that handle so any copy the old owner kept stops working.
The token is the only synchronization needed; nothing here is thread-safe
and nothing needs to be.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, Iterator, Optional

from .errors import DeviceNotHeld, OwnershipConflict
from .hal import AnalogConverter, InputSelector, create_adc

logger = logging.getLogger(__name__)


class ChannelId(Enum):
    """Sides of the shared bus that can own the converter."""

    PH = "ph"
    ORP_EC = "orp_ec"


DEFAULT_ADDRESSES = {
    ChannelId.PH: 0x48,
    ChannelId.ORP_EC: 0x49,
}


class AdcHandle:
    """Read access to the shared converter, valid until its owner releases it."""

    def __init__(self, owner: ChannelId, converter: AnalogConverter):
        self.owner = owner
        self._converter: Optional[AnalogConverter] = converter

    @property
    def held(self) -> bool:
        return self._converter is not None

    def read(self, selector: InputSelector) -> int:
        if self._converter is None:
            raise DeviceNotHeld(f"{self.owner.value} read {selector.value} after release")
        return self._converter.read(selector)

    def _revoke(self) -> None:
        self._converter = None


class DeviceArbiter:
    """Owns the shared bus and hands it to one channel at a time.

    Args:
        bus: The raw shared bus (busio.I2C or MockI2CBus)
        addresses: Converter address used by each side
        converter_factory: Builds a converter for (bus, address)
    """

    def __init__(self, bus, addresses: Optional[Dict[ChannelId, int]] = None,
                 converter_factory: Callable[..., AnalogConverter] = create_adc):
        self._bus = bus
        self.addresses = dict(DEFAULT_ADDRESSES)
        if addresses:
            self.addresses.update(addresses)
        self._factory = converter_factory
        self._handle: Optional[AdcHandle] = None

    @property
    def owner(self) -> Optional[ChannelId]:
        return self._handle.owner if self._handle is not None else None

    def is_held_by(self, channel: ChannelId) -> bool:
        return self.owner is channel

    def acquire(self, channel: ChannelId) -> AdcHandle:
        """Hand the bus to `channel`.

        Re-acquiring by the current owner returns its existing handle.

        Raises:
            OwnershipConflict: if another channel holds the bus
        """
        if self._handle is not None:
            if self._handle.owner is channel:
                return self._handle
            raise OwnershipConflict(
                f"{channel.value} requested the ADC while held by {self._handle.owner.value}")

        converter = self._factory(self._bus, self.addresses[channel])
        self._handle = AdcHandle(channel, converter)
        logger.debug("ADC acquired by %s at %#04x", channel.value, self.addresses[channel])
        return self._handle

    def release(self, channel: ChannelId):
        """Take the bus back from `channel` and return the raw bus.

        Raises:
            DeviceNotHeld: if `channel` is not the current owner
        """
        if self._handle is None or self._handle.owner is not channel:
            raise DeviceNotHeld(f"{channel.value} released an ADC it does not hold")

        self._handle._revoke()
        self._handle = None
        logger.debug("ADC released by %s", channel.value)
        return self._bus

    def handoff(self, channel: ChannelId) -> AdcHandle:
        """Release from the current owner (if any) and acquire for `channel`."""
        current = self.owner
        if current is not None and current is not channel:
            self.release(current)
            logger.info("ADC handed from %s to %s", current.value, channel.value)
        return self.acquire(channel)

    @contextmanager
    def holding(self, channel: ChannelId, restore_to: Optional[ChannelId] = None) -> Iterator[AdcHandle]:
        """Hold the bus for `channel` for the duration of the block.

        On exit the bus goes to `restore_to`, or back to whoever held it before.
        """
        previous = self.owner if restore_to is None else restore_to
        handle = self.handoff(channel)
        try:
            yield handle
        finally:
            if previous is None:
                if self.owner is channel:
                    self.release(channel)
            else:
                self.handoff(previous)
