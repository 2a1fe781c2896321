"""Out-of-band approval of device authorization requests (RFC 8628 §3.3)."""

from __future__ import annotations

import dataclasses
import logging

from oauth_issuer.token_engine.errors import InvalidGrantError, TicketStoreError
from oauth_issuer.token_engine.ids import user_code_ticket_id
from oauth_issuer.token_engine.models import (
    Authentication,
    DeviceToken,
    DeviceUserCode,
    TicketKind,
)
from oauth_issuer.token_engine.store import TicketStore

_LOG = logging.getLogger("oauth-issuer.token_engine.device")


class DeviceApprovalService:
    def __init__(self, store: TicketStore) -> None:
        self.store = store

    def lookup(self, user_code: str) -> DeviceToken:
        """Return the pending device token a user code refers to."""
        index = self.store.get(user_code_ticket_id(user_code), TicketKind.DEVICE_USER_CODE)
        if not isinstance(index, DeviceUserCode):
            raise InvalidGrantError("user code is invalid or expired")
        device = self.store.get(index.device_code, TicketKind.DEVICE_TOKEN)
        if not isinstance(device, DeviceToken):
            raise InvalidGrantError("user code is invalid or expired")
        return device

    def approve(self, user_code: str, authentication: Authentication) -> DeviceToken:
        """Bind *authentication* to the device so its next poll yields tokens."""
        device = self.lookup(user_code)
        index_id = user_code_ticket_id(user_code)
        index = self.store.get(index_id, TicketKind.DEVICE_USER_CODE)
        if not isinstance(index, DeviceUserCode):
            raise InvalidGrantError("user code is invalid or expired")

        # The index entry is authoritative; the device token copy is best effort.
        if not self.store.update(dataclasses.replace(index, authentication=authentication)):
            raise InvalidGrantError("user code is invalid or expired")
        approved = dataclasses.replace(device, approved=True, authentication=authentication)
        if not self.store.update(approved):
            raise TicketStoreError("device token vanished during approval")

        _LOG.info(
            "Device approved for client_id=%s principal=%s",
            device.client_id,
            authentication.principal.id,
        )
        return approved
