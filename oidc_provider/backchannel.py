"""
Back-channel logout: POST a signed logout token to every relying party of an ending session.

Best effort: each relying party is notified independently, failures are logged and never raised,
nothing is retried.
"""
import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

import httpx

from oidc_provider.entities import RelyingPartyAssociation
from oidc_provider.jwt_builder import LogoutTokenBuilder


class BackChannelLogoutHandler:
    def __init__(
        self,
        logout_token_builder: LogoutTokenBuilder,
        concurrency: int = 5,
        timeout: float = 3.0,
        verify_tls: bool = True,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.logout_token_builder = logout_token_builder
        self.concurrency = concurrency
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    def _notify(self, client: httpx.Client, index: int, association: RelyingPartyAssociation) -> None:
        try:
            logout_token = self.logout_token_builder.for_relying_party_association(association)
            response = client.post(association.back_channel_logout_uri, data={"logout_token": logout_token})
            response.raise_for_status()
        except Exception as e:
            self.logger.error("Backchannel Logout (index %d) - error, reason: %s", index, e)
            return
        self.logger.info("Backchannel Logout (index %d) - success, status: %d", index, response.status_code)

    def handle(self, associations: Iterable[RelyingPartyAssociation]) -> None:
        """Notify every association with a back-channel logout URI; returns when all attempts finished."""
        targets = [association for association in associations if association.back_channel_logout_uri]
        if not targets:
            return

        client_options = {"timeout": self.timeout, "verify": self.verify_tls}
        if self.transport is not None:
            client_options["transport"] = self.transport
        with httpx.Client(**client_options) as client:
            with ThreadPoolExecutor(max_workers=max(1, self.concurrency)) as pool:
                for index, association in enumerate(targets):
                    pool.submit(self._notify, client, index, association)
