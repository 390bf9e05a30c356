"""Client session: REST client and realtime channel for one logged-in user"""

import logging

import sentry_sdk

from fixit_client.config import settings
from fixit_client.services import (
    FixitAPIClient,
    NotificationCenter,
    RealtimeClient,
)

logger = logging.getLogger(__name__)


class FixitSession:
    """
    Everything tied to one login.

    ``start`` opens the realtime channel, ``logout`` closes it together with
    the notification center so that nothing arriving afterwards can touch
    the dead session's feed.
    """

    def __init__(
        self,
        token: str,
        api_url: str | None = None,
        realtime_url: str | None = None,
        timeout: float | None = None,
    ):
        self.token = token
        self.api = FixitAPIClient(
            base_url=api_url or settings.api_url,
            token=token,
            timeout=timeout or settings.request_timeout,
        )
        self.realtime = RealtimeClient(realtime_url or settings.realtime_url, token)

    @property
    def notifications(self) -> NotificationCenter:
        return self.realtime.notifications

    async def start(self) -> None:
        if settings.sentry_dsn:
            sentry_sdk.init(dsn=settings.sentry_dsn, debug=settings.debug)

        if await self.api.is_available():
            logger.info("FixIT API is available")
        else:
            logger.warning("FixIT API is not responding")

        await self.realtime.connect()

    async def logout(self) -> None:
        await self.realtime.close()
        await self.api.close()
        logger.info("Session closed")

    async def __aenter__(self) -> "FixitSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.logout()
