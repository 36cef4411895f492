from typing import Callable, Optional

from autotrader.broker.assets import AssetDirectory
from autotrader.broker.client import BrokerClient
from autotrader.config import BotConfig
from autotrader.constants import AccountMode
from autotrader.services.notifier import Notifier
from autotrader.utils.logger import log

ClientFactory = Callable[..., BrokerClient]

class SessionRegistry:
    """One broker connection per user id; what the dispatcher fans out over."""

    def __init__(self, cfg: BotConfig, notifier: Notifier, *, assets: Optional[AssetDirectory] = None,
                 client_factory: Optional[ClientFactory] = None):
        self.cfg = cfg
        self.notifier = notifier
        self.assets = assets if assets is not None else AssetDirectory(fallback_id=cfg.fallback_asset_id)
        self.client_factory = client_factory or self._default_client
        self._clients: dict[str, BrokerClient] = {}

    def _default_client(self, email: str, password: str, user_id: str,
                        account_mode: AccountMode = AccountMode.REAL) -> BrokerClient:
        return BrokerClient(email, password, self.cfg, user_id=user_id, assets=self.assets,
                            account_mode=account_mode)

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._clients

    async def login(self, user_id: str, email: str, password: str,
                    account_mode: AccountMode = AccountMode.REAL) -> Optional[BrokerClient]:
        if user_id in self._clients:
            await self.logout(user_id)
        client = self.client_factory(email, password, user_id, account_mode)
        if not await client.login():
            await client.disconnect()
            return None
        self.register(user_id, client)
        await client.connect()
        return client

    def register(self, user_id: str, client: BrokerClient) -> None:
        self._clients[user_id] = client
        client.on("trade_opened", lambda event: self.notifier.trade_opened(user_id, event, client.currency))
        log.info("👤 Session registered for %s (%d total)", user_id, len(self._clients))

    async def logout(self, user_id: str) -> bool:
        client = self._clients.pop(user_id, None)
        if client is None:
            return False
        await client.disconnect()
        log.info("👋 Session closed for %s", user_id)
        return True

    def get(self, user_id: str) -> Optional[BrokerClient]:
        return self._clients.get(user_id)

    def connected(self) -> list[tuple[str, BrokerClient]]:
        return [(uid, c) for uid, c in self._clients.items() if c.connected]

    def switch_account(self, user_id: str, mode: AccountMode) -> bool:
        client = self._clients.get(user_id)
        if client is None:
            return False
        client.switch_account(mode)
        return True

    async def close_all(self) -> None:
        for user_id in list(self._clients):
            await self.logout(user_id)
