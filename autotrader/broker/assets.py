from types import MappingProxyType
from typing import Mapping

# Broker instrument id -> symbol
DEFAULT_ASSETS: Mapping[int, str] = MappingProxyType({
    1861: "EURUSD",
    2: "GBPUSD",
    3: "USDJPY",
    4: "AUDUSD",
    5: "USDCAD",
    6: "USDCHF",
    7: "NZDUSD",
    76: "EURUSD-OTC",
    77: "GBPUSD-OTC",
    78: "AUDUSD-OTC",
    79: "USDCAD-OTC",
    80: "USDCHF-OTC",
    81: "NZDUSD-OTC",
    82: "USDJPY-OTC",
    2301: "PENUSD-OTC",
    1961: "GOLD",
})

class AssetDirectory:
    """Read-only two-way map between broker instrument ids and symbols.

    Safe to share between connections; nothing mutates it after construction.
    """

    def __init__(self, assets: Mapping[int, str] | None = None, fallback_id: int = 1861):
        by_id = {int(k): str(v) for k, v in (assets if assets is not None else DEFAULT_ASSETS).items()}
        by_symbol: dict[str, int] = {}
        for asset_id, symbol in by_id.items():
            # first id wins when two ids share a symbol
            by_symbol.setdefault(symbol.upper(), asset_id)
        self._by_id = MappingProxyType(by_id)
        self._by_symbol = MappingProxyType(by_symbol)
        self.fallback_id = fallback_id

    def resolve(self, asset_id) -> str:
        try:
            return self._by_id[int(asset_id)]
        except (KeyError, TypeError, ValueError):
            return f"Unknown-ID:{asset_id}"

    def id_for(self, symbol: str | None) -> int:
        if not symbol:
            return self.fallback_id
        return self._by_symbol.get(symbol.upper(), self.fallback_id)

    def __contains__(self, symbol: str) -> bool:
        return bool(symbol) and symbol.upper() in self._by_symbol

    def __len__(self) -> int:
        return len(self._by_id)
