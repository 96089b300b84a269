"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./earn.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server
    admin_api_key: str = "changeme-admin-key"

    # Network
    network: str = "testnet"  # "testnet" or "mainnet"
    min_confirmations: int | None = None  # None = network default (1 testnet, 3 mainnet)

    # Watcher
    watch_interval_seconds: int = 30
    max_pending_age_hours: float = 72.0
    deposit_tolerance_pct: float = 1.0  # accepted shortfall for network fees

    # Bridge
    bridge_providers: list[str] = ["simulated"]  # tried in order, e.g. ["swapkit", "simulated"]
    bridge_fee_percent: float = 0.5
    bridge_eta_minutes: int = 10
    withdrawal_fee_percent: float = 0.1
    withdrawal_min_fee: float = 0.0001

    # SwapKit quotes (bridge provider "swapkit")
    swapkit_api_url: str = "https://api.swapkit.dev"
    swapkit_api_key: str = ""
    swapkit_destination_account: str = "ref-finance.near"
    swapkit_slippage_percent: float = 3.0

    # Source ledger detector
    detector_provider: str = "simulated"  # "simulated" or "zcash_rpc"
    zcash_rpc_url: str = ""
    zcash_api_key: str = ""

    # Yield pool
    pool_provider: str = "simulated"  # "simulated" or "ref_indexer"
    ref_indexer_url: str = "https://indexer.ref.finance"
    protocol_name: str = "RHEA Finance"
    default_pool_id: str = "ref-finance-lp"
    fallback_apy: float = 8.5
    min_deposit: float = 0.001
    max_deposit: float = 1000.0

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "EARN_", "env_file": ".env"}

    @property
    def required_confirmations(self) -> int:
        if self.min_confirmations is not None:
            return self.min_confirmations
        return 3 if self.network == "mainnet" else 1


settings = Settings()
