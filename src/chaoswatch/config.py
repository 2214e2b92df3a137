from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chaoswatch.domain.contracts import ZERO_ADDRESS, ContractAddresses, normalize_address


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rpc_url: str = Field(default="https://testnet-rpc.monad.xyz", alias="RPC_URL")
    chain_id: int = Field(default=10143, alias="CHAIN_ID")
    api_url: str = Field(
        default="https://chaoscoin-production.up.railway.app", alias="API_URL"
    )

    chaos_token_address: str = Field(
        default="0xf9b40cd538d391e2437b53fb043cb47a61a02bc0", alias="CHAOS_TOKEN_ADDRESS"
    )
    token_burner_address: str = Field(
        default="0xa888df07270851300ab34a6b9715e99f468d07a6", alias="TOKEN_BURNER_ADDRESS"
    )
    agent_registry_address: str = Field(
        default="0x65a1f64aee5c91b81ca131a6a69facfbdcfdb93c", alias="AGENT_REGISTRY_ADDRESS"
    )
    mining_engine_address: str = Field(
        default="0x2c24bdd688d817b7b2aa2036c71b3a31333eff0f", alias="MINING_ENGINE_ADDRESS"
    )
    era_manager_address: str = Field(
        default="0xe136003be0197a069e285ee0c1667c4f68422fb0", alias="ERA_MANAGER_ADDRESS"
    )
    zone_manager_address: str = Field(
        default="0xc9860c102e550c05cbd6d09b16af42cab0ec1ebf", alias="ZONE_MANAGER_ADDRESS"
    )
    cosmic_engine_address: str = Field(
        default="0x89df1a167b3fe474131aafd8b847417fea488494", alias="COSMIC_ENGINE_ADDRESS"
    )
    rig_factory_address: str = Field(
        default="0xd8d6423be3083fde1b3a3a93be99b09a0e45c38b", alias="RIG_FACTORY_ADDRESS"
    )
    facility_manager_address: str = Field(
        default="0x0abdc66fa331d89b767367c2a6cbf425b6fb93b7", alias="FACILITY_MANAGER_ADDRESS"
    )
    shield_manager_address: str = Field(
        default="0x73c6be50f0492b1cbc7f1af595028cd894c0c005", alias="SHIELD_MANAGER_ADDRESS"
    )

    chain_poll_seconds: float = Field(default=15.0, alias="CHAIN_POLL_SECONDS")
    agents_poll_seconds: float = Field(default=15.0, alias="AGENTS_POLL_SECONDS")
    cosmic_poll_seconds: float = Field(default=15.0, alias="COSMIC_POLL_SECONDS")
    activity_poll_seconds: float = Field(default=10.0, alias="ACTIVITY_POLL_SECONDS")
    social_poll_seconds: float = Field(default=12.0, alias="SOCIAL_POLL_SECONDS")
    alliances_poll_seconds: float = Field(default=20.0, alias="ALLIANCES_POLL_SECONDS")
    sabotage_poll_seconds: float = Field(default=10.0, alias="SABOTAGE_POLL_SECONDS")
    marketplace_poll_seconds: float = Field(default=12.0, alias="MARKETPLACE_POLL_SECONDS")
    flush_interval_seconds: float = Field(default=30.0, alias="FLUSH_INTERVAL_SECONDS")

    lookback_blocks: int = Field(default=5000, alias="LOOKBACK_BLOCKS")
    activity_max_items: int = Field(default=200, alias="ACTIVITY_MAX_ITEMS")
    dedup_max_ids: int = Field(default=2000, alias="DEDUP_MAX_IDS")
    feed_max_items: int = Field(default=60, alias="FEED_MAX_ITEMS")
    avg_block_seconds: float = Field(default=0.4, alias="AVG_BLOCK_SECONDS")
    max_cosmic_events: int = Field(default=50, alias="MAX_COSMIC_EVENTS")
    max_agents: int = Field(default=500, alias="MAX_AGENTS")
    agent_rig_batch_size: int = Field(default=3, alias="AGENT_RIG_BATCH_SIZE")
    agent_rig_batch_delay_seconds: float = Field(
        default=0.25, alias="AGENT_RIG_BATCH_DELAY_SECONDS"
    )

    social_feed_count: int = Field(default=40, alias="SOCIAL_FEED_COUNT")
    alliance_events_count: int = Field(default=20, alias="ALLIANCE_EVENTS_COUNT")
    sabotage_events_count: int = Field(default=20, alias="SABOTAGE_EVENTS_COUNT")
    negotiations_count: int = Field(default=10, alias="NEGOTIATIONS_COUNT")
    marketplace_listings_count: int = Field(default=20, alias="MARKETPLACE_LISTINGS_COUNT")
    marketplace_sales_count: int = Field(default=10, alias="MARKETPLACE_SALES_COUNT")

    rpc_batching: bool = Field(default=True, alias="RPC_BATCHING")
    rpc_batch_size: int = Field(default=100, alias="RPC_BATCH_SIZE")
    rpc_rate_per_sec: float = Field(default=15.0, alias="RPC_RATE_PER_SEC")
    rpc_burst: int = Field(default=10, alias="RPC_BURST")
    rpc_max_attempts: int = Field(default=3, alias="RPC_MAX_ATTEMPTS")
    rpc_timeout_seconds: float = Field(default=10.0, alias="RPC_TIMEOUT_SECONDS")
    api_timeout_seconds: float = Field(default=8.0, alias="API_TIMEOUT_SECONDS")

    state_db_path: str = Field(default="chaoswatch_state.db", alias="STATE_DB_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    observability_enabled: bool = Field(default=False, alias="OBSERVABILITY_ENABLED")
    observability_metrics_exporter: str = Field(
        default="none", alias="OBSERVABILITY_METRICS_EXPORTER"
    )
    observability_otlp_endpoint: str | None = Field(
        default=None, alias="OBSERVABILITY_OTLP_ENDPOINT"
    )
    observability_prometheus_port: int = Field(
        default=9464, alias="OBSERVABILITY_PROMETHEUS_PORT"
    )

    @field_validator(
        "chaos_token_address",
        "token_burner_address",
        "agent_registry_address",
        "mining_engine_address",
        "era_manager_address",
        "zone_manager_address",
        "cosmic_engine_address",
        "rig_factory_address",
        "facility_manager_address",
        "shield_manager_address",
        mode="before",
    )
    def validate_contract_address(cls, value: object) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return ZERO_ADDRESS
        return normalize_address(str(value))

    @field_validator(
        "chain_poll_seconds",
        "agents_poll_seconds",
        "cosmic_poll_seconds",
        "activity_poll_seconds",
        "social_poll_seconds",
        "alliances_poll_seconds",
        "sabotage_poll_seconds",
        "marketplace_poll_seconds",
        "flush_interval_seconds",
    )
    def validate_poll_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("poll intervals must be > 0")
        return value

    @field_validator("lookback_blocks")
    def validate_lookback_blocks(cls, value: int) -> int:
        if value < 0:
            raise ValueError("LOOKBACK_BLOCKS must be >= 0")
        return value

    @field_validator(
        "activity_max_items",
        "feed_max_items",
        "max_agents",
        "rpc_batch_size",
        "rpc_burst",
        "rpc_max_attempts",
        "agent_rig_batch_size",
    )
    def validate_positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("count settings must be >= 1")
        return value

    @field_validator("max_cosmic_events")
    def validate_max_cosmic_events(cls, value: int) -> int:
        if value < 0:
            raise ValueError("MAX_COSMIC_EVENTS must be >= 0")
        return value

    @field_validator(
        "avg_block_seconds", "rpc_rate_per_sec", "rpc_timeout_seconds", "api_timeout_seconds"
    )
    def validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    @field_validator("agent_rig_batch_delay_seconds")
    def validate_rig_batch_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("AGENT_RIG_BATCH_DELAY_SECONDS must be >= 0")
        return value

    @field_validator("observability_metrics_exporter")
    def validate_metrics_exporter(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"none", "otlp", "prometheus"}:
            raise ValueError("OBSERVABILITY_METRICS_EXPORTER must be none, otlp or prometheus")
        return normalized

    @field_validator("rpc_url", "api_url")
    def validate_base_url(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return candidate.rstrip("/")

    @model_validator(mode="after")
    def validate_dedup_capacity(self) -> Settings:
        if self.dedup_max_ids < self.activity_max_items:
            raise ValueError("DEDUP_MAX_IDS must be >= ACTIVITY_MAX_ITEMS")
        return self

    def contract_addresses(self) -> ContractAddresses:
        return ContractAddresses(
            chaos_token=self.chaos_token_address,
            token_burner=self.token_burner_address,
            agent_registry=self.agent_registry_address,
            mining_engine=self.mining_engine_address,
            era_manager=self.era_manager_address,
            zone_manager=self.zone_manager_address,
            cosmic_engine=self.cosmic_engine_address,
            rig_factory=self.rig_factory_address,
            facility_manager=self.facility_manager_address,
            shield_manager=self.shield_manager_address,
        )
