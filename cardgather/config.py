from __future__ import annotations

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings


class SourceConfig(BaseModel):
    """Crawl settings for one upstream source."""

    key: str
    base_url: str
    delay_seconds: float = 2.0
    max_pages: int = 1
    max_detail_pages: int = 20
    fidelity: int = 1


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/cardgather.db"
    log_level: str = "INFO"
    api_key: str = ""
    scan_schedule: str = "02:00"

    user_agent: str = "CardGather/1.0 (+wrestling card aggregator)"
    request_timeout: float = 30.0

    cagematch_base_url: str = "https://www.cagematch.net"
    cagematch_delay_seconds: float = 2.0
    cagematch_max_pages: int = 1
    profightdb_base_url: str = "http://www.profightdb.com"
    profightdb_delay_seconds: float = 2.0
    profightdb_max_pages: int = 5
    max_detail_pages: int = 20
    enabled_sources: list[str] = ["cagematch", "profightdb"]

    # profightdb lists winners and losers in separate columns
    source_fidelity: dict[str, int] = {"profightdb": 2, "cagematch": 1}

    allowed_promotions: list[str] = [
        "wwe", "aew", "njpw", "tna", "roh",
        "stardom", "cmll", "aaa", "gcw", "mlw",
    ]
    lookback_days: int = 183
    lookahead_days: int = 92

    run_timeout_seconds: float = 1800.0
    parallel_sources: bool = True

    @field_validator("cagematch_delay_seconds", "profightdb_delay_seconds")
    @classmethod
    def non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay must be >= 0")
        return v

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "extra": "ignore"}

    def sources(self) -> list[SourceConfig]:
        """Return crawl configs for the enabled sources, in configured order."""
        known = {
            "cagematch": SourceConfig(
                key="cagematch",
                base_url=self.cagematch_base_url,
                delay_seconds=self.cagematch_delay_seconds,
                max_pages=self.cagematch_max_pages,
                max_detail_pages=self.max_detail_pages,
                fidelity=self.source_fidelity.get("cagematch", 1),
            ),
            "profightdb": SourceConfig(
                key="profightdb",
                base_url=self.profightdb_base_url,
                delay_seconds=self.profightdb_delay_seconds,
                max_pages=self.profightdb_max_pages,
                max_detail_pages=self.max_detail_pages,
                fidelity=self.source_fidelity.get("profightdb", 1),
            ),
        }
        return [known[key] for key in self.enabled_sources if key in known]


settings = Settings()
