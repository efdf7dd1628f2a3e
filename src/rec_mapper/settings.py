from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    cache_db_path: Path = Path('.cache') / 'geocode_cache.duckdb'
    export_path: Path = Path('exports')
    provider: str = 'osm'
    api_key: str | None = None
    user_agent: str = 'RecMapper/1.0 (address mapping)'
    request_timeout_s: float = 10.0
    nominatim_delay_s: float = 1.1
    google_delay_s: float = 0.1
    max_candidates: int = 5
    min_similarity: float = 0.6
    refine_similarity: float = 0.7
    fallback_factor: float = 0.8
    fallback_max_results: int = 500

    class Config:
        env_prefix = "REC_MAPPER_"
        env_file   = ".env"
        extra      = "ignore"

settings = Settings()
