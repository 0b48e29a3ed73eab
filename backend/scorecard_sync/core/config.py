from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Scorecard Sync"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "scorecard_sync.db"

    # Scheduling: every cron expression is evaluated in this one zone
    timezone: str = "Africa/Nairobi"

    # DHIS2 (analytics source)
    dhis2_url: str = ""
    dhis2_username: str = ""
    dhis2_password: str = ""
    dhis2_indicator_group: str = "IN_GROUP-SWDeaw0RUyR"

    # ALMA (scorecard destination)
    alma_url: str = ""
    alma_backend: str = ""
    alma_username: str = ""
    alma_password: str = ""

    http_timeout: float = 60.0

    # Server
    host: str = "0.0.0.0"
    port: int = 3003
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "SCORECARD_SYNC_",
    }


settings = Settings()
