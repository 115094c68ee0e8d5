import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    FOUNDRY_URL: str = os.getenv("FOUNDRY_URL", "http://localhost:30000")
    FOUNDRY_API_KEY: str = os.getenv("FOUNDRY_API_KEY", "")
    FOUNDRY_TIMEOUT: float = float(os.getenv("FOUNDRY_TIMEOUT", "30"))
    SYSTEM_ID: str = os.getenv("SYSTEM_ID", "shadowdark")
    PACKS_DIR: str = os.getenv(
        "PACKS_DIR", os.path.join(os.path.dirname(__file__), "data", "packs")
    )
    DB_PATH: str = os.getenv("DB_PATH", "data/levelup.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    MAX_REROLL_ATTEMPTS: int = int(os.getenv("MAX_REROLL_ATTEMPTS", "5"))


settings = Settings()
