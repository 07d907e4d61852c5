import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./lab_results.db")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    INGEST_JOB_TTL_SECONDS: float = float(os.getenv("INGEST_JOB_TTL_SECONDS", "3600"))
    INGEST_JOB_MAX_ENTRIES: int = int(os.getenv("INGEST_JOB_MAX_ENTRIES", "100"))
    LATEST_RESULTS_LIMIT: int = int(os.getenv("LATEST_RESULTS_LIMIT", "20"))


settings = Settings()
