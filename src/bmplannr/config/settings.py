from dataclasses import dataclass
import os
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")

    appwrite_grades_collection_id: str = os.getenv("APPWRITE_GRADES_COLLECTION_ID", "grades")
    appwrite_settings_collection_id: str = os.getenv("APPWRITE_SETTINGS_COLLECTION_ID", "bm_settings")
    appwrite_tests_collection_id: str = os.getenv("APPWRITE_TESTS_COLLECTION_ID", "scheduled_tests")

    store_backend: str = os.getenv("BMPLANNR_STORE", "sqlite").strip().lower()
    sqlite_path: str = os.getenv("BMPLANNR_SQLITE_PATH", "bmplannr.db")
    log_level: str = os.getenv("BMPLANNR_LOG_LEVEL", "INFO").upper()

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200,http://127.0.0.1:4200")
    )
    cors_allow_origin_regex: str = os.getenv(
        "CORS_ALLOW_ORIGIN_REGEX",
        r"^https?:\/\/(localhost|127\.0\.0\.1)(:\d+)?$",
    )


settings = Settings()
