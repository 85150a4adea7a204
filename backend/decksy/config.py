from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENVIRONMENT: str = "production"
    DATABASE_URL: Optional[str] = None
    REDIS_URL: Optional[str] = None
    CLASH_ROYALE_API_KEY: Optional[str] = None
    CLASH_ROYALE_API_PROXY: str = "https://proxy.royaleapi.dev"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    INTERNAL_API_TOKEN: Optional[str] = None
    FEEDBACK_USER_AGENT_BLOCKLIST: str = ""

    # Middleware policy for GET routes
    RATE_LIMIT_REQUESTS: int = 60
    RATE_LIMIT_WINDOW_MS: int = 60_000
    RATE_LIMITED_PATHS: List[str] = [
        "/api/v1/recommend",
        "/api/v1/player",
        "/api/v1/battles",
    ]

    class Config:
        env_file = ".env"

    @property
    def async_database_url(self) -> Optional[str]:
        if not self.DATABASE_URL:
            return None
        # Assure-toi que l'URL utilise asyncpg
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.DATABASE_URL

    @property
    def user_agent_blocklist(self) -> List[str]:
        return [
            entry.strip().lower()
            for entry in self.FEEDBACK_USER_AGENT_BLOCKLIST.split(",")
            if entry.strip()
        ]


settings = Settings()
