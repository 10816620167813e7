from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./partcost.db"
    COMPANY_NAME: str = "Part Price Calculator"
    DEFAULT_CURRENCY: str = "EUR"

    # Open calculator sessions live in memory; idle or surplus ones are dropped unsaved
    CALCULATOR_SESSION_IDLE_MINUTES: int = 120
    CALCULATOR_MAX_SESSIONS: int = 500

    # Named add-ons offered on step 4; anything else is a custom operation
    SECONDARY_OPERATION_PRESETS: list[str] = [
        "Surface protection",
        "Grinding",
        "Engraving",
    ]

    class Config:
        env_file = ".env"


settings = Settings()
