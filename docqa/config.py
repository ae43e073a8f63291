from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # Full SQLAlchemy URL wins over the DB_* parts when set
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "docqa"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"

    # Chat provider selection: "openai" or "perplexity"
    LLM_PROVIDER: str = "openai"

    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = 1536

    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_MODEL: str = "sonar"

    # Chunking / retrieval defaults (characters)
    CHUNK_SIZE: int = 512
    CHUNK_OVERLAP: int = 50
    RAG_TOP_K: int = 5
    EXCERPT_CHARS: int = 200
    CONTEXT_PREVIEW_CHARS: int = 500

    LLM_MAX_TOKENS: int = 1000
    LLM_TEMPERATURE: float = 0.7

    # Pacing of upstream calls (seconds)
    EMBED_DELAY_SEC: float = 0.1
    BATCH_DELAY_SEC: float = 1.0
    PROVIDER_TIMEOUT_SEC: float = 60.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

settings = Settings()
