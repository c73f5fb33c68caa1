import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()


def _csv(value: str) -> List[str]:
    return [v.strip().lower() for v in value.split(",") if v.strip()]


class Settings(BaseModel):
    """Application settings loaded from environment: OpenAI models, Qdrant, database URL, temp root, and the job/indexing constants (batch size, retention, commit cap).
    Why available: Single source of configuration so the queue, pipelines, and routes agree on limits and locations."""
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    qdrant_url: str = os.getenv("QDRANT_URL", "http://localhost:6333")
    qdrant_collection: str = os.getenv("QDRANT_COLLECTION", "repo_code")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    chat_model: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    chat_temperature: float = float(os.getenv("CHAT_TEMPERATURE", "0.3"))
    whisper_model: str = os.getenv("WHISPER_MODEL", "whisper-1")
    whisper_language: str = os.getenv("WHISPER_LANGUAGE", "en")
    audio_sample_rate: int = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///" + os.path.join(os.getcwd(), "data", "app.db"))
    temp_root: str = os.getenv("TEMP_ROOT", os.path.join(os.getcwd(), "temp"))
    git_binary: str = os.getenv("GIT_BINARY", "git")
    ffmpeg_binary: str = os.getenv("FFMPEG_BINARY", "ffmpeg")

    embedding_batch_size: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "50"))
    job_retention_seconds: int = int(os.getenv("JOB_RETENTION_SECONDS", "300"))  # 5 minutes
    commit_log_limit: int = int(os.getenv("COMMIT_LOG_LIMIT", "50"))
    retrieve_top_k: int = int(os.getenv("RETRIEVE_TOP_K", "5"))
    search_cache_ttl_seconds: int = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", "300"))
    max_audio_mb: int = int(os.getenv("MAX_AUDIO_MB", "25"))
    allowed_audio_formats: List[str] = _csv(os.getenv("ALLOWED_AUDIO_FORMATS", ".wav,.mp3,.m4a,.flac,.ogg"))

    prompt_version: str = os.getenv("PROMPT_VERSION", "v1")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator(
        "embedding_batch_size",
        "job_retention_seconds",
        "commit_log_limit",
        "retrieve_top_k",
        "max_audio_mb",
        "audio_sample_rate",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Ensure batch size, retention, commit cap, top_k, upload size and sample rate are positive. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @property
    def max_audio_bytes(self) -> int:
        return self.max_audio_mb * 1024 * 1024

    @property
    def repos_root(self) -> str:
        return os.path.join(self.temp_root, "repos")

    @property
    def meetings_root(self) -> str:
        return os.path.join(self.temp_root, "meetings")


settings = Settings()
