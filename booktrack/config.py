"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # API
    API_URL = os.getenv("BOOKTRACK_API_URL", "https://backendbooktrack-production.up.railway.app/api")
    DEFAULT_TIMEOUT = float(os.getenv("DEFAULT_TIMEOUT", "10"))

    # Local storage
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "file")
    STORAGE_PATH = os.getenv("STORAGE_PATH", "~/.booktrack/storage.json")

    # Database (postgres storage backend)
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "booktrack")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")

    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
