"""
Runtime settings read from the environment (and a local .env file).

Variables:
- OCEDECLARE_EVALUATOR_URL: Root URL of the evaluation engine
- OCEDECLARE_EVALUATOR_TIMEOUT: Request timeout in seconds
- OCEDECLARE_HOST / OCEDECLARE_PORT: Where the server listens
- OCEDECLARE_CACHE_SIZE: Number of evaluations kept in memory
"""

import os
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    evaluator_url: str = "http://localhost:3000"
    evaluator_timeout: float = 120.0
    host: str = "0.0.0.0"
    port: int = 8000
    cache_size: int = 50

    @classmethod
    def from_env(cls) -> "Settings":
        """Load .env (if present) and build settings, falling back to defaults."""
        load_dotenv()
        defaults = cls()
        try:
            return cls(
                evaluator_url=os.getenv("OCEDECLARE_EVALUATOR_URL", defaults.evaluator_url),
                evaluator_timeout=float(os.getenv("OCEDECLARE_EVALUATOR_TIMEOUT", defaults.evaluator_timeout)),
                host=os.getenv("OCEDECLARE_HOST", defaults.host),
                port=int(os.getenv("OCEDECLARE_PORT", defaults.port)),
                cache_size=int(os.getenv("OCEDECLARE_CACHE_SIZE", defaults.cache_size)),
            )
        except ValueError as exc:
            raise ValueError(f"Invalid OCEDECLARE_* setting: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluator_url": self.evaluator_url,
            "evaluator_timeout": self.evaluator_timeout,
            "host": self.host,
            "port": self.port,
            "cache_size": self.cache_size,
        }
