"""Client settings and logging setup."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel

from parley.provider import OpenAIStreamSource
from parley.transport import SSETransport, Transport

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ClientSettings(BaseModel):
    """Where to stream from and how.

    With ``endpoint_url`` set the client talks SSE to that endpoint;
    otherwise it streams directly from OpenAI using ``model``.
    """

    endpoint_url: str | None = None
    resume_url: str | None = None
    timeout: float = 120.0
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ClientSettings:
        values = {
            "endpoint_url": os.getenv("PARLEY_ENDPOINT_URL"),
            "resume_url": os.getenv("PARLEY_RESUME_URL"),
            "timeout": os.getenv("PARLEY_TIMEOUT"),
            "model": os.getenv("PARLEY_MODEL"),
            "api_key": os.getenv("OPENAI_API_KEY"),
            "log_level": os.getenv("PARLEY_LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})

    def build_transport(self) -> Transport:
        if self.endpoint_url:
            return SSETransport(
                self.endpoint_url,
                resume_url=self.resume_url,
                timeout=self.timeout,
            )
        return OpenAIStreamSource(model=self.model, api_key=self.api_key)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Send parley's log records to stderr and, optionally, a file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )
