# po_drafter/config.py
from dataclasses import dataclass, field
import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Загружаем .env
load_dotenv()


@dataclass
class LLMApiConfig:
    """
    Конфиг LLM-провайдера (OpenAI-совместимый chat/completions).
    Ретраев здесь нет намеренно: решение о повторе принимает вызывающий код.
    """
    provider: str = "openai"
    base_url: str = field(default_factory=lambda: os.getenv("PO_LLM_BASE_URL", "https://api.openai.com/v1"))
    api_key_env_var: str = "PO_LLM_API_KEY"
    timeout_seconds: float = 60.0
    model: str = field(default_factory=lambda: os.getenv("PO_LLM_MODEL", "gpt-4o-mini"))
    endpoint: str = "/chat/completions"
    temperature: float = 0.0


@dataclass
class DraftConfig:
    # Порог уверенности, ниже — поле обязано попасть в uncertain_fields и в вопрос
    confidence_threshold: float = 0.8
    # Минимальная уверенность позиции после того, как ответ пользователя закрыл поле
    resolved_confidence: float = 0.9
    # Ограничения на текст запроса
    min_request_length: int = 1
    max_request_length: int = 5000
    default_currency: str = "GBP"


@dataclass
class DatabaseConfig:
    url: str = field(default_factory=lambda: os.getenv("PO_DATABASE_URL", "sqlite:///po_drafter.db"))
    echo: bool = False


@dataclass
class LoggingConfig:
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class AppConfig:
    llm: LLMApiConfig = field(default_factory=LLMApiConfig)
    draft: DraftConfig = field(default_factory=DraftConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Глобальный объект конфига, который можно импортировать как `from po_drafter.config import config`
config = AppConfig()


def configure_logging(level: Optional[str] = None) -> None:
    """Базовая настройка логирования для скриптов (уровень из LOG_LEVEL)."""
    resolved_level = (level or config.logging.level).upper()
    logging.basicConfig(level=resolved_level, format=config.logging.format)
