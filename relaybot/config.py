"""
Configuration management for the WhatsApp AI relay bot.
Handles environment variables and configuration validation.
"""
import os
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

SUPPORTED_TRANSPORTS = ("whatsapp", "discord")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when the process configuration is unusable."""
    pass


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Configuration (Required)
    llm_api_key: str = Field(..., repr=False)
    llm_base_url: str = GEMINI_OPENAI_BASE_URL
    llm_model: str = "gemini-2.0-flash"
    llm_system_prompt: Optional[str] = None
    llm_timeout_seconds: float = 30.0
    llm_max_attempts: int = 1
    llm_retry_base_delay: float = 1.0
    llm_retry_max_delay: float = 30.0
    llm_max_tokens: Optional[int] = None

    # Session transport
    transport: str = "whatsapp"

    # WhatsApp Web (Selenium)
    whatsapp_headless: bool = True
    whatsapp_profile_dir: str = "./whatsapp_profile"
    whatsapp_login_timeout: int = 120
    whatsapp_poll_interval: float = 2.0

    # Discord
    discord_bot_token: Optional[str] = Field(None, repr=False)

    # Relay behaviour
    relay_ack_text: str = "AI is Thinking...."
    relay_fallback_text: str = "Sorry, I couldn't process that request."
    relay_command_prefix: str = "/"
    relay_ignore_groups: bool = False
    relay_sender_cooldown_seconds: float = 0.0
    relay_cooldown_text: str = "You're sending messages too quickly. Please wait a moment."
    relay_serialize_per_sender: bool = False
    relay_max_queue_size: int = 1000

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/relaybot.log"

    # Health API Configuration
    health_api_enabled: bool = False
    health_api_host: str = "127.0.0.1"
    health_api_port: int = 8001


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


def validate_configuration(settings: Settings) -> Settings:
    """Validate all configuration settings on startup."""
    if not settings.llm_api_key.strip():
        raise ConfigurationError("LLM_API_KEY is empty")

    transport = settings.transport.lower()
    if transport not in SUPPORTED_TRANSPORTS:
        raise ConfigurationError(f"Unsupported transport: {settings.transport}")

    if transport == "discord" and not settings.discord_bot_token:
        raise ConfigurationError("DISCORD_BOT_TOKEN is required for the discord transport")

    if settings.log_level.upper() not in VALID_LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {settings.log_level}")

    if settings.llm_max_attempts < 1:
        raise ConfigurationError("LLM_MAX_ATTEMPTS must be at least 1")

    for name in ("llm_timeout_seconds", "llm_retry_base_delay", "llm_retry_max_delay",
                 "relay_sender_cooldown_seconds", "whatsapp_poll_interval"):
        if getattr(settings, name) < 0:
            raise ConfigurationError(f"{name.upper()} must not be negative")

    if settings.relay_max_queue_size < 1:
        raise ConfigurationError("RELAY_MAX_QUEUE_SIZE must be at least 1")

    if settings.llm_max_tokens is not None and settings.llm_max_tokens < 1:
        raise ConfigurationError("LLM_MAX_TOKENS must be at least 1")

    # Ensure log directory exists
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    return settings
