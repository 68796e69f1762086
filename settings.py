from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Azure Speech powers the duplex session and the default batch provider
    azure_speech_key: str | None = Field(default=None, validation_alias="AZURE_SPEECH_KEY")
    azure_speech_region: str | None = Field(default=None, validation_alias="AZURE_SPEECH_REGION")

    # Alternative batch providers
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_transcription_model: str = Field(default="gpt-4o-mini-transcribe", validation_alias="OPENAI_TRANSCRIPTION_MODEL")
    elevenlabs_api_key: str | None = Field(default=None, validation_alias="ELEVENLABS_API_KEY")
    elevenlabs_model: str = Field(default="scribe_v2", validation_alias="ELEVENLABS_MODEL")
    dashscope_api_key: str | None = Field(default=None, validation_alias="DASHSCOPE_API_KEY")
    dashscope_model: str = Field(default="qwen3-asr-flash", validation_alias="DASHSCOPE_MODEL")

    # Recognition languages: the primary one is favoured by language identification
    primary_language: str = Field(default="pt-BR", validation_alias="SPEECH_PRIMARY_LANGUAGE")
    auxiliary_language: str = Field(default="en-US", validation_alias="SPEECH_AUXILIARY_LANGUAGE")
    default_sample_rate: int = Field(default=48000, validation_alias="SPEECH_DEFAULT_SAMPLE_RATE")

    transcription_provider: str = Field(default="azure", validation_alias="TRANSCRIPTION_PROVIDER")
    transcription_hard_timeout_seconds: float = Field(default=45.0, validation_alias="TRANSCRIPTION_HARD_TIMEOUT_SECONDS")

    # Turn responder
    tutor_prompt_id: str | None = Field(default=None, validation_alias="TUTOR_PROMPT_ID")
    tutor_model: str = Field(default="gpt-4.1-mini", validation_alias="TUTOR_MODEL")

    server_host: str = Field(default="0.0.0.0", validation_alias="SERVER_HOST")
    server_port: int = Field(default=3000, validation_alias="SERVER_PORT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def speech_configured(self) -> bool:
        return bool(self.azure_speech_key and self.azure_speech_region)


def get_settings() -> Settings:
    return Settings()
