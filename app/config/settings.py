from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class S3Config(BaseSettings):
    """S3 configuration"""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "us-east-1"
    bucket_name: str = "minutes-data-bucket"
    input_prefix: str = "input-data/"
    output_prefix: str = "output-data/"
    work_prefix: str = "work/"

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class TranscribeConfig(BaseSettings):
    """Amazon Transcribe configuration."""

    region: str = "us-east-1"
    language_code: str = "ja-JP"

    model_config = SettingsConfigDict(
        env_prefix="TRANSCRIBE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class ComprehendConfig(BaseSettings):
    """Amazon Comprehend configuration."""

    region: str = "us-east-1"
    language_code: str = "ja"
    data_access_role_arn: str = ""

    model_config = SettingsConfigDict(
        env_prefix="COMPREHEND_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class BedrockConfig(BaseSettings):
    """Amazon Bedrock configuration."""

    region: str = Field(
        default="us-east-1",
        validation_alias="BEDROCK_REGION",
    )
    model_id: str = Field(
        default="amazon.nova-micro-v1:0",
        validation_alias="BEDROCK_MODEL_ID",
    )
    max_tokens: int = Field(
        default=1024,
        validation_alias="BEDROCK_MAX_TOKENS",
        ge=1,
        le=4096,
    )
    temperature: float = Field(
        default=0.2,
        validation_alias="BEDROCK_TEMPERATURE",
        ge=0.0,
        le=1.0,
    )
    top_p: float = Field(
        default=0.9,
        validation_alias="BEDROCK_TOP_P",
        ge=0.0,
        le=1.0,
    )
    api_key: SecretStr | None = Field(
        default=None,
        validation_alias="BEDROCK_API_KEY",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class DynamoConfig(BaseSettings):
    """DynamoDB job table configuration."""

    region: str = "us-east-1"
    table_name: str = "minutes-table"

    model_config = SettingsConfigDict(
        env_prefix="DYNAMO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Retry, polling and timeout policy for the minutes pipeline."""

    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    retry_max_delay: float = Field(default=20.0, ge=0.0)
    poll_base_delay: float = Field(default=5.0, gt=0.0)
    poll_max_interval: float = Field(default=60.0, ge=0.0)
    transcription_timeout: float = Field(
        default=3600.0,
        gt=0.0,
        description="Wall-clock budget in seconds for the transcription stage.",
    )
    sentiment_timeout: float = Field(default=3600.0, gt=0.0)
    summary_timeout: float = Field(default=300.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Meeting Minutes Orchestrator"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/minutes_pipeline.log"

    # S3
    s3: S3Config = Field(default_factory=S3Config)

    # Transcribe
    transcribe: TranscribeConfig = Field(default_factory=TranscribeConfig)

    # Comprehend
    comprehend: ComprehendConfig = Field(default_factory=ComprehendConfig)

    # Bedrock
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)

    # DynamoDB
    dynamo: DynamoConfig = Field(default_factory=DynamoConfig)

    # Pipeline policy
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
