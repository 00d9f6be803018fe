from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    queue_backend: str = Field("sqs", validation_alias="QUEUE_BACKEND")
    queue_name: str = Field("orders", validation_alias="QUEUE_NAME")
    # SQS only; when empty the URL is resolved from QUEUE_NAME at connect time.
    queue_url: str = Field("", validation_alias="QUEUE_URL")

    max_batch: int = Field(10, gt=0, validation_alias="MAX_BATCH")
    wait_time_seconds: float = Field(20.0, ge=0, validation_alias="WAIT_TIME_SECONDS")
    # Deliveries allowed per logical message. The delivery that reaches this count
    # and still fails is dead-lettered instead of being left for redelivery.
    max_receive_count: int = Field(5, gt=0, validation_alias="MAX_RECEIVE_COUNT")
    visibility_timeout_seconds: float = Field(30.0, gt=0, validation_alias="VISIBILITY_TIMEOUT_SECONDS")
    retention_seconds: float = Field(345_600.0, gt=0, validation_alias="RETENTION_SECONDS")
    max_concurrency: int = Field(1, gt=0, validation_alias="MAX_CONCURRENCY")
    poll_error_backoff_seconds: float = Field(1.0, ge=0, validation_alias="POLL_ERROR_BACKOFF_SECONDS")
    unwrap_sns_envelope: bool = Field(True, validation_alias="UNWRAP_SNS_ENVELOPE")

    dead_letter_backend: str = Field("none", validation_alias="DEAD_LETTER_BACKEND")
    dead_letter_queue_url: str = Field("", validation_alias="DEAD_LETTER_QUEUE_URL")
    dead_letter_collection: str = Field("dead_letters", validation_alias="DEAD_LETTER_COLLECTION")

    repository_backend: str = Field("inmemory", validation_alias="REPOSITORY_BACKEND")

    relay_url: str = Field("", validation_alias="RELAY_URL")
    relay_timeout_seconds: float = Field(10.0, gt=0, validation_alias="RELAY_TIMEOUT_SECONDS")
    relay_user_agent: str = Field("", validation_alias="RELAY_USER_AGENT")

    aws_region: str = Field("us-east-1", validation_alias="AWS_REGION")
    aws_endpoint_url: str = Field("", validation_alias="AWS_ENDPOINT_URL")

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")
    broker_queue_type: str = Field("quorum", validation_alias="BROKER_QUEUE_TYPE")
    broker_poll_interval_seconds: float = Field(0.2, gt=0, validation_alias="BROKER_POLL_INTERVAL_SECONDS")
    queue_max_length: int = Field(0, ge=0, validation_alias="QUEUE_MAX_LENGTH")

    database_host: str = Field("localhost", validation_alias="DATABASE_HOST")
    database_port: int = Field(27017, validation_alias="DATABASE_PORT")
    database_user: str = Field("", validation_alias="DATABASE_USER")
    database_password: str = Field("", validation_alias="DATABASE_PASSWORD")
    database_name: str = Field("orders", validation_alias="DATABASE_NAME")
    database_collection: str = Field("processed_orders", validation_alias="DATABASE_COLLECTION")
    database_connection_timeout_ms: int = Field(5000, validation_alias="DATABASE_CONNECTION_TIMEOUT_MS")

    initial_backoff_seconds: float = Field(0.5, ge=0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(10.0, ge=0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(5, gt=0, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, ge=1, validation_alias="BACKOFF_MULTIPLIER")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(False, validation_alias="LOG_JSON")

    @model_validator(mode="after")
    def _check_backend_requirements(self) -> "Settings":
        self.queue_backend = self.queue_backend.strip().lower()
        self.dead_letter_backend = self.dead_letter_backend.strip().lower()
        self.repository_backend = self.repository_backend.strip().lower()
        if self.dead_letter_backend == "sqs" and not self.dead_letter_queue_url:
            raise ValueError("DEAD_LETTER_QUEUE_URL is required when DEAD_LETTER_BACKEND=sqs")
        self.broker_queue_type = self.broker_queue_type.strip().lower()
        if self.queue_backend == "rabbitmq" and self.broker_queue_type != "quorum":
            # only quorum queues report x-delivery-count; classic ones cap receive_count at 2
            raise ValueError("BROKER_QUEUE_TYPE must be quorum when QUEUE_BACKEND=rabbitmq")
        return self
