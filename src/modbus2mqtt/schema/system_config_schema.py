from pydantic import BaseModel, ConfigDict, Field, field_validator

from modbus2mqtt.model.enum.definition_enum import BitFieldEmitPolicy, DuplicatePolicy


class PathsConfig(BaseModel):
    """Path configuration"""

    DEFINITIONS: str = Field(default="res/definitions.json", description="Definition records (JSON)")
    MODBUS_DEVICE: str = Field(default="res/modbus_device.yml", description="Bus and device YAML")
    LOG_DIR: str = Field(default="logs", description="Log directory")


class LoggingConfig(BaseModel):
    LEVEL: str = Field(default="INFO", description="DEBUG / INFO / WARNING / ERROR")
    TO_FILE: bool = Field(default=False, description="Also write a daily rotating log file")
    BACKUP_COUNT: int = Field(default=7, ge=0)

    @field_validator("LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class MqttConfig(BaseModel):
    """MQTT broker connection; HOST/USERNAME/PASSWORD usually come from .env via ${VAR:-default}"""

    HOST: str = Field(default="localhost")
    PORT: int = Field(default=1883, ge=1, le=65535)
    CLIENT_ID: str = Field(default="modbus2mqtt")
    USERNAME: str | None = None
    PASSWORD: str | None = None
    TOPIC_PREFIX: str = Field(default="", description="Prepended to every definition topic")
    QOS: int = Field(default=0, ge=0, le=2)
    RETAIN: bool = Field(default=False)
    KEEPALIVE: int = Field(default=60, ge=1)


class PollerConfig(BaseModel):
    TRANSACTION_TIMEOUT_SEC: float = Field(default=3.0, gt=0, le=60, description="Per-read timeout seconds")
    BACKOFF_SKIP_INTERVALS: int = Field(default=1, ge=0, description="Intervals skipped after a failed read")
    BIT_FIELD_EMIT_POLICY: BitFieldEmitPolicy = Field(default=BitFieldEmitPolicy.ON_FIELD_CHANGE)

    @field_validator("BIT_FIELD_EMIT_POLICY", mode="before")
    @classmethod
    def _normalize_policy(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class SystemConfig(BaseModel):
    """System configuration (full)"""

    model_config = ConfigDict(extra="allow")

    MQTT: MqttConfig = Field(default_factory=MqttConfig)
    POLLER: PollerConfig = Field(default_factory=PollerConfig)
    DUPLICATE_POLICY: DuplicatePolicy = Field(default=DuplicatePolicy.ADDRESS_AND_KIND)
    PUBSUB_QUEUE_MAXSIZE: int = Field(default=1000, ge=1, le=100_000)
    PATHS: PathsConfig = Field(default_factory=PathsConfig)
    LOGGING: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("DUPLICATE_POLICY", mode="before")
    @classmethod
    def _normalize_duplicate_policy(cls, v):
        return v.strip().lower() if isinstance(v, str) else v
