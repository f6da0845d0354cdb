"""
订单服务配置

所有配置来自环境变量或项目根目录的 .env 文件（pydantic-settings）：
- 数据库 / Redis 连接
- 下单参数（税率、事务超时、订单号重试）
- PayMongo 网关与 webhook 签名
- 支付对账任务周期
"""
import secrets
import warnings
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    HttpUrl,
    PostgresDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """BACKEND_CORS_ORIGINS 支持逗号分隔字符串或 JSON 列表"""
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """环境变量优先于 .env，.env 优先于默认值"""
    model_config = SettingsConfigDict(
        # backend/ 的上一级
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（默认随机生成）
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str
    SENTRY_DSN: HttpUrl | None = None

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（支付对账任务的分布式锁）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # 下单配置
    ORDER_TAX_RATE: Decimal = Decimal("0.12")  # 增值税率（按小计计算）
    ORDER_TX_TIMEOUT_MS: int = 5000  # 下单/状态变更事务超时（毫秒，仅 PostgreSQL 生效）
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3  # 订单号冲突时的最大重试次数
    # True: gcash/maya 订单创建后保持 pending，等待支付回调确认
    # False: 与原系统一致，非 COD 订单创建即 completed
    ORDER_SETTLE_ON_WEBHOOK: bool = False

    # PayMongo 支付网关配置
    PAYMONGO_MOCK: bool = True  # 是否使用模拟模式（本地开发时）
    PAYMONGO_BASE_URL: str = "https://api.paymongo.com/v1"
    PAYMONGO_SECRET_KEY: str | None = None  # Basic 认证使用的 secret key
    PAYMONGO_WEBHOOK_SECRET: str | None = None  # Webhook 签名密钥
    PAYMONGO_WEBHOOK_TOLERANCE_SECONDS: int = 300  # 签名时间戳允许的偏差
    PAYMONGO_TIMEOUT_SECONDS: float = 30.0
    PAYMONGO_MIN_AMOUNT: Decimal = Decimal("20.00")  # 网关最低收款金额
    PAYMONGO_CURRENCY: str = "PHP"
    PAYMENT_SUCCESS_URL: str = "http://localhost:5173/payment/success"
    PAYMENT_CANCEL_URL: str = "http://localhost:5173/payment/fail"
    PAYMENT_STATEMENT_DESCRIPTOR: str = "TILE DEPOT"

    # 支付对账任务
    PAYMENT_SWEEP_INTERVAL_MINUTES: int = 5
    PAYMENT_SWEEP_GRACE_MINUTES: int = 10  # 超过该时长仍未支付的会话才会主动查询

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """确保敏感配置不使用默认值，且非本地环境必须配置 webhook 签名密钥"""
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("PAYMONGO_WEBHOOK_SECRET", self.PAYMONGO_WEBHOOK_SECRET)

        if self.ENVIRONMENT != "local" and not self.PAYMONGO_WEBHOOK_SECRET:
            raise ValueError("PAYMONGO_WEBHOOK_SECRET must be set outside local environment.")

        return self


settings = Settings()  # type: ignore
