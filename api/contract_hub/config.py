import os
import tempfile
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _csv(value: Optional[str]) -> Tuple[str, ...]:
    return tuple(part.strip() for part in (value or "").split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("./data")
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: Tuple[str, ...] = ("*",)

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    platform_fee_rate: Decimal = Decimal("0.029")
    onboarding_refresh_url: str = "http://localhost:5173/settings/payments"
    onboarding_return_url: str = "http://localhost:5173/settings/payments"
    brand_email: str = "brand@example.com"
    brand_name: str = "Brand"

    adobe_access_token: str = ""
    adobe_base_uris_url: str = "https://api.adobesign.com/api/rest/v6/baseUris"
    adobe_signer_emails: Tuple[str, ...] = ()
    adobe_agreement_name: str = "Agreement to be signed"
    adobe_webhook_url: str = ""

    google_service_account_file: Path = Path("./service-account-key.json")
    google_drive_folder_id: str = ""
    google_share_domain: str = ""
    contract_anchor_text: str = "Accept changes and mark as ready for review by Fohr"

    collaborator_timeout: float = 60.0
    render_timeout: float = 300.0
    cleanup_deletes_per_second: float = 2.0

    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "contract-hub"
    redis_url: str = "redis://redis:6379/0"
    worker_queue: str = "exports"

    @property
    def contracts_file(self) -> Path:
        return self.data_dir / "contracts.json"

    @property
    def accounts_file(self) -> Path:
        return self.data_dir / "accounts.json"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.getenv
        return cls(
            data_dir=Path(env("DATA_DIR", "./data")),
            tmp_dir=Path(env("TMP_DIR") or tempfile.gettempdir()),
            log_level=env("LOG_LEVEL", "INFO"),
            log_json=_flag(env("LOG_JSON")),
            cors_origins=_csv(env("CORS_ORIGINS", "*")) or ("*",),
            stripe_secret_key=env("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=env("STRIPE_WEBHOOK_SECRET", ""),
            platform_fee_rate=Decimal(env("PLATFORM_FEE_RATE", "0.029")),
            onboarding_refresh_url=env("ONBOARDING_REFRESH_URL", cls.onboarding_refresh_url),
            onboarding_return_url=env("ONBOARDING_RETURN_URL", cls.onboarding_return_url),
            brand_email=env("BRAND_EMAIL", cls.brand_email),
            brand_name=env("BRAND_NAME", cls.brand_name),
            adobe_access_token=env("ADOBE_SIGN_ACCESS_TOKEN", ""),
            adobe_base_uris_url=env("ADOBE_SIGN_BASE_URIS_URL", cls.adobe_base_uris_url),
            adobe_signer_emails=_csv(env("ADOBE_SIGNER_EMAILS")),
            adobe_agreement_name=env("ADOBE_AGREEMENT_NAME", cls.adobe_agreement_name),
            adobe_webhook_url=env("ADOBE_WEBHOOK_URL", ""),
            google_service_account_file=Path(env("GOOGLE_SERVICE_ACCOUNT_FILE", "./service-account-key.json")),
            google_drive_folder_id=env("GOOGLE_DRIVE_FOLDER_ID", ""),
            google_share_domain=env("GOOGLE_SHARE_DOMAIN", ""),
            contract_anchor_text=env("CONTRACT_ANCHOR_TEXT", cls.contract_anchor_text),
            collaborator_timeout=float(env("COLLABORATOR_TIMEOUT_SECONDS", "60")),
            render_timeout=float(env("RENDER_TIMEOUT_SECONDS", "300")),
            cleanup_deletes_per_second=float(env("CLEANUP_DELETES_PER_SECOND", "2")),
            minio_endpoint=env("MINIO_ENDPOINT", cls.minio_endpoint),
            minio_access_key=env("MINIO_ACCESS_KEY", cls.minio_access_key),
            minio_secret_key=env("MINIO_SECRET_KEY", cls.minio_secret_key),
            minio_bucket=env("MINIO_BUCKET", cls.minio_bucket),
            redis_url=env("REDIS_URL", cls.redis_url),
            worker_queue=env("WORKER_QUEUE", cls.worker_queue),
        )
