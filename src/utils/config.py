# runtime settings, read from the environment
import os
from dataclasses import dataclass, field
from typing import Tuple


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    supabase_url: str = "https://peemienpknqkrohszcys.supabase.co"
    supabase_anon_key: str = ""
    paystack_public_key: str = ""
    verify_payment_function: str = "verify-payment"

    app_name: str = "ScentsBymotun"
    currency: str = "NGN"
    currency_symbol: str = "₦"

    storage_path: str = "data/storefront.sqlite"
    admin_role: str = "admin"
    image_bucket: str = "products"
    reference_prefix: str = "SBM"
    http_timeout: float = 30.0
    categories: Tuple[str, ...] = field(default=("Men", "Women", "Unisex"))

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", defaults.supabase_url).rstrip("/"),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", defaults.supabase_anon_key),
            paystack_public_key=os.getenv(
                "PAYSTACK_PUBLIC_KEY", defaults.paystack_public_key
            ),
            verify_payment_function=os.getenv(
                "VERIFY_PAYMENT_FUNCTION", defaults.verify_payment_function
            ),
            app_name=os.getenv("STOREFRONT_APP_NAME", defaults.app_name),
            currency=os.getenv("STOREFRONT_CURRENCY", defaults.currency),
            currency_symbol=os.getenv(
                "STOREFRONT_CURRENCY_SYMBOL", defaults.currency_symbol
            ),
            storage_path=os.getenv("STOREFRONT_STORAGE_PATH", defaults.storage_path),
            admin_role=os.getenv("STOREFRONT_ADMIN_ROLE", defaults.admin_role),
            image_bucket=os.getenv("STOREFRONT_IMAGE_BUCKET", defaults.image_bucket),
            reference_prefix=os.getenv(
                "STOREFRONT_REFERENCE_PREFIX", defaults.reference_prefix
            ),
            http_timeout=float(
                os.getenv("STOREFRONT_HTTP_TIMEOUT", defaults.http_timeout)
            ),
            categories=_split_csv(os.getenv("STOREFRONT_CATEGORIES", ""))
            or defaults.categories,
        )

    def edge_function_url(self, name: str) -> str:
        return f"{self.supabase_url}/functions/v1/{name}"
