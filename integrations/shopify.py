"""
Shopify order source.

Fetches a customer's complete order history from the Shopify Admin REST API
and hands it over as validated Order models.
"""

import time
from typing import Callable, Optional

import requests
import structlog
from pydantic import BaseModel

from config import get_supabase_client, settings
from models.order import Order
from services.order_normalizer import coerce_orders
from exceptions import (
    DatabaseError,
    IntegrationNotConnectedError,
    UpstreamFetchError,
    UpstreamRateLimitError,
)

logger = structlog.get_logger(__name__)

ORDER_FIELDS = "id,order_number,created_at,customer,line_items"


class ShopifyCredentials(BaseModel):
    """Shop domain plus Admin API token."""
    shop: str
    access_token: str


def get_shopify_credentials(organization_id: str) -> ShopifyCredentials:
    """
    Read the organization's connected Shopify integration.

    Raises:
        IntegrationNotConnectedError: No connected Shopify integration
    """
    try:
        result = (
            get_supabase_client().table("integrations")
            .select("credentials_encrypted")
            .eq("organization_id", organization_id)
            .eq("type", "shopify")
            .eq("connected", True)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error("get_shopify_credentials_failed", organization_id=organization_id, error=str(e))
        raise DatabaseError("select", str(e))

    credentials = (result.data[0].get("credentials_encrypted") or {}) if result.data else {}
    if not credentials.get("shop") or not credentials.get("access_token"):
        logger.warning("shopify_not_connected", organization_id=organization_id)
        raise IntegrationNotConnectedError("shopify")

    return ShopifyCredentials(shop=credentials["shop"], access_token=credentials["access_token"])


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header, or None when absent/unparseable."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


def to_order_payload(raw: dict) -> dict:
    """Map a Shopify order JSON object onto the Order shape."""
    customer = raw.get("customer") or {}
    return {
        "order_id": str(raw.get("id") or ""),
        "order_number": raw.get("order_number"),
        "created_at": raw.get("created_at"),
        "customer_id": str(customer["id"]) if customer.get("id") else None,
        "customer_email": customer.get("email") or raw.get("email"),
        "line_items": [
            {
                "sku": item.get("sku"),
                "product_name": item.get("name") or item.get("title"),
                "variant_title": item.get("variant_title"),
                "quantity": item.get("quantity") or 1,
            }
            for item in raw.get("line_items") or []
        ],
    }


class ShopifyOrderSource:
    """
    Order history client for one shop.

    Shopify's REST limit is about 2 calls per second: pages are paced with
    shopify_page_delay_seconds, and a 429 waits for Retry-After (or the fixed
    upstream_rate_limit_delay_seconds) before the same request is sent again.
    """

    def __init__(
        self,
        credentials: ShopifyCredentials,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.credentials = credentials
        self.session = session or requests.Session()
        self.sleep = sleep
        self.base_url = f"https://{credentials.shop}/admin/api/{settings.shopify_api_version}"
        self.headers = {
            "X-Shopify-Access-Token": credentials.access_token,
            "Content-Type": "application/json",
        }

    def fetch_orders(self, customer_id: Optional[str] = None, email: Optional[str] = None) -> list[Order]:
        """
        Every order of a customer, any status, all pages.

        Customer ID is preferred over email when both are given.

        Raises:
            UpstreamFetchError: Request failed or returned an error status
            UpstreamRateLimitError: Still throttled after all retries
        """
        if not customer_id and not email:
            raise UpstreamFetchError("Subscriber has no Shopify customer ID or email")

        params = {"status": "any", "limit": settings.shopify_page_size, "fields": ORDER_FIELDS}
        if customer_id:
            params["customer_id"] = customer_id
        else:
            params["email"] = email

        url: Optional[str] = f"{self.base_url}/orders.json"
        raw_orders: list[dict] = []
        pages = 0

        while url:
            if pages:
                self.sleep(settings.shopify_page_delay_seconds)

            response = self._get(url, params)
            pages += 1

            try:
                raw_orders.extend(response.json().get("orders") or [])
            except ValueError as e:
                raise UpstreamFetchError("Shopify returned invalid JSON", status=response.status_code) from e

            # Next-page URLs already carry page_info and limit
            url = response.links.get("next", {}).get("url")
            params = None

        logger.info(
            "shopify_orders_fetched",
            shop=self.credentials.shop,
            by="customer_id" if customer_id else "email",
            orders=len(raw_orders),
            pages=pages
        )

        return coerce_orders(to_order_payload(raw) for raw in raw_orders)

    def _get(self, url: str, params: Optional[dict]) -> requests.Response:
        attempts = 0

        while True:
            attempts += 1
            try:
                response = self.session.get(
                    url,
                    params=params,
                    headers=self.headers,
                    timeout=settings.shopify_request_timeout_seconds
                )
            except requests.RequestException as e:
                logger.error("shopify_request_failed", url=url, error=str(e))
                raise UpstreamFetchError(f"Shopify request failed: {e}") from e

            if response.status_code == 429:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if attempts > settings.upstream_max_retries:
                    logger.error("shopify_rate_limit_exhausted", attempts=attempts, retry_after=retry_after)
                    raise UpstreamRateLimitError(attempts, retry_after)

                wait = retry_after if retry_after is not None else settings.upstream_rate_limit_delay_seconds
                logger.warning("shopify_rate_limited", attempt=attempts, wait_seconds=wait)
                self.sleep(wait)
                continue

            if response.status_code >= 400:
                logger.error("shopify_api_error", status=response.status_code, url=url)
                raise UpstreamFetchError(
                    f"Shopify API error: {response.status_code}",
                    status=response.status_code,
                    details={"body": response.text[:500]}
                )

            return response


def get_order_source(organization_id: str) -> ShopifyOrderSource:
    """Order source for an organization's connected shop."""
    return ShopifyOrderSource(get_shopify_credentials(organization_id))
