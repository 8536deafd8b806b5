import httpx
from loguru import logger

from kincare.billing.catalog import get_package, get_plan
from kincare.errors import DependencyUnavailable
from kincare.models.schemas import CheckoutSession

DODO_BASE_URLS = {
    "test_mode": "https://test.dodopayments.com",
    "live_mode": "https://live.dodopayments.com",
}


class CheckoutGateway:
    """Creates hosted checkout sessions at Dodo Payments.

    Metadata on the session (userId, packageId, credits / planId) comes back on
    the payment webhooks and is what the reconciler credits against.
    """

    def __init__(
        self,
        api_key: str,
        products: dict[str, str],
        environment: str = "test_mode",
        return_url: str = "http://localhost:3000",
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.products = products
        self.return_url = return_url.rstrip("/")
        self.client = client or httpx.Client(
            base_url=DODO_BASE_URLS.get(environment, DODO_BASE_URLS["test_mode"]),
            timeout=10.0,
        )

    @classmethod
    def from_settings(cls, settings) -> "CheckoutGateway":
        return cls(
            api_key=settings.dodo_api_key,
            products={
                "try_it_out": settings.dodo_product_try_it_out,
                "monthly_care": settings.dodo_product_monthly_care,
                "yearly_care": settings.dodo_product_yearly_care,
                "care_plus": settings.dodo_product_care_plus,
            },
            environment=settings.dodo_environment,
            return_url=settings.frontend_url,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def purchase(self, user_id: str, package_id: str, email: str | None = None, name: str | None = None) -> CheckoutSession:
        package = get_package(package_id)
        return self._create(
            product_id=self.products[package.id],
            return_path="/credits/success",
            metadata={"userId": user_id, "packageId": package.id, "credits": str(package.credits)},
            email=email,
            name=name,
        )

    def subscribe(self, user_id: str, plan_id: str, email: str | None = None, name: str | None = None) -> CheckoutSession:
        plan = get_plan(plan_id)
        return self._create(
            product_id=self.products[plan.id],
            return_path="/credits/success?subscription=true",
            metadata={"userId": user_id, "planId": plan.id, "type": "subscription"},
            email=email,
            name=name,
        )

    def _create(self, product_id: str, return_path: str, metadata: dict, email: str | None, name: str | None) -> CheckoutSession:
        if not self.configured:
            raise DependencyUnavailable("Payment provider is not configured")

        try:
            response = self.client.post(
                "/checkouts",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "product_cart": [{"product_id": product_id, "quantity": 1}],
                    "customer": {
                        "email": email or "customer@example.com",
                        "name": name or "KinCare User",
                    },
                    "return_url": f"{self.return_url}{return_path}",
                    "metadata": metadata,
                },
            )
            response.raise_for_status()
            body = response.json()
            session = CheckoutSession(checkout_url=body["checkout_url"], session_id=body["session_id"])
        except httpx.HTTPError as e:
            logger.error("Failed to create checkout session: {}", e)
            raise DependencyUnavailable("Payment provider unavailable") from e
        except (KeyError, ValueError) as e:
            logger.error("Unexpected checkout response: {}", e)
            raise DependencyUnavailable("Payment provider returned an unexpected response") from e

        logger.info("Checkout session {} created for {} ({})", session.session_id, metadata["userId"], product_id)
        return session

    def close(self) -> None:
        self.client.close()
