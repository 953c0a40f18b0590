"""
Shopify Admin GraphQL calls: customer lookup and creation, plus order data.

Lookups never decide eligibility. Any failure is logged and reported as
"no data" so a form submission can still go through.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import requests

from ..config import SHOPIFY_ADMIN_ACCESS_TOKEN, SHOPIFY_API_VERSION

logger = logging.getLogger(__name__)

CUSTOMER_BY_EMAIL_QUERY = """
query getCustomerByEmail($email: String!) {
  customers(first: 1, query: $email) {
    edges {
      node {
        id
        email
        firstName
        lastName
        numberOfOrders
        amountSpent {
          amount
        }
      }
    }
  }
}
"""

CUSTOMER_ORDERS_QUERY = """
query getCustomerOrders($id: ID!) {
  customer(id: $id) {
    numberOfOrders
    amountSpent {
      amount
      currencyCode
    }
  }
}
"""

CUSTOMER_CREATE_MUTATION = """
mutation customerCreate($input: CustomerInput!) {
  customerCreate(input: $input) {
    customer {
      id
      email
      firstName
      lastName
    }
    userErrors {
      field
      message
    }
  }
}
"""

CHALLENGE_CUSTOMER_TAG = "weight-loss-challenge"


class ShopifyError(Exception):
    pass


@dataclass
class ShopifyCustomer:
    id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    orders_count: int
    total_spent: float


def _parse_amount(amount_spent: Optional[dict]) -> float:
    try:
        return float((amount_spent or {}).get("amount") or "0")
    except (TypeError, ValueError):
        return 0.0


class ShopifyAdminClient:
    def __init__(self,
                 access_token: Optional[str] = SHOPIFY_ADMIN_ACCESS_TOKEN,
                 api_version: str = SHOPIFY_API_VERSION,
                 http: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        self.access_token = access_token
        self.api_version = api_version
        self.http = http or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def graphql(self, shop: str, query: str, variables: dict) -> dict:
        response = self.http.post(
            f"https://{shop}/admin/api/{self.api_version}/graphql.json",
            json={"query": query, "variables": variables},
            headers={
                "X-Shopify-Access-Token": self.access_token or "",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            raise ShopifyError(f"Shopify GraphQL errors: {payload['errors']}")
        return payload.get("data") or {}

    def lookup_customer_by_email(self, shop: str, email: str) -> Optional[ShopifyCustomer]:
        if not self.configured:
            logger.warning("Shopify admin token not configured, skipping customer lookup")
            return None

        try:
            data = self.graphql(shop, CUSTOMER_BY_EMAIL_QUERY, {"email": f"email:{email}"})
        except (requests.RequestException, ShopifyError, ValueError) as e:
            logger.warning("Error looking up customer %s on %s: %s", email, shop, e)
            return None

        edges = ((data.get("customers") or {}).get("edges")) or []
        if not edges:
            return None

        node = edges[0]["node"]
        return ShopifyCustomer(
            id=node["id"],
            email=node.get("email") or email,
            first_name=node.get("firstName"),
            last_name=node.get("lastName"),
            orders_count=int(node.get("numberOfOrders") or 0),
            total_spent=_parse_amount(node.get("amountSpent")),
        )

    def get_customer_order_stats(self, shop: str, customer_id: str) -> Optional[Tuple[int, float]]:
        if not self.configured:
            logger.warning("Shopify admin token not configured, skipping order stats")
            return None

        try:
            data = self.graphql(shop, CUSTOMER_ORDERS_QUERY, {"id": customer_id})
        except (requests.RequestException, ShopifyError, ValueError) as e:
            logger.warning("Error getting order stats for %s on %s: %s", customer_id, shop, e)
            return None

        customer = data.get("customer")
        if not customer:
            return None

        return int(customer.get("numberOfOrders") or 0), _parse_amount(customer.get("amountSpent"))

    def create_customer(self, shop: str, email: str, first_name: Optional[str] = None,
                        last_name: Optional[str] = None) -> Optional[ShopifyCustomer]:
        """Creates a tagged customer account. Returns None when Shopify refuses."""
        if not self.configured:
            logger.warning("Shopify admin token not configured, cannot create customer")
            return None

        customer_input = {"email": email, "tags": [CHALLENGE_CUSTOMER_TAG]}
        if first_name:
            customer_input["firstName"] = first_name
        if last_name:
            customer_input["lastName"] = last_name

        try:
            data = self.graphql(shop, CUSTOMER_CREATE_MUTATION, {"input": customer_input})
        except (requests.RequestException, ShopifyError, ValueError) as e:
            logger.warning("Error creating customer %s on %s: %s", email, shop, e)
            return None

        result = data.get("customerCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            logger.warning("Shopify rejected customer %s on %s: %s", email, shop,
                           "; ".join(error.get("message", "") for error in user_errors))
            return None

        node = result.get("customer")
        if not node:
            return None

        logger.info("Created Shopify customer %s for %s", node["id"], email)
        return ShopifyCustomer(
            id=node["id"],
            email=node.get("email") or email,
            first_name=node.get("firstName"),
            last_name=node.get("lastName"),
            orders_count=0,
            total_spent=0.0,
        )


def get_shopify_client() -> ShopifyAdminClient:
    return ShopifyAdminClient()
