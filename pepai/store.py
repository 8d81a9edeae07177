"""
Drill Store - Supabase-backed persistence.

Tables used:

    drills              saved drill history, one row per save
    users               billing profile per user
    shared_sessions     sessions behind short share ids
    products / prices   catalogue synced from the payment provider
    subscriptions       subscription rows written by the payment provider
    payments            payment rows written by the payment provider
    checkout_sessions   checkout requests, completed with a ``url`` by
                        the payment provider

Every read/write failure is logged and re-raised as PersistenceError.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from supabase import create_client

from .config import Settings
from .errors import ConfigurationError, NotFoundError, PersistenceError
from .normalizer import restore_drill
from .schema import BillingProfile, Drill, Session, new_id

logger = logging.getLogger(__name__)


DRILLS_TABLE = "drills"
USERS_TABLE = "users"
SHARED_SESSIONS_TABLE = "shared_sessions"
PRODUCTS_TABLE = "products"
PRICES_TABLE = "prices"
SUBSCRIPTIONS_TABLE = "subscriptions"
PAYMENTS_TABLE = "payments"
CHECKOUT_SESSIONS_TABLE = "checkout_sessions"

SHARE_ID_BYTES = 6

PROFILE_COLUMNS = ("credits", "pep_points", "can_save", "can_export", "tier")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def product_id_of(record: Dict[str, Any]) -> Optional[str]:
    """
    Product id referenced by a subscription or payment row.

    Taken from ``product`` (a string or an object with ``id``), falling back
    to ``items[0].price.product``.
    """
    product = record.get("product")
    if product:
        return product if isinstance(product, str) else product.get("id")

    items = record.get("items") or []
    if items and isinstance(items[0], dict):
        price = items[0].get("price")
        if isinstance(price, dict) and price.get("product"):
            product = price["product"]
            return product if isinstance(product, str) else product.get("id")
    return None


def _price_sort_key(price: dict):
    # yearly recurring plans first
    yearly = price.get("type") == "recurring" and price.get("interval") == "year"
    return (0 if yearly else 1, price.get("unit_amount") or 0)


class DrillStore:
    """
    Thin repository over the Supabase client.

    Example:
        store = DrillStore.from_settings(Settings.from_env())
        new_id = store.save_drill("user-1", drill)
        history = store.get_user_drills("user-1")
    """

    def __init__(
        self,
        client,
        share_base_url: str = "http://localhost:3000",
        checkout_timeout: float = 30.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.share_base_url = share_base_url.rstrip("/")
        self.checkout_timeout = checkout_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "DrillStore":
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_KEY must be set",
                user_message="The drill library is not configured on this server.",
            )
        client = create_client(settings.supabase_url, settings.supabase_key)
        return cls(client, share_base_url=settings.public_url)

    def _run(self, action: str, query) -> List[dict]:
        """Execute a query, mapping client failures to PersistenceError"""
        try:
            result = query.execute()
        except Exception as e:
            logger.error("Store error while %s: %s", action, e)
            raise PersistenceError(f"Failed {action}: {e}") from e
        return result.data or []

    # --------------------------------------------------------
    # Drill history
    # --------------------------------------------------------

    def _drill_row(self, user_id: str, drill: Drill) -> dict:
        # History is append-only: every save is a new row with a new id
        drill_id = new_id()
        data = drill.to_dict()
        data["id"] = drill_id
        now = utc_now()
        return {
            "id": drill_id,
            "user_id": user_id,
            "data": data,
            "created_at": now,
            "updated_at": now,
        }

    def save_drill(self, user_id: str, drill: Drill) -> str:
        """Save a drill as a new history row and return its new id"""
        row = self._drill_row(user_id, drill)
        self._run("saving drill", self.client.table(DRILLS_TABLE).insert(row))
        logger.info("Saved drill %s for user %s", row["id"], user_id)
        return row["id"]

    def save_drills(self, user_id: str, drills: List[Drill]) -> List[str]:
        """Save several drills in one insert"""
        if not drills:
            return []
        rows = [self._drill_row(user_id, d) for d in drills]
        self._run("saving drills", self.client.table(DRILLS_TABLE).insert(rows))
        logger.info("Saved %d drills for user %s", len(rows), user_id)
        return [row["id"] for row in rows]

    def get_user_drills(self, user_id: str) -> List[Drill]:
        """History for a user, newest first"""
        rows = self._run(
            "loading drills",
            self.client.table(DRILLS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True),
        )
        drills = []
        for row in rows:
            data = dict(row.get("data") or {})
            data["id"] = row["id"]
            # stored documents may predate the categories list
            drills.append(restore_drill(data))
        return drills

    # --------------------------------------------------------
    # Users & billing profiles
    # --------------------------------------------------------

    def _get_user_row(self, user_id: str) -> Optional[dict]:
        rows = self._run(
            "loading user",
            self.client.table(USERS_TABLE).select("*").eq("id", user_id).limit(1),
        )
        return rows[0] if rows else None

    def ensure_user_exists(self, user_id: str, email: Optional[str] = None) -> None:
        if self._get_user_row(user_id) is not None:
            return
        self._run(
            "creating user",
            self.client.table(USERS_TABLE).insert({
                "id": user_id,
                "email": email or "",
                "created_at": utc_now(),
            }),
        )
        logger.info("Created user record %s", user_id)

    def get_profile(self, user_id: str) -> BillingProfile:
        """Billing profile, or the free-tier defaults if none exists yet"""
        row = self._get_user_row(user_id)
        if row is None:
            return BillingProfile()
        return BillingProfile.model_validate(
            {key: row.get(key) for key in PROFILE_COLUMNS if key in row}
        )

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the user's row, creating it if missing"""
        row = {"id": user_id, **fields, "last_updated": utc_now()}
        self._run("updating profile", self.client.table(USERS_TABLE).upsert(row))

    def add_pep_points(self, user_id: str, amount: int) -> int:
        """Increment pep points and return the new balance"""
        balance = self.get_profile(user_id).pep_points + amount
        self.update_profile(user_id, {"pep_points": balance})
        return balance

    # --------------------------------------------------------
    # Sharing
    # --------------------------------------------------------

    def share_url(self, share_id: str) -> str:
        return f"{self.share_base_url}/share?id={share_id}"

    def share_session(self, session: Session) -> str:
        """Store a session snapshot under a fresh short id"""
        share_id = secrets.token_urlsafe(SHARE_ID_BYTES)
        self._run(
            "sharing session",
            self.client.table(SHARED_SESSIONS_TABLE).insert({
                "id": share_id,
                "session": session.to_dict(),
                "created_at": utc_now(),
            }),
        )
        logger.info("Shared session %s as %s", session.id, share_id)
        return share_id

    def get_shared_session(self, share_id: str) -> Session:
        rows = self._run(
            "loading shared session",
            self.client.table(SHARED_SESSIONS_TABLE).select("*").eq("id", share_id).limit(1),
        )
        if not rows:
            raise NotFoundError(f"Shared session {share_id} not found", user_message="Session not found.")
        data = dict(rows[0].get("session") or {})
        data["drills"] = [restore_drill(d).to_dict() for d in data.get("drills") or []]
        return Session.model_validate(data)

    # --------------------------------------------------------
    # Catalogue, subscriptions, payments
    # --------------------------------------------------------

    def get_product(self, product_id: str) -> Optional[dict]:
        rows = self._run(
            "loading product",
            self.client.table(PRODUCTS_TABLE).select("*").eq("id", product_id).limit(1),
        )
        return rows[0] if rows else None

    def get_active_products_with_prices(self) -> List[dict]:
        products = self._run(
            "loading products",
            self.client.table(PRODUCTS_TABLE).select("*").eq("active", True),
        )
        prices = self._run(
            "loading prices",
            self.client.table(PRICES_TABLE).select("*").eq("active", True),
        )
        catalogue = []
        for product in products:
            own = [p for p in prices if p.get("product_id") == product["id"]]
            catalogue.append({
                "id": product["id"],
                "active": True,
                "name": product.get("name", ""),
                "description": product.get("description"),
                "images": product.get("images") or [],
                "metadata": product.get("metadata") or {},
                "prices": sorted(own, key=_price_sort_key),
            })
        return catalogue

    def get_active_subscription(self, user_id: str) -> Optional[dict]:
        rows = self._run(
            "loading subscription",
            self.client.table(SUBSCRIPTIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("status", "active")
            .limit(1),
        )
        return rows[0] if rows else None

    def get_subscription(self, user_id: str, subscription_id: str) -> Optional[dict]:
        rows = self._run(
            "loading subscription",
            self.client.table(SUBSCRIPTIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("id", subscription_id)
            .limit(1),
        )
        return rows[0] if rows else None

    def get_payment(self, user_id: str, payment_id: str) -> Optional[dict]:
        rows = self._run(
            "loading payment",
            self.client.table(PAYMENTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("id", payment_id)
            .limit(1),
        )
        return rows[0] if rows else None

    def create_checkout_session(
        self,
        user_id: str,
        price_id: str,
        mode: str = "subscription",
        metadata: Optional[Dict[str, Any]] = None,
        return_url: Optional[str] = None,
    ) -> str:
        """
        Request a checkout and wait for the payment provider to attach a URL.

        Raises:
            PersistenceError: the provider reported an error or never answered
        """
        session_id = new_id()
        origin = return_url or self.share_base_url
        self._run(
            "creating checkout session",
            self.client.table(CHECKOUT_SESSIONS_TABLE).insert({
                "id": session_id,
                "user_id": user_id,
                "price": price_id,
                "mode": mode,
                "metadata": metadata or {},
                "success_url": origin,
                "cancel_url": origin,
                "created_at": utc_now(),
            }),
        )

        waited = 0.0
        while waited <= self.checkout_timeout:
            rows = self._run(
                "polling checkout session",
                self.client.table(CHECKOUT_SESSIONS_TABLE).select("*").eq("id", session_id).limit(1),
            )
            row = rows[0] if rows else {}
            if row.get("url"):
                return row["url"]
            if row.get("error"):
                error = row["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                logger.error("Checkout session %s failed: %s", session_id, message)
                raise PersistenceError(message, user_message=message)
            self.sleep(self.poll_interval)
            waited += self.poll_interval

        logger.error("Checkout session %s timed out", session_id)
        raise PersistenceError(
            f"Checkout session {session_id} timed out",
            user_message="Checkout is taking longer than expected. Try again.",
        )
