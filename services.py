"""
Wires the services together around one database handle and one cache.
"""
from pymongo.database import Database

from cache import Cache
from cart import CartManager
from catalog import CatalogService
from config import Settings
from identity import IdentityResolver, TokenVerifier
from notifications import Mailer
from orders import OrderPipeline
from payments import PaymentGateway, PaymentService, PaymentVerifier
from sales import SaleModeController
from uploads import ImageUploader
from users import UserService


class Services:
    def __init__(self, settings: Settings, db: Database, cache: Cache, uploader: ImageUploader,
                 mailer: Mailer, token_verifier: TokenVerifier, gateway: PaymentGateway):
        self.settings = settings
        self.db = db
        self.cache = cache
        self.catalog = CatalogService(db, cache, uploader)
        self.carts = CartManager(db, cache, self.catalog)
        self.payments = PaymentService(gateway, PaymentVerifier(settings.razorpay_key_secret))
        self.orders = OrderPipeline(
            db, self.catalog, self.carts, self.payments.verifier, mailer,
            reprice=settings.reprice_at_checkout,
        )
        self.sales = SaleModeController(db, cache)
        self.users = UserService(db)
        self.identity = IdentityResolver(db, cache, token_verifier, settings.allow_insecure_tokens)

    def is_admin(self, email: str) -> bool:
        return bool(email) and email.lower() in self.settings.admin_emails
