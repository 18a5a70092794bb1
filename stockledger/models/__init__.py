from stockledger.models.audit_log import AuditLog
from stockledger.models.location import Location
from stockledger.models.product import Product, ProductVariant
from stockledger.models.inventory import InventoryItem, StockMovement
from stockledger.models.reservation import Reservation
from stockledger.models.transfer import StockTransfer

# Registers the append-only listeners once the mapped classes exist.
import stockledger.db.immutability  # noqa: E402,F401
