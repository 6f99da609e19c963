# Import the declarative base
from app.db.base import Base

# Import all models for Alembic/SQLAlchemy discovery
# Note: These imports are required so that they register themselves on Base.metadata
from app.models.purchase_order import PurchaseOrderHeader, PurchaseOrderItem
from app.models.shipment import (
    Shipment,
    ShipmentContainer,
    ShipmentTemperatureLogger,
)
from app.models.doc_lookups import DocumentTypeLookup
from app.models.document import (
    ShipmentDocumentRequirement,
    ShipmentFile,
    StageDocumentRequirement,
)
from app.models.allocation import ShipmentPoItemAllocation
from app.models.history import History, ShipmentStageHistory

# This allows Alembic's env.py to simply do: "from app.models import Base"
# and have access to the metadata for all tables.
