from ispsync.models.api_access import ApiKey, ApiKeyScope, ApiLog
from ispsync.models.billing import Bill, BillStatus, Package, Payment, PaymentMethod
from ispsync.models.customer import ConnectionStatus, Customer
from ispsync.models.network import (
    NetworkIntegration,
    NetworkSyncLog,
    NetworkSyncTask,
    ProviderType,
    SyncAction,
    SyncLogStatus,
    SyncMode,
    SyncTaskStatus,
)
from ispsync.models.tenant import Tenant

__all__ = [
    "ApiKey",
    "ApiKeyScope",
    "ApiLog",
    "Bill",
    "BillStatus",
    "ConnectionStatus",
    "Customer",
    "NetworkIntegration",
    "NetworkSyncLog",
    "NetworkSyncTask",
    "Package",
    "Payment",
    "PaymentMethod",
    "ProviderType",
    "SyncAction",
    "SyncLogStatus",
    "SyncMode",
    "SyncTaskStatus",
    "Tenant",
]
