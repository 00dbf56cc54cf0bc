from assetledger.models.asset import Asset, AssetCategory, BusinessUnit
from assetledger.models.execution import (
    AssetDepreciationDetail,
    DepreciationExecution,
    DetailStatus,
    ExecutionStatus,
)
from assetledger.models.ledger import AssetDepreciation
from assetledger.models.lock import ExecutionLock
from assetledger.models.schedule import DepreciationSchedule

__all__ = [
    "BusinessUnit",
    "AssetCategory",
    "Asset",
    "DepreciationSchedule",
    "DepreciationExecution",
    "AssetDepreciationDetail",
    "AssetDepreciation",
    "ExecutionLock",
    "ExecutionStatus",
    "DetailStatus",
]
