from .provision import ProvisionStage
from .publish import PublishStage, unique_tag
from .task import CommandTask
from .test import TestStage
from .update_service import UpdateServiceStage

__all__ = [
    "CommandTask",
    "ProvisionStage",
    "PublishStage",
    "TestStage",
    "UpdateServiceStage",
    "unique_tag",
]
