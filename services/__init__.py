"""
Business logic services.

Each service handles one part of the import workflow.
"""

from services.extraction_client import ExtractionClient, adapt_response
from services.remote_store import RemoteStore, SupabaseRemoteStore
from services.post_store import PostStore
from services.live_sync_service import LiveSyncSubscriber
from services.pricing_service import calculate_pricing, default_pricing_inputs
from services.workflow_service import (
    next_transition,
    back_transition,
    should_auto_advance,
    workflow_state,
)

__all__ = [
    "ExtractionClient",
    "adapt_response",
    "RemoteStore",
    "SupabaseRemoteStore",
    "PostStore",
    "LiveSyncSubscriber",
    "calculate_pricing",
    "default_pricing_inputs",
    "next_transition",
    "back_transition",
    "should_auto_advance",
    "workflow_state",
]
