"""DOI lifecycle orchestration and events."""

from doiflow.lifecycle.events import DOIEvents, attach_audit_logger
from doiflow.lifecycle.manager import DOILifecycleManager, OperationResult

__all__ = ['DOIEvents', 'attach_audit_logger', 'DOILifecycleManager', 'OperationResult']
