class DeviceNotFoundError(Exception):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device {device_id} not found")


class WorkflowError(Exception):
    """Base class for errors raised before a workflow run starts."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__("Workflow not found")


class WorkflowDisabledError(WorkflowError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__("Workflow is disabled")
