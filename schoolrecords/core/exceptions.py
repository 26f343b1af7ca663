from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class WorkflowError(ServiceError):
    """Raised by the dissolution workflow when an operation cannot be applied."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message, status_code)


class StageError(WorkflowError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class WorkflowBusyError(WorkflowError):
    def __init__(self, message: str = "A transfer is already in progress for this section") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class GroupNotFoundError(WorkflowError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Group '{group_id}' not found", status.HTTP_404_NOT_FOUND)
        self.group_id = group_id


class UnknownStudentError(WorkflowError):
    pass


class InvalidTargetError(WorkflowError):
    pass


class MappingError(WorkflowError):
    pass


class CatalogFetchError(WorkflowError):
    def __init__(self, message: str, section_id=None) -> None:
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)
        self.section_id = section_id


class TransferError(WorkflowError):
    def __init__(self, message: str, status_code: int = status.HTTP_502_BAD_GATEWAY) -> None:
        super().__init__(message, status_code)
