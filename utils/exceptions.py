"""
Custom Exceptions
Error taxonomy for the incident pipeline
"""


class SherlockError(Exception):
    """Base error for the incident pipeline"""
    
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)
    
    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SherlockError):
    """Missing or invalid configuration (ingest URL/token, CLI input)"""
    pass


class ConnectorError(SherlockError):
    """A source connector's provider rejected the request"""
    
    def __init__(self, message: str, connector: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.connector = connector


class SubmissionError(SherlockError):
    """Wolf ingest submission failed"""
    
    def __init__(self, message: str, status_code: int = None, **kwargs):
        super().__init__(message, kwargs)
        self.status_code = status_code


class StateStoreError(SherlockError):
    """Run state could not be read or written"""
    pass


class TaskStoreError(SherlockError):
    """Mission Control task store command failed"""
    
    def __init__(self, message: str, action: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.action = action
