"""External collaborators: SMS gateway and document storage."""

from agrilease.integrations.sms_client import SmsGatewayClient, get_sms_client
from agrilease.integrations.uploads import LocalDocumentUploader, get_document_uploader

__all__ = [
    "LocalDocumentUploader",
    "SmsGatewayClient",
    "get_document_uploader",
    "get_sms_client",
]
