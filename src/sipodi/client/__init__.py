from sipodi.client.api import SipodiClient, TalentsAPI, UploadsAPI, VerificationsAPI
from sipodi.client.session import AuthSession
from sipodi.client.upload import UploadFlow, UploadState

__all__ = [
    "AuthSession",
    "SipodiClient",
    "TalentsAPI",
    "UploadFlow",
    "UploadState",
    "UploadsAPI",
    "VerificationsAPI",
]
