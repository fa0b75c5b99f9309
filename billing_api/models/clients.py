# billing_api/models/clients.py

from datetime import datetime
from typing import List, Optional

from billing_api.models.common import CamelModel, Pagination


class ClientDocuments(CamelModel):
    photo: Optional[str] = None
    aadhaar_card: Optional[str] = None
    pan_card: Optional[str] = None


class ClientOut(CamelModel):
    id: str
    client_name: str
    phone_number: str
    gender: Optional[str] = None
    village: Optional[str] = None
    documents: ClientDocuments = ClientDocuments()
    created_by_user_id: str
    created_at: datetime
    updated_at: datetime


class ClientPage(CamelModel):
    clients: List[ClientOut]
    pagination: Pagination
