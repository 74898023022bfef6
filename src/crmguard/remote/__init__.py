"""Remote CRM access -- abstract data service plus the Salesforce REST client.

Provides:
- RemoteDataService: ABC with describe/query/search/create/update/delete
- SalesforceRestService: httpx implementation with tenacity retries
- SaveResult / SaveError: normalized outcome of write calls
"""

from src.crmguard.remote.salesforce import SalesforceRestService
from src.crmguard.remote.service import RemoteDataService, SaveError, SaveResult

__all__ = [
    "RemoteDataService",
    "SalesforceRestService",
    "SaveError",
    "SaveResult",
]
