from pydantic import BaseModel

from statement_ingest.models import Account, Category


class CatalogResponse(BaseModel):
    categories: list[Category]
    accounts: list[Account]
