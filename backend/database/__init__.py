from .connection import get_db, get_engine, get_session_factory, init_db, dispose_engine, Base

# Import table models to ensure they are registered with Base
from .models import BankTransactionDB, InvoiceDB, ReconciliationMatchDB

from .repositories import (
    CandidateQuery, TransactionStore, InvoiceStore, MatchStore,
    ReconciliationUnitOfWork, Stores
)
from .memory_store import (
    InMemoryTransactionStore, InMemoryInvoiceStore, InMemoryMatchStore,
    InMemoryUnitOfWork, create_memory_stores
)
from .sql_store import (
    SQLTransactionStore, SQLInvoiceStore, SQLMatchStore, SQLUnitOfWork,
    create_sql_stores
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'dispose_engine', 'Base',
    # Tables
    'BankTransactionDB', 'InvoiceDB', 'ReconciliationMatchDB',
    # Contracts
    'CandidateQuery', 'TransactionStore', 'InvoiceStore', 'MatchStore',
    'ReconciliationUnitOfWork', 'Stores',
    # In-memory
    'InMemoryTransactionStore', 'InMemoryInvoiceStore', 'InMemoryMatchStore',
    'InMemoryUnitOfWork', 'create_memory_stores',
    # SQLAlchemy
    'SQLTransactionStore', 'SQLInvoiceStore', 'SQLMatchStore', 'SQLUnitOfWork',
    'create_sql_stores',
]
