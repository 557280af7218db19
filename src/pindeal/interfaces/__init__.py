"""Protocol interfaces for all pindeal components."""

from pindeal.interfaces.storage_network import StorageNetwork
from pindeal.interfaces.ledger import Ledger
from pindeal.interfaces.store import StateStore
from pindeal.interfaces.queue import JobQueue

__all__ = ["StorageNetwork", "Ledger", "StateStore", "JobQueue"]
