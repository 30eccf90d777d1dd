"""
Transfer strategy factory for session output.
"""
from functools import lru_cache

from dbsession.sql import is_result_set_query
from dbsession.strategy.base import _STRATEGY_REGISTRY
from dbsession.strategy.base import TransferStrategy as TransferStrategy
from dbsession.strategy.base import register_strategy as register_strategy
from dbsession.strategy.file import FileTransferStrategy as FileTransferStrategy
from dbsession.strategy.pipe import PipeTransferStrategy as PipeTransferStrategy


def _validate_transfer(transfer: str) -> None:
    """Raise ValueError if transfer is not registered."""
    if transfer not in _STRATEGY_REGISTRY:
        available = list(_STRATEGY_REGISTRY.keys())
        raise ValueError(f'Unsupported transfer: {transfer}. Available: {available}')


@lru_cache(maxsize=8)
def _get_strategy(transfer: str) -> TransferStrategy:
    """Get cached strategy instance for a transfer name."""
    _validate_transfer(transfer)
    return _STRATEGY_REGISTRY[transfer]()


def get_strategy(transfer: str) -> TransferStrategy:
    """Get strategy instance for a transfer name."""
    return _get_strategy(transfer)


def select_strategy(query: str, preference: str | None = 'auto') -> TransferStrategy:
    """Pick the transfer strategy for a query.

    `auto` uses file-mediated transfer for anything that looks like it yields
    a result set and pipe-mediated transfer for everything else.
    """
    if preference in {None, 'auto'}:
        return _get_strategy('file' if is_result_set_query(query) else 'pipe')
    return _get_strategy(preference)


def get_available_transfers() -> list[str]:
    """Return list of registered transfer names."""
    return list(_STRATEGY_REGISTRY.keys())


def is_supported_transfer(transfer: str) -> bool:
    """Check if a transfer name is supported."""
    return transfer in _STRATEGY_REGISTRY
