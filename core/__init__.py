# Core module - shared components for the stock watch bot
# Contains: models, transition, storage, watchlist, base_scraper, notifier, poller, scheduler, config

from .base_scraper import BaseScraper, CheckError, CheckResult, PageStructureError, StoreOffer
from .config import BotConfig, MAX_CONCURRENT_CHECKS, load_config
from .models import CheckUnit, Snapshot, UserRecord, WatchedItem
from .notifier import TelegramNotifier
from .poller import CheckOutcome, PollingEngine, TickReport
from .scheduler import PollScheduler, is_within_working_hours
from .storage import PersistenceError, WatchStorage
from .transition import NotificationDecision, StockStatus, decide
from .watchlist import InvalidUrlError, ItemNotFoundError, WatchlistService

__all__ = [
    'BaseScraper',
    'CheckError',
    'CheckResult',
    'PageStructureError',
    'StoreOffer',
    'BotConfig',
    'MAX_CONCURRENT_CHECKS',
    'load_config',
    'CheckUnit',
    'Snapshot',
    'UserRecord',
    'WatchedItem',
    'TelegramNotifier',
    'CheckOutcome',
    'PollingEngine',
    'TickReport',
    'PollScheduler',
    'is_within_working_hours',
    'PersistenceError',
    'WatchStorage',
    'NotificationDecision',
    'StockStatus',
    'decide',
    'InvalidUrlError',
    'ItemNotFoundError',
    'WatchlistService',
]
