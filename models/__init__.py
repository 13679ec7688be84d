from .watchlist import WatchlistEntry
