from hnshelf.cache.store import CacheStore, MemorySlotStorage, SQLiteSlotStorage, SlotStorage

__all__ = ["CacheStore", "MemorySlotStorage", "SQLiteSlotStorage", "SlotStorage"]
