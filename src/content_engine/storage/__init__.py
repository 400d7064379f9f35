"""SQLite storage primitives shared by the cache, queue and usage recorder."""
