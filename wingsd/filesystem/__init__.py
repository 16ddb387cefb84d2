"""Safe, quota-aware access to a server's data directory, with archive support."""