"""audit/ -- Append-only change trail for clients, drivers, vehicles, orders and identities."""
