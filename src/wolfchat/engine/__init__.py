"""Phase engine, records, tallying and the game manager."""
