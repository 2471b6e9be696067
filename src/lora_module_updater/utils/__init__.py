"""Small encoding helpers shared by the protocol layer."""
