"""Backend plugins and the adapter that puts the protocol engine in front of them."""
