"""Order, settlement and moderation workflows."""
