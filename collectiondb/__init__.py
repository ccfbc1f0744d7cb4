"""Collection name reconciliation toolkit for MongoDB."""
