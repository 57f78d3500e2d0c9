"""Application services orchestrating transactions and collaborators."""
