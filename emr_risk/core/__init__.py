"""Core configuration, logging, errors and scoring."""
