"""Declarative base shared by all ORM models."""

from sqlalchemy.orm import declarative_base

# Define the base for declarative models
Base = declarative_base()
