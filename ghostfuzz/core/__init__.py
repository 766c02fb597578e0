"""Shared configuration, logging and report types."""
