"""Webhook event delivery service."""
