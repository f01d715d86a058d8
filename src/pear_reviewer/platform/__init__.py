"""Hosting platform integrations that supply external approvals."""
