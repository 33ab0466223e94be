"""Provisioning engine — orchestration, reconciliation and job queue."""
